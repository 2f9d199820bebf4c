from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from releaseflow.core.contracts import ExecutionContext, HandlerIdentity, Outcome
from releaseflow.core.logger import get_logger
from releaseflow.models.config_node import ConfigNode


class BaseHandler(ABC):
    """Executable unit bound to one handler node of the configuration tree.

    Handlers keep no state beyond their bound node. Returning ``None`` from
    ``execute`` means the handler succeeded; raising means it failed.
    """

    def __init__(self, node: ConfigNode):
        self.node = node
        self.log = get_logger(f"releaseflow.handlers.{self.__class__.__name__}")

    @property
    def identity(self) -> HandlerIdentity:
        return self.node.identity

    @property
    def settings(self) -> Dict[str, Any]:
        return self.node.settings

    # --- Required method ---
    @abstractmethod
    def execute(self, context: ExecutionContext) -> Optional[Outcome]:
        raise NotImplementedError

    # --- Logging helpers ---
    def log_info(self, msg: str):
        self.log.info(f"[{self.identity.name}] {msg}")

    def log_warn(self, msg: str):
        self.log.warning(f"[{self.identity.name}] {msg}")
