from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional

from releaseflow.models.categories import Category

if TYPE_CHECKING:
    from releaseflow.models.config_node import ConfigNode


@dataclass(frozen=True, order=True)
class HandlerIdentity:
    """Stable key of one handler in a run: (category, type_id, name)."""

    category: Category
    type_id: str
    name: str

    def __str__(self) -> str:
        return f"{self.category.value}:{self.type_id}:{self.name}"


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    """Terminal result of one handler invocation."""

    status: OutcomeStatus
    reason: Optional[str] = None

    @classmethod
    def succeeded(cls, reason: Optional[str] = None) -> "Outcome":
        return cls(OutcomeStatus.SUCCEEDED, reason)

    @classmethod
    def skipped(cls, reason: str) -> "Outcome":
        return cls(OutcomeStatus.SKIPPED, reason)

    @classmethod
    def failed(cls, reason: str) -> "Outcome":
        return cls(OutcomeStatus.FAILED, reason)

    @property
    def is_failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    def as_dict(self) -> dict:
        return {"status": self.status.value, "reason": self.reason}


def _frozen_metadata() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class ExecutionContext:
    """Read-only context handed to every handler of a run.

    Carries what the host decided at invocation time (run id, dry-run flag)
    next to the resolved configuration tree, so adapters never reach back into
    the orchestrator.
    """
    run_id: str                                   # Unique run identifier
    project_name: str                             # Project being released
    project_version: Optional[str] = None         # Version being released
    dry_run: bool = False                         # Adapters must not touch remote systems
    tree: Optional["ConfigNode"] = None           # Resolved configuration tree
    metadata: Mapping[str, Any] = field(default_factory=_frozen_metadata)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("releaseflow.handlers"))

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
