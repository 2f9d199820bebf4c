from __future__ import annotations

import threading
import uuid
from typing import Any, Dict, Iterable, Optional, Type, Union

from releaseflow.bootstrap import load_builtin_plugins
from releaseflow.core.contracts import ExecutionContext
from releaseflow.core.events import build_default_bus, set_global_bus
from releaseflow.core.exceptions import ConfigurationError
from releaseflow.core.logger import get_logger, push_run_id, reset_run_id
from releaseflow.handlers.registry import HandlerRegistry
from releaseflow.models.filter_rules import FilterRules
from releaseflow.models.release_config import ReleaseConfig
from releaseflow.pipeline.executor import StagePipeline
from releaseflow.pipeline.reporter import PipelineResult
from releaseflow.pipeline.stages import FULL_RELEASE_STAGES, Stage, validate_stages
from releaseflow.selection.resolver import Selection, SelectionResolver


class ReleaseOrchestrator:
    """
    High-level entry point running a release described by a ReleaseConfig.

    Loads and validates the configuration, resolves which handlers are active
    for the given filters, checks that every active handler has an adapter,
    and only then drives the stage pipeline. Configuration problems therefore
    surface before any external side effect.

    Example:
        >>> from releaseflow import ReleaseOrchestrator, FilterRules
        >>> filters = FilterRules.from_options(included_packagers=["docker"])
        >>> result = ReleaseOrchestrator(dry_run=True).run(config_dict, filters)
        >>> result.status
        <PipelineStatus.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        *,
        dry_run: bool = False,
        stages: Iterable[Stage] = FULL_RELEASE_STAGES,
        max_workers: int = 1,
        registry: Type[HandlerRegistry] = HandlerRegistry,
    ):
        """
        Args:
            run_id: Unique identifier for this release run. A UUID is generated
                when not provided.
            dry_run: Passed to every handler; adapters must not touch remote
                systems when it is set.
            stages: Ordered stages to run (default: the full-release workflow).
            max_workers: Thread pool size for non fail-fast stages.
            registry: Handler registry used to look up adapters.
        """
        self.run_id = str(run_id) if run_id is not None else str(uuid.uuid4())
        self.dry_run = dry_run
        self.stages = validate_stages(stages)
        self.max_workers = max_workers
        self.registry = registry

    def plan(
        self,
        cfg: Union[Dict[str, Any], ReleaseConfig],
        filters: Optional[FilterRules] = None,
    ) -> Selection:
        """Resolve the selection without running anything.

        Raises:
            ConfigurationError: If the configuration is invalid or an active
                handler has no registered adapter.
        """
        load_builtin_plugins()
        if not isinstance(cfg, ReleaseConfig):
            cfg = ReleaseConfig.from_dict(cfg)
        tree = cfg.build_tree()
        selection = SelectionResolver(filters).selection(tree)
        self._check_adapters(selection)
        return selection

    def _check_adapters(self, selection: Selection) -> None:
        missing = [
            f"{c.identity} (adapter={c.node.adapter_key!r}, path={c.path})"
            for c in selection.active_candidates()
            if self.registry.try_get(c.node.category, c.node.adapter_key) is None
        ]
        if missing:
            raise ConfigurationError("No adapter registered for active handler(s)", details={"handlers": missing})

    def run(
        self,
        cfg: Union[Dict[str, Any], ReleaseConfig],
        filters: Optional[FilterRules] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PipelineResult:
        """
        Run the release.

        Args:
            cfg: Release configuration as a dict (validated here) or a
                ReleaseConfig.
            filters: Include/exclude rules; ``None`` selects every enabled
                handler.
            cancel_event: Set it to stop starting new handlers.
            metadata: Extra values exposed to handlers via the context.

        Returns:
            PipelineResult; a fail-fast abort is reported through its status,
            use ``result.raise_for_failure()`` to turn it into an exception.

        Raises:
            ConfigurationError: Before any stage runs, if the configuration,
                the tree or the adapter registry is inconsistent.
        """
        log = get_logger(__name__)
        token = push_run_id(self.run_id)
        try:
            if not isinstance(cfg, ReleaseConfig):
                cfg = ReleaseConfig.from_dict(cfg)
            selection = self.plan(cfg, filters)
            active = sum(1 for _ in selection.active_candidates())
            log.info(
                f"Release of '{cfg.project.name}' {cfg.project.version or ''} started: "
                f"{active} of {len(selection.candidates)} handler(s) active"
                f"{' [dryrun]' if self.dry_run else ''}"
            )

            bus = build_default_bus(
                run_id=self.run_id,
                project_name=cfg.project.name,
                project_version=cfg.project.version,
                dry_run=self.dry_run,
            )
            if bus is not None:
                bus.start()
                set_global_bus(bus)
            try:
                context = ExecutionContext(
                    run_id=self.run_id,
                    project_name=cfg.project.name,
                    project_version=cfg.project.version,
                    dry_run=self.dry_run,
                    tree=selection.tree,
                    metadata=dict(metadata or {}),
                )
                pipeline = StagePipeline(self.stages, registry=self.registry, max_workers=self.max_workers)
                result = pipeline.run(selection, context, cancel_event=cancel_event)
            finally:
                if bus is not None:
                    bus.shutdown()
                set_global_bus(None)

            log.info(f"Release finished with status={result.status.value} counts={result.counts()}")
            return result
        finally:
            reset_run_id(token)


def run_release(
    cfg: Union[Dict[str, Any], ReleaseConfig],
    filters: Optional[FilterRules] = None,
    *,
    run_id: Optional[str] = None,
    dry_run: bool = False,
) -> PipelineResult:
    """Run the full-release workflow with default settings."""
    return ReleaseOrchestrator(run_id, dry_run=dry_run).run(cfg, filters)
