from __future__ import annotations

import contextvars
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Type

from releaseflow.core.contracts import ExecutionContext, Outcome, OutcomeStatus
from releaseflow.core.events import publish_event, timed_stage
from releaseflow.core.logger import get_logger
from releaseflow.handlers.registry import HandlerRegistry
from releaseflow.pipeline.reporter import ExecutionReporter, PipelineResult
from releaseflow.pipeline.stages import FULL_RELEASE_STAGES, Stage, validate_stages
from releaseflow.selection.resolver import Candidate, Selection

CANCELLED_REASON = "cancelled"


class StagePipeline:
    """
    Runs the active handlers of a selection stage by stage.

    - Stages run strictly in declared order; each stage is a full barrier.
    - Within a stage handlers run in configuration tree order.
    - A handler exception is recorded as a failed outcome and never stops
      its siblings, unless the stage is fail-fast: then the remaining handlers
      of the stage and every later stage are skipped and the run is failed.
    - Inactive handlers are recorded as skipped and never constructed.

    With ``max_workers > 1`` handlers of non fail-fast stages run on a thread
    pool. Outcomes are still recorded in tree order, so the result does not
    depend on scheduling. Fail-fast stages always run sequentially.

    Example:
        >>> selection = SelectionResolver(filters).selection(tree)
        >>> result = StagePipeline().run(selection, context)
        >>> result.status
        <PipelineStatus.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        stages: Iterable[Stage] = FULL_RELEASE_STAGES,
        *,
        registry: Type[HandlerRegistry] = HandlerRegistry,
        max_workers: int = 1,
    ):
        self.stages = validate_stages(stages)
        self.registry = registry
        self.max_workers = max(1, max_workers)
        self.log = get_logger(__name__)

    def run(
        self,
        selection: Selection,
        context: ExecutionContext,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> PipelineResult:
        """
        Execute every stage against the selection.

        Args:
            selection: Resolved handler decisions (see ``SelectionResolver``).
            context: Read-only context handed to each handler.
            cancel_event: When set, no further handler is started. Handlers
                already running finish and their outcome is kept; the others
                are recorded as skipped.

        Returns:
            PipelineResult with one outcome per handler of the selection that
            belongs to one of the stages.
        """
        cancel_event = cancel_event or threading.Event()
        reporter = ExecutionReporter(context.run_id)
        abort_reason: Optional[str] = None

        publish_event(stage="pipeline", status="started", details={"stages": [s.name for s in self.stages]})
        for stage in self.stages:
            candidates = [c for c in selection.candidates if c.node.category in stage.categories]

            if abort_reason is not None:
                self.log.info(f"Stage '{stage.name}' not started: {abort_reason}")
                for candidate in candidates:
                    self._skip(reporter, candidate, abort_reason)
                publish_event(stage=f"stage.{stage.name}", status="skipped", details={"reason": abort_reason})
                continue

            active = sum(1 for c in candidates if c.decision.active)
            self.log.info(
                f"Stage '{stage.name}' started: {active} active of {len(candidates)} handler(s)"
                f"{' [fail-fast]' if stage.fail_fast else ''}"
            )
            with timed_stage(
                f"stage.{stage.name}",
                counts={"active": active, "total": len(candidates)},
                details={"fail_fast": stage.fail_fast},
            ):
                if stage.fail_fast or self.max_workers == 1:
                    failed = self._run_sequential(stage, candidates, context, reporter, cancel_event)
                else:
                    failed = self._run_parallel(candidates, context, reporter, cancel_event)

            if failed and stage.fail_fast:
                reporter.mark_aborted(stage.name)
                abort_reason = f"aborted: stage '{stage.name}' failed"
                self.log.error(f"Stage '{stage.name}' failed; aborting remaining stages")
            else:
                self.log.info(f"Stage '{stage.name}' completed")

        if cancel_event.is_set():
            reporter.mark_cancelled()
        result = reporter.complete()
        publish_event(stage="pipeline", status=result.status.value, counts=result.counts())
        return result

    def _run_sequential(
        self,
        stage: Stage,
        candidates: List[Candidate],
        context: ExecutionContext,
        reporter: ExecutionReporter,
        cancel_event: threading.Event,
    ) -> bool:
        failed = False
        abort_reason: Optional[str] = None
        for candidate in candidates:
            if not candidate.decision.active:
                self._skip(reporter, candidate, candidate.decision.reason)
            elif abort_reason is not None:
                self._skip(reporter, candidate, abort_reason)
            elif cancel_event.is_set():
                self._skip(reporter, candidate, CANCELLED_REASON)
            else:
                outcome = self._invoke(candidate, context)
                reporter.record(candidate.identity, outcome)
                if outcome.is_failed:
                    failed = True
                    if stage.fail_fast:
                        abort_reason = f"aborted: stage '{stage.name}' failed"
        return failed

    def _run_parallel(
        self,
        candidates: List[Candidate],
        context: ExecutionContext,
        reporter: ExecutionReporter,
        cancel_event: threading.Event,
    ) -> bool:
        futures: Dict[int, Future] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="releaseflow") as pool:
            for idx, candidate in enumerate(candidates):
                if candidate.decision.active:
                    ctx = contextvars.copy_context()
                    futures[idx] = pool.submit(ctx.run, self._invoke_unless_cancelled, candidate, context, cancel_event)

        failed = False
        for idx, candidate in enumerate(candidates):
            if idx not in futures:
                self._skip(reporter, candidate, candidate.decision.reason)
                continue
            outcome: Outcome = futures[idx].result()
            reporter.record(candidate.identity, outcome)
            failed = failed or outcome.is_failed
        return failed

    def _invoke_unless_cancelled(
        self, candidate: Candidate, context: ExecutionContext, cancel_event: threading.Event
    ) -> Outcome:
        if cancel_event.is_set():
            self.log.info(f"{candidate.identity} not started: {CANCELLED_REASON}")
            return Outcome.skipped(CANCELLED_REASON)
        return self._invoke(candidate, context)

    def _invoke(self, candidate: Candidate, context: ExecutionContext) -> Outcome:
        identity = candidate.identity
        event_stage = f"handler.{identity.category.value}.{identity.name}"
        publish_event(stage=event_stage, status="started", details={"type": identity.type_id})
        self.log.info(f"Running {identity}")
        try:
            handler_cls = self.registry.for_node(candidate.node)
            handler = handler_cls(candidate.node)
            outcome = handler.execute(context)
            if outcome is None:
                outcome = Outcome.succeeded()
            elif not isinstance(outcome, Outcome):
                outcome = Outcome.failed(f"handler returned {type(outcome).__name__}, expected Outcome")
        except Exception as exc:
            self.log.error(f"{identity} failed: {type(exc).__name__}: {exc}")
            self.log.debug("Handler traceback", exc_info=True)
            outcome = Outcome.failed(f"{type(exc).__name__}: {exc}")

        publish_event(
            stage=event_stage,
            status="completed" if outcome.status is OutcomeStatus.SUCCEEDED else outcome.status.value,
            details={"reason": outcome.reason} if outcome.reason else None,
            error={"message": outcome.reason} if outcome.is_failed else None,
        )
        if not outcome.is_failed:
            self.log.info(f"{identity} {outcome.status.value}")
        return outcome

    def _skip(self, reporter: ExecutionReporter, candidate: Candidate, reason: str) -> None:
        self.log.debug(f"Skipping {candidate.identity}: {reason}")
        reporter.record(candidate.identity, Outcome.skipped(reason))


def run(
    stages: Iterable[Stage],
    selection: Selection,
    context: ExecutionContext,
    *,
    max_workers: int = 1,
    cancel_event: Optional[threading.Event] = None,
) -> PipelineResult:
    """Run ``stages`` over ``selection`` with the default handler registry."""
    return StagePipeline(stages, max_workers=max_workers).run(selection, context, cancel_event=cancel_event)
