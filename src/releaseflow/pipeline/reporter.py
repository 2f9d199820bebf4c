from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from releaseflow.core.contracts import HandlerIdentity, Outcome, OutcomeStatus
from releaseflow.core.exceptions import ReleaseAbortedError


class PipelineStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PipelineResult:
    """Immutable outcome of one release run.

    ``outcomes`` keeps the order in which handlers were reported, which is the
    stage order and, within a stage, the configuration tree order.
    """
    run_id: str
    status: PipelineStatus
    outcomes: Mapping[HandlerIdentity, Outcome]
    aborted_stage: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def _with_status(self, status: OutcomeStatus) -> List[HandlerIdentity]:
        return [identity for identity, outcome in self.outcomes.items() if outcome.status is status]

    @property
    def succeeded(self) -> List[HandlerIdentity]:
        return self._with_status(OutcomeStatus.SUCCEEDED)

    @property
    def skipped(self) -> List[HandlerIdentity]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> List[HandlerIdentity]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def ok(self) -> bool:
        return self.status is PipelineStatus.SUCCEEDED

    def counts(self) -> Dict[str, int]:
        return {status.value: len(self._with_status(status)) for status in OutcomeStatus}

    def raise_for_failure(self) -> None:
        """Raise ``ReleaseAbortedError`` when a fail-fast stage aborted the run."""
        if self.aborted_stage is not None:
            raise ReleaseAbortedError(self.aborted_stage, self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "aborted_stage": self.aborted_stage,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "counts": self.counts(),
            "handlers": [
                {
                    "category": identity.category.value,
                    "type": identity.type_id,
                    "name": identity.name,
                    **outcome.as_dict(),
                }
                for identity, outcome in self.outcomes.items()
            ],
        }


class ExecutionReporter:
    """Collects exactly one terminal outcome per handler identity.

    Safe to call from worker threads; the lock only serializes the
    bookkeeping, identities never collide.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._outcomes: Dict[HandlerIdentity, Outcome] = {}
        self._lock = threading.Lock()
        self._aborted_stage: Optional[str] = None
        self._cancelled = False
        self._result: Optional[PipelineResult] = None
        self._started_at = datetime.now(timezone.utc).isoformat()

    def record(self, identity: HandlerIdentity, outcome: Outcome) -> None:
        with self._lock:
            if self._result is not None:
                raise RuntimeError("Cannot record outcomes after the run completed")
            if identity in self._outcomes:
                raise RuntimeError(f"Outcome for {identity} was already recorded")
            self._outcomes[identity] = outcome

    def has_outcome(self, identity: HandlerIdentity) -> bool:
        with self._lock:
            return identity in self._outcomes

    def mark_aborted(self, stage: str) -> None:
        if self._aborted_stage is None:
            self._aborted_stage = stage

    def mark_cancelled(self) -> None:
        self._cancelled = True

    def complete(self) -> PipelineResult:
        """Freeze the collected outcomes; further calls return the same result."""
        with self._lock:
            if self._result is not None:
                return self._result
            if self._aborted_stage is not None or any(o.is_failed for o in self._outcomes.values()):
                status = PipelineStatus.FAILED
            elif self._cancelled:
                status = PipelineStatus.CANCELLED
            else:
                status = PipelineStatus.SUCCEEDED
            self._result = PipelineResult(
                run_id=self.run_id,
                status=status,
                outcomes=MappingProxyType(dict(self._outcomes)),
                aborted_stage=self._aborted_stage,
                started_at=self._started_at,
                finished_at=datetime.now(timezone.utc).isoformat(),
            )
            return self._result
