from __future__ import annotations

import json
import os
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

from releaseflow.core.logger import get_logger

DEFAULT_SCHEMA_VERSION = "1.0"

# Optional global bus so stages and handlers can publish without extra arguments
_GLOBAL_BUS: Optional["EventBus"] = None

_log = get_logger(__name__)


def set_global_bus(bus: Optional["EventBus"]) -> None:
    global _GLOBAL_BUS
    _GLOBAL_BUS = bus


def get_global_bus() -> Optional["EventBus"]:
    return _GLOBAL_BUS


def publish_event(
    *,
    stage: str,
    status: str,
    duration_ms: Optional[int] = None,
    counts: Optional[Dict[str, Any]] = None,
    details: Optional[Dict[str, Any]] = None,
    error: Optional[Dict[str, Any]] = None,
) -> None:
    """Publish an event to the global bus, if one is configured.

    Bus errors never reach the caller: event reporting must not change the
    outcome of a release.
    """
    bus = _GLOBAL_BUS
    if bus is None:
        return
    try:
        bus.publish(
            stage=stage,
            status=status,
            duration_ms=duration_ms,
            counts=counts,
            details=details,
            error=error,
        )
    except Exception as exc:
        _log.debug(f"Event publish failed for {stage}/{status}: {exc}")


class timed_stage:
    """Context manager publishing started/completed/failed events for a block.

    Usage:
        with timed_stage("stage.package", details={"fail_fast": True}):
            run_package_handlers()
    """

    def __init__(
        self,
        stage: str,
        *,
        counts: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.stage = stage
        self.counts = counts
        self.details = details
        self._start = 0.0

    def __enter__(self) -> "timed_stage":
        self._start = time.monotonic()
        publish_event(stage=self.stage, status="started", details=self.details)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):  # type: ignore
        duration_ms = int((time.monotonic() - self._start) * 1000)
        if exc_type is not None:
            publish_event(
                stage=self.stage,
                status="failed",
                duration_ms=duration_ms,
                counts=self.counts,
                details=self.details,
                error={"code": exc_type.__name__, "message": str(exc_val)},
            )
        else:
            publish_event(
                stage=self.stage,
                status="completed",
                duration_ms=duration_ms,
                counts=self.counts,
                details=self.details,
            )
        return False


@dataclass
class FunctionalEvent:
    """Structured lifecycle event of a release run, separate from debug logging."""

    schema_version: str = DEFAULT_SCHEMA_VERSION
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    seq_no: int = 0
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    run_id: str = "-"
    project_name: str = "-"

    stage: str = "-"  # e.g. pipeline, stage.package, handler.packager.app-docker
    status: str = "-"  # started|completed|failed|skipped

    duration_ms: Optional[int] = None
    counts: Optional[Dict[str, Any]] = None
    details: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    project_version: Optional[str] = None
    dry_run: bool = False


class EventObserver:
    """Observer interface for handling functional events."""

    def handle(self, event: FunctionalEvent) -> None:  # pragma: no cover
        raise NotImplementedError

    def flush(self) -> None:
        return None


class StdoutObserver(EventObserver):
    """Emit one human-readable progress line per event."""

    def handle(self, event: FunctionalEvent) -> None:
        duration = f" duration_ms={event.duration_ms}" if event.duration_ms is not None else ""
        msg = (
            f"{event.ts} | run={event.run_id} | project={event.project_name} | "
            f"{event.stage} {event.status}{duration}"
        )
        if event.counts:
            msg += f" | counts={event.counts}"
        if event.details:
            brief = {k: event.details[k] for k in list(event.details.keys())[:4]}
            msg += f" | details={brief}"
        if event.error:
            brief_err = {k: event.error.get(k) for k in ("code", "message") if k in event.error}
            msg += f" | error={brief_err}"
        print(msg)


class JSONLObserver(EventObserver):
    """In-memory JSONL buffer written once per flush.

    Layout: <base_path>/<project_name>/<YYYY-MM-DD>/<run_id>.jsonl
    """

    def __init__(self, base_path: str, project_name: str, run_id: str) -> None:
        self._buf: List[str] = []
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        self.dir_path = os.path.join(base_path, project_name, date_str)
        self.file_path = os.path.join(self.dir_path, f"{run_id}.jsonl")

    def handle(self, event: FunctionalEvent) -> None:
        self._buf.append(json.dumps(asdict(event), ensure_ascii=False, default=str))

    def flush(self) -> None:
        if not self._buf:
            return
        os.makedirs(self.dir_path, exist_ok=True)
        with open(self.file_path, "a", encoding="utf-8") as f:
            f.write("\n".join(self._buf) + "\n")
        self._buf.clear()


class EventBus:
    """Event bus with a background dispatcher and a bounded queue.

    Tracks the start time of every stage so completed/failed events get a
    duration even when the publisher does not measure one.
    """

    def __init__(
        self,
        *,
        run_id: str,
        project_name: str,
        project_version: Optional[str] = None,
        dry_run: bool = False,
        observers: Optional[List[EventObserver]] = None,
        queue_size: int = 10_000,
    ) -> None:
        self.run_id = str(run_id)
        self.project_name = project_name
        self.project_version = project_version
        self.dry_run = dry_run

        self._observers: List[EventObserver] = observers or []
        self._q: Queue[FunctionalEvent] = Queue(maxsize=max(1, queue_size))
        self._seq_no = 0
        self._seq_lock = threading.Lock()
        self._running = False
        self._worker: Optional[threading.Thread] = None
        self._dropped = 0
        self._stage_start_times: Dict[str, float] = {}

    def _dispatch(self, evt: FunctionalEvent) -> None:
        for obs in self._observers:
            try:
                obs.handle(evt)
            except Exception as exc:
                _log.debug(f"Observer {obs.__class__.__name__} failed: {exc}")

    def _dispatch_loop(self) -> None:
        while self._running:
            try:
                evt = self._q.get(timeout=0.5)
            except Empty:
                continue
            self._dispatch(evt)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._worker = threading.Thread(target=self._dispatch_loop, name="releaseflow_event_bus", daemon=True)
        self._worker.start()

    def shutdown(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._worker is not None and self._worker.is_alive():
            self._worker.join(timeout=2.0)
        while True:
            try:
                evt = self._q.get_nowait()
            except Empty:
                break
            self._dispatch(evt)
        for obs in self._observers:
            try:
                obs.flush()
            except Exception as exc:
                _log.warning(f"Observer {obs.__class__.__name__} flush failed: {exc}")
        self._worker = None

    def publish(
        self,
        *,
        stage: str,
        status: str,
        duration_ms: Optional[int] = None,
        counts: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> None:
        now = time.monotonic()
        with self._seq_lock:
            if status == "started":
                self._stage_start_times[stage] = now
            elif status in ("completed", "failed") and duration_ms is None:
                start = self._stage_start_times.pop(stage, None)
                if start is not None:
                    duration_ms = int((now - start) * 1000)
            self._seq_no += 1
            seq_no = self._seq_no

        evt = FunctionalEvent(
            seq_no=seq_no,
            run_id=self.run_id,
            project_name=self.project_name,
            stage=stage,
            status=status,
            duration_ms=duration_ms,
            counts=counts,
            details=details,
            error=error,
            project_version=self.project_version,
            dry_run=self.dry_run,
        )
        try:
            self._q.put_nowait(evt)
        except Full:
            # Drop rather than block a release on event reporting
            self._dropped += 1
            if self._dropped % 100 == 1:
                _log.warning(f"Event queue full; {self._dropped} event(s) dropped")


def _env_flag(name: str, default: str) -> str:
    val = os.getenv(name)
    return val if val not in (None, "") else default


def build_default_bus(
    *,
    run_id: str,
    project_name: str,
    project_version: Optional[str] = None,
    dry_run: bool = False,
) -> Optional[EventBus]:
    """Construct an EventBus from environment variables.

    RELEASEFLOW_EVENTS_ENABLED: "true" | "false" (default: "false")
    RELEASEFLOW_EVENTS_TRANSPORTS: comma list of stdout,jsonl (default: "stdout")
    RELEASEFLOW_EVENTS_PATH: base directory for jsonl (default: "./out/events")
    RELEASEFLOW_EVENTS_QUEUE_SIZE: int (default: 10000)
    """
    enabled = _env_flag("RELEASEFLOW_EVENTS_ENABLED", "false").lower() == "true"
    if not enabled:
        return None

    transports = [s.strip() for s in _env_flag("RELEASEFLOW_EVENTS_TRANSPORTS", "stdout").split(",") if s.strip()]
    base_path = _env_flag("RELEASEFLOW_EVENTS_PATH", os.path.join("out", "events"))
    try:
        q_size = int(_env_flag("RELEASEFLOW_EVENTS_QUEUE_SIZE", "10000"))
    except ValueError:
        q_size = 10000

    observers: List[EventObserver] = []
    if "stdout" in transports:
        observers.append(StdoutObserver())
    if "jsonl" in transports:
        observers.append(JSONLObserver(base_path=base_path, project_name=project_name, run_id=str(run_id)))

    return EventBus(
        run_id=str(run_id),
        project_name=project_name,
        project_version=project_version,
        dry_run=dry_run,
        observers=observers,
        queue_size=q_size,
    )
