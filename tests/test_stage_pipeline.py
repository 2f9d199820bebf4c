import threading
import time

import pytest

from releaseflow.core.base_handler import BaseHandler
from releaseflow.core.contracts import ExecutionContext, HandlerIdentity, Outcome, OutcomeStatus
from releaseflow.core.exceptions import HandlerFailure, ReleaseAbortedError
from releaseflow.handlers.registry import HandlerRegistry, register_handler
from releaseflow.models.categories import Category
from releaseflow.models.config_node import ConfigNode
from releaseflow.models.filter_rules import FilterRules
from releaseflow.pipeline.executor import StagePipeline
from releaseflow.pipeline.reporter import PipelineStatus
from releaseflow.pipeline.stages import Stage
from releaseflow.selection.resolver import SelectionResolver

CALLS = []
_CALLS_LOCK = threading.Lock()


def setup_function() -> None:
    HandlerRegistry.clear()
    CALLS.clear()

    @register_handler(category=list(Category), adapter="test")
    class RecordingHandler(BaseHandler):
        def execute(self, context):
            if self.settings.get("sleep"):
                time.sleep(self.settings["sleep"])
            with _CALLS_LOCK:
                CALLS.append(self.identity.name)
            if self.settings.get("cancel"):
                context.metadata["cancel_event"].set()
            if self.settings.get("fail"):
                raise HandlerFailure(f"{self.identity.name} broke")
            if self.settings.get("returns") is not None:
                return self.settings["returns"]
            return None


def _handler(key, category, type_id=None, **settings):
    return ConfigNode(
        key=key,
        category=category,
        type_id=type_id or key,
        name=key,
        adapter=settings.pop("adapter", "test"),
        settings=settings,
    )


def _tree(packagers=(), uploads=(), announcers=()):
    distribution = ConfigNode(
        key="app",
        category=Category.DISTRIBUTION,
        type_id="java-binary",
        name="app",
        adapter="test",
        children=tuple(packagers),
    )
    return ConfigNode(
        key="release",
        children=(
            ConfigNode(key="distributions", category=Category.DISTRIBUTION, children=(distribution,)),
            ConfigNode(key="upload", category=Category.UPLOADER, children=tuple(uploads)),
            ConfigNode(key="announce", category=Category.ANNOUNCER, enabled=True, children=tuple(announcers)),
        ),
    )


def _run(tree, filters=None, cancel_event=None, **pipeline_kwargs):
    selection = SelectionResolver(filters).selection(tree)
    context = ExecutionContext(
        run_id="run-1",
        project_name="app",
        tree=tree,
        metadata={"cancel_event": cancel_event},
    )
    return StagePipeline(**pipeline_kwargs).run(selection, context, cancel_event=cancel_event)


def _identity(category, name, type_id=None):
    return HandlerIdentity(category, type_id or name, name)


def test_stages_run_in_order_and_handlers_in_tree_order():
    tree = _tree(
        packagers=[_handler("zip", Category.PACKAGER), _handler("docker", Category.PACKAGER)],
        uploads=[_handler("s3", Category.UPLOADER)],
        announcers=[_handler("twitter", Category.ANNOUNCER)],
    )

    result = _run(tree)

    assert CALLS == ["app", "zip", "docker", "s3", "twitter"]
    assert result.status is PipelineStatus.SUCCEEDED
    assert result.ok
    assert [i.name for i in result.outcomes] == ["app", "zip", "docker", "s3", "twitter"]
    assert result.counts() == {"succeeded": 5, "skipped": 0, "failed": 0}


def test_failure_in_regular_stage_does_not_stop_siblings():
    tree = _tree(
        uploads=[
            _handler("s3", Category.UPLOADER, fail=True),
            _handler("ftp", Category.UPLOADER),
        ],
        announcers=[_handler("twitter", Category.ANNOUNCER)],
    )

    result = _run(tree)

    assert CALLS == ["app", "s3", "ftp", "twitter"]
    assert result.status is PipelineStatus.FAILED
    assert result.aborted_stage is None
    s3 = result.outcomes[_identity(Category.UPLOADER, "s3")]
    assert s3.status is OutcomeStatus.FAILED
    assert s3.reason == "HandlerFailure: s3 broke"
    assert result.outcomes[_identity(Category.UPLOADER, "ftp")].status is OutcomeStatus.SUCCEEDED
    result.raise_for_failure()


def test_fail_fast_stage_aborts_rest_of_stage_and_later_stages():
    tree = _tree(
        packagers=[
            _handler("zip", Category.PACKAGER, fail=True),
            _handler("docker", Category.PACKAGER),
        ],
        uploads=[_handler("s3", Category.UPLOADER)],
        announcers=[_handler("twitter", Category.ANNOUNCER)],
    )

    result = _run(tree)

    assert CALLS == ["app", "zip"]
    assert result.status is PipelineStatus.FAILED
    assert result.aborted_stage == "package"
    reason = "aborted: stage 'package' failed"
    for identity in (
        _identity(Category.PACKAGER, "docker"),
        _identity(Category.UPLOADER, "s3"),
        _identity(Category.ANNOUNCER, "twitter"),
    ):
        assert result.outcomes[identity] == Outcome.skipped(reason)
    with pytest.raises(ReleaseAbortedError, match="package"):
        result.raise_for_failure()


def test_inactive_handlers_are_skipped_and_never_invoked():
    tree = _tree(
        packagers=[_handler("zip", Category.PACKAGER), _handler("docker", Category.PACKAGER)],
        uploads=[_handler("s3", Category.UPLOADER)],
    )
    filters = FilterRules.from_options(excluded_packagers=["docker"], excluded_uploaders=["s3"])

    result = _run(tree, filters)

    assert CALLS == ["app", "zip"]
    assert result.status is PipelineStatus.SUCCEEDED
    assert result.outcomes[_identity(Category.PACKAGER, "docker")] == Outcome.skipped("excluded by type 'docker'")
    assert result.skipped == [_identity(Category.PACKAGER, "docker"), _identity(Category.UPLOADER, "s3")]


def test_skipped_and_failed_are_reported_separately():
    tree = _tree(
        uploads=[
            _handler("s3", Category.UPLOADER, fail=True),
            _handler("ftp", Category.UPLOADER, returns=Outcome.skipped("nothing to upload")),
            _handler("scp", Category.UPLOADER, returns="done"),
        ]
    )

    result = _run(tree)

    assert result.failed == [_identity(Category.UPLOADER, "s3"), _identity(Category.UPLOADER, "scp")]
    assert result.skipped == [_identity(Category.UPLOADER, "ftp")]
    scp = result.outcomes[_identity(Category.UPLOADER, "scp")]
    assert scp.reason == "handler returned str, expected Outcome"


def test_missing_adapter_is_a_handler_failure():
    tree = _tree(uploads=[_handler("s3", Category.UPLOADER, adapter="missing")])

    result = _run(tree)

    outcome = result.outcomes[_identity(Category.UPLOADER, "s3")]
    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.reason.startswith("HandlerRegistryError: No handler registered")


def test_cancellation_stops_starting_new_handlers():
    cancel_event = threading.Event()
    tree = _tree(
        packagers=[
            _handler("zip", Category.PACKAGER, cancel=True),
            _handler("docker", Category.PACKAGER),
        ],
        uploads=[_handler("s3", Category.UPLOADER)],
    )

    result = _run(tree, cancel_event=cancel_event)

    assert CALLS == ["app", "zip"]
    assert result.status is PipelineStatus.CANCELLED
    assert result.outcomes[_identity(Category.PACKAGER, "zip")].status is OutcomeStatus.SUCCEEDED
    assert result.outcomes[_identity(Category.PACKAGER, "docker")] == Outcome.skipped("cancelled")
    assert result.outcomes[_identity(Category.UPLOADER, "s3")] == Outcome.skipped("cancelled")


def test_parallel_stage_reports_in_tree_order():
    tree = _tree(
        uploads=[
            _handler("slow", Category.UPLOADER, sleep=0.2),
            _handler("broken", Category.UPLOADER, fail=True),
            _handler("fast", Category.UPLOADER),
        ]
    )

    result = _run(tree, max_workers=4)

    assert sorted(CALLS) == ["app", "broken", "fast", "slow"]
    assert [i.name for i in result.outcomes] == ["app", "slow", "broken", "fast"]
    assert result.failed == [_identity(Category.UPLOADER, "broken")]
    assert len(result.succeeded) == 3


def test_fail_fast_stage_stays_sequential_with_workers():
    tree = _tree(
        packagers=[
            _handler("zip", Category.PACKAGER, fail=True),
            _handler("docker", Category.PACKAGER),
        ]
    )

    result = _run(tree, max_workers=4)

    assert CALLS == ["app", "zip"]
    assert result.aborted_stage == "package"


def test_custom_stages_only_cover_their_categories():
    tree = _tree(
        packagers=[_handler("zip", Category.PACKAGER)],
        uploads=[_handler("s3", Category.UPLOADER)],
    )

    result = _run(tree, stages=[Stage("publish", (Category.UPLOADER,))])

    assert CALLS == ["s3"]
    assert list(result.outcomes) == [_identity(Category.UPLOADER, "s3")]
