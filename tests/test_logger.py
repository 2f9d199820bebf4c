import logging

from releaseflow.core.logger import _RUN_ID, configure_root_logger, get_logger, push_run_id, reset_run_id


def test_run_id_is_pushed_and_reset():
    token = push_run_id("run-42")
    assert _RUN_ID.get() == "run-42"

    reset_run_id(token)
    assert _RUN_ID.get() == "-"


def test_empty_run_id_is_ignored():
    assert push_run_id(None) is None
    reset_run_id(None)


def test_configure_does_not_duplicate_handlers():
    configure_root_logger("INFO")
    before = len(logging.getLogger().handlers)

    configure_root_logger("DEBUG")
    get_logger("releaseflow.test")

    assert len(logging.getLogger().handlers) == before
    assert logging.getLogger("releaseflow").level == logging.DEBUG
    configure_root_logger("INFO")
