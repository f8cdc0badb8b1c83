import logging

from shared.database import SessionLocal
from shared.models import SystemLog
from shared.utils.logger import bind_logger, debug_log, get_logger, log_error


def test_bind_logger_prefixes_context(caplog):
    log = bind_logger(get_logger("test"), message_id="1-0")
    log = bind_logger(log, task_id="abc")

    with caplog.at_level(logging.INFO, logger="requester"):
        log.info("hello")

    assert "[message_id=1-0 task_id=abc] hello" in caplog.text
    assert isinstance(log.logger, logging.Logger)


def test_debug_log_marks_custom_levels(caplog):
    with caplog.at_level(logging.INFO, logger="requester"):
        debug_log("all good", "SUCCESS")

    assert "[SUCCESS] all good" in caplog.text


def test_log_error_persists_system_log():
    try:
        raise ValueError("kaboom")
    except ValueError:
        log_error("Test", "something broke", task_id="task-1")

    db = SessionLocal()
    try:
        row = db.query(SystemLog).filter(SystemLog.task_id == "task-1").order_by(SystemLog.id.desc()).first()
    finally:
        db.close()

    assert row.level == "ERROR"
    assert row.source == "Test"
    assert row.message == "something broke"
    assert "ValueError: kaboom" in row.stack_trace
