"""
Tests for shared/logging_config.py
"""

import logging

import pytest

from shared.logging_config import setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("urllib3").setLevel(logging.NOTSET)


class TestSetupLogging:

    def test_returns_component_logger(self):
        logger = setup_logging("bmc", level=logging.DEBUG)
        assert logger.name == "bmc"
        assert logging.getLogger().level == logging.DEBUG
        # connection pool chatter stays at INFO even in debug mode
        assert logging.getLogger("urllib3").level == logging.INFO

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "bmc.log"
        logger = setup_logging("bmc", log_file=str(log_file))
        logger.info("volume created")
        for handler in logging.getLogger().handlers:
            handler.flush()
        text = log_file.read_text()
        assert "[BMC] INFO - bmc - volume created" in text

    def test_urllib3_follows_stricter_level(self):
        """A WARNING service level should not be loosened to INFO for urllib3"""
        setup_logging("bmc", level=logging.WARNING)
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_poll_loop_messages_reach_stdout(self, capsys):
        setup_logging("bmc")
        logging.getLogger("bmc.services.task_supervisor").info("Task /redfish/v1/TaskService/Tasks/7 state: Running")
        out = capsys.readouterr().out
        assert "[BMC] INFO - bmc.services.task_supervisor - Task /redfish/v1/TaskService/Tasks/7 state: Running" in out
