import json
from pathlib import Path

import pytest

from polyscript.logging import get_logger, setup_logging


def test_log_file_receives_json_lines(tmp_path: Path) -> None:
    log_file = tmp_path / "daemon.log"
    setup_logging(level="info", log_file=log_file)

    get_logger("daemon.server").info("Listening", socket="/tmp/ps/d.sock")

    entry = json.loads(log_file.read_text(encoding="utf-8").splitlines()[-1])
    assert entry["event"] == "Listening"
    assert entry["module"] == "daemon.server"
    assert entry["socket"] == "/tmp/ps/d.sock"
    assert entry["level"] == "info"


def test_level_filters_debug_output(capsys: pytest.CaptureFixture[str]) -> None:
    setup_logging(level="info", json_output=True)
    logger = get_logger("runner")

    logger.debug("hidden")
    logger.warning("shown", exit_code=3)

    err = capsys.readouterr().err
    assert "hidden" not in err
    entry = json.loads(err.strip().splitlines()[-1])
    assert entry["event"] == "shown"
    assert entry["exit_code"] == 3
