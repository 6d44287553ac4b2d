"""Shared fixtures for unit tests."""

from pathlib import Path
from unittest.mock import Mock

import pytest
from pydantic import SecretStr

from vmtest_runner.config import RunnerConfig
from vmtest_runner.transport import CommandResult, RemoteShell


@pytest.fixture
def runner_config(tmp_path: Path) -> RunnerConfig:
    """Runner configuration rooted in a temporary directory."""
    scripts_dir = tmp_path / "scripts"
    scripts_dir.mkdir()
    return RunnerConfig(
        username="tester",
        password=SecretStr("s3cret"),
        scripts_dir=scripts_dir,
        log_dir=tmp_path / "logs",
        work_dir=tmp_path / "work",
        readiness_timeout=1,
        retry_interval=0.01,
    )


@pytest.fixture
def shell_mock() -> Mock:
    """Remote shell whose commands succeed with empty output."""
    shell = Mock(spec=RemoteShell)
    ok = CommandResult(returncode=0, stdout="", stderr="")
    shell.run.return_value = ok
    shell.run_privileged.return_value = ok
    return shell
