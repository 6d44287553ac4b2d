"""Configuration for the test runner."""

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr

DEFAULT_TIMEOUT = 300
DEFAULT_RETRY_INTERVAL = 5
DEFAULT_CHECKPOINT_NAME = "ICABase"


class RunnerConfig(BaseModel):
    """Configuration shared by every test in a run."""

    username: str
    password: SecretStr
    key_file: Path | None = None
    scripts_dir: Path = Path("scripts")
    log_dir: Path = Path("logs")
    work_dir: Path = Path("work")
    deploy_per_test: bool = False
    checkpoint_restore: bool = True
    checkpoint_name: str = DEFAULT_CHECKPOINT_NAME
    readiness_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    retry_interval: float = Field(default=DEFAULT_RETRY_INTERVAL, gt=0)
    powershell: str = "pwsh"
