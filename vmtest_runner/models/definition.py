"""Models for test definitions loaded from tests.yaml files."""

from collections.abc import Sequence
from typing import Any

from pydantic import Field, field_validator

from vmtest_runner.models.base import Model


def _split_list(value: Any) -> Any:
    """Accept a comma-separated string wherever a list of names is expected."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class TestDefinition(Model):
    """A single test case and everything needed to run it."""

    __test__ = False

    name: str = Field(..., description="Test case name")
    script: str = Field(..., description="Test script file name (.sh, .py or .ps1)")
    parameters: Sequence[str] = Field(
        default_factory=list, description="Raw name=value parameter entries"
    )
    setup_scripts: Sequence[str] = Field(
        default_factory=list,
        description="Host-local scripts run with machines stopped, before the test",
    )
    cleanup_scripts: Sequence[str] = Field(
        default_factory=list,
        description="Host-local scripts run with machines stopped, at teardown",
    )
    files: Sequence[str] = Field(
        default_factory=list, description="Files uploaded to every machine"
    )
    timeout: int | None = Field(
        default=None, gt=0, description="Script timeout in seconds"
    )
    deploy_fresh: bool = Field(
        default=False, description="Provision new machines for this test"
    )
    skip_kernel_log_check: bool = Field(
        default=False, description="Skip dmesg verification at teardown"
    )

    @field_validator("setup_scripts", "cleanup_scripts", "files", mode="before")
    @classmethod
    def _comma_separated(cls, value: Any) -> Any:
        return _split_list(value)


class TestSuite(Model):
    """Complete test suite loaded from tests.yaml."""

    __test__ = False

    version: str = Field(..., description="Test suite schema version")
    tests: Sequence[TestDefinition] = Field(
        default_factory=list, description="Test cases in execution order"
    )
