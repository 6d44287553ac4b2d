"""Loading of test suites from YAML files."""

import asyncio
from pathlib import Path

import yaml
from pydantic import ValidationError

from vmtest_runner.models.definition import TestSuite


async def load_test_suite(path: Path) -> TestSuite:
    """Load and validate a test suite file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is empty, not valid YAML or fails validation

    """
    if not path.is_file():
        raise FileNotFoundError(f"Test file not found: {path}")

    content = await asyncio.to_thread(path.read_text)

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        raise ValueError(f"Empty test file: {path}")

    try:
        return TestSuite.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid test definition in {path}: {exc}") from exc
