"""CLI entry point for running test suites on virtual machines."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from vmtest_runner.config import RunnerConfig
from vmtest_runner.definition_loader import load_test_suite
from vmtest_runner.models.result import TestResultRecord, Verdict
from vmtest_runner.orchestrator import TestOrchestrator
from vmtest_runner.platforms.loading import load_platform_manifest

VERDICT_SYMBOLS = {
    Verdict.PASSED: "✅",
    Verdict.FAILED: "❌",
    Verdict.ABORTED: "❗",
    Verdict.UNKNOWN: "❔",
}


def log_results_summary(
    log: logging.Logger, results: Sequence[TestResultRecord]
) -> None:
    """Log a formatted summary of test results."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for result in results:
        symbol = VERDICT_SYMBOLS.get(result.verdict, "?")
        log.info("%s %s: %s (%.2fs)", symbol, result.name, result.verdict, result.duration)
        if result.message:
            log.info("  Message: %s", result.message)


def format_output(results: Sequence[TestResultRecord]) -> dict[str, Any]:
    """Format test results for JSON output."""
    all_results = [
        {
            "name": result.name,
            "verdict": str(result.verdict),
            "duration": result.duration,
            "summary": result.summary,
            "message": result.message,
        }
        for result in results
    ]

    return {
        "total": len(all_results),
        "passed": sum(1 for r in results if r.verdict is Verdict.PASSED),
        "failed": sum(1 for r in results if r.verdict is Verdict.FAILED),
        "aborted": sum(1 for r in results if r.verdict is Verdict.ABORTED),
        "unknown": sum(1 for r in results if r.verdict is Verdict.UNKNOWN),
        "results": all_results,
    }


async def run(
    platform_key: str,
    platform_config_json: str,
    runner_config_json: str,
    suite_path: Path,
    setup_only: bool = False,
) -> int:
    """Run a test suite and return exit code."""
    log = logging.getLogger("vmtest_runner")

    log.info("Loading platform: %s", platform_key)
    manifest = load_platform_manifest(platform_key)
    platform_config = manifest.config_cls(**json.loads(platform_config_json))
    runner_config = RunnerConfig(**json.loads(runner_config_json))

    async with manifest.platform_factory(platform_config) as platform:
        orchestrator = TestOrchestrator.create(platform, runner_config)

        if setup_only:
            ctx = await orchestrator.setup_environment()
            machines = [
                {"role_name": m.role_name, "address": m.address, "port": m.port}
                for m in ctx.machines
            ]
            print(json.dumps({"machines": machines}, indent=2))
            return 0

        log.info("Loading test suite %s", suite_path)
        suite = await load_test_suite(suite_path)
        results = await orchestrator.run_tests(suite.tests)

    log_results_summary(log, results)
    print(json.dumps(format_output(results), indent=2))

    return 1 if any(r.verdict is not Verdict.PASSED for r in results) else 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run test suites on cloud or hypervisor virtual machines"
    )
    parser.add_argument(
        "--platform",
        required=True,
        help="Platform key (azure, hyperv)",
    )
    parser.add_argument(
        "--platform-config",
        required=True,
        help="JSON configuration for the platform",
    )
    parser.add_argument(
        "--runner-config",
        required=True,
        help="JSON configuration for credentials, directories and policies",
    )
    parser.add_argument(
        "--suite",
        type=Path,
        default=Path("tests.yaml"),
        help="Path to the test suite YAML file",
    )
    parser.add_argument(
        "--setup-only",
        action="store_true",
        help="Deploy machines and exit without running tests",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(
        run(
            platform_key=args.platform,
            platform_config_json=args.platform_config,
            runner_config_json=args.runner_config,
            suite_path=args.suite,
            setup_only=args.setup_only,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
