"""Test orchestrator for running test cases against deployed machines."""

import asyncio
import logging
from collections.abc import Sequence
from contextlib import AsyncExitStack
from dataclasses import dataclass

from vmtest_runner.collector import LogCollector
from vmtest_runner.config import DEFAULT_TIMEOUT, RunnerConfig
from vmtest_runner.context import RunContext
from vmtest_runner.deployment import DeploymentController
from vmtest_runner.dispatch import ScriptDispatcher
from vmtest_runner.errors import (
    ConfigurationError,
    ProvisioningError,
    ReadinessTimeoutError,
    RemoteExecutionTimeout,
)
from vmtest_runner.models.definition import TestDefinition
from vmtest_runner.models.result import (
    ScriptOutcome,
    TestResultRecord,
    Verdict,
    aggregate_verdicts,
)
from vmtest_runner.parameters import resolve_parameters
from vmtest_runner.platforms.base import Platform
from vmtest_runner.scripts import ScriptKind, classify_script
from vmtest_runner.transport import RemoteShell, home_directory

log = logging.getLogger(__name__)

DISTRO_COMMAND = ". /etc/os-release && echo $ID"
KERNEL_LOG_COMMAND = "dmesg"
CALL_TRACE_MARKER = "Call Trace"


@dataclass(frozen=True, kw_only=True)
class TestOrchestrator:
    """Orchestrates the full lifecycle of test cases on one platform."""

    __test__ = False

    platform: Platform
    config: RunnerConfig
    shell: RemoteShell
    controller: DeploymentController
    dispatcher: ScriptDispatcher
    collector: LogCollector

    @classmethod
    def create(cls, platform: Platform, config: RunnerConfig) -> "TestOrchestrator":
        """Build an orchestrator and its collaborators from configuration."""
        shell = RemoteShell.from_config(config)
        return cls(
            platform=platform,
            config=config,
            shell=shell,
            controller=DeploymentController(
                platform=platform,
                shell=shell,
                checkpoint_restore=config.checkpoint_restore,
                checkpoint_name=config.checkpoint_name,
                readiness_timeout=config.readiness_timeout,
                retry_interval=config.retry_interval,
            ),
            dispatcher=ScriptDispatcher(
                shell=shell,
                scripts_dir=config.scripts_dir,
                work_dir=config.work_dir,
                powershell=config.powershell,
            ),
            collector=LogCollector(
                shell=shell,
                log_dir=config.log_dir,
                remote_home=home_directory(config.username),
            ),
        )

    async def run_tests(
        self, tests: Sequence[TestDefinition]
    ) -> Sequence[TestResultRecord]:
        """Run test cases in order and return one record per test.

        Machines are shared between tests unless a test or the configuration
        asks for a fresh deployment. A shared deployment is removed once all
        tests have run.
        """
        if not tests:
            log.info("No tests provided")
            return []

        location = await self.platform.resolve_location()
        log.info(
            "Running %d test(s) on %s in %s", len(tests), self.platform.name, location
        )

        previous = RunContext(platform=self.platform.name, location=location)
        results: list[TestResultRecord] = []
        for test in tests:
            ctx = RunContext(
                platform=previous.platform,
                location=previous.location,
                machines=previous.machines,
                deployment=previous.deployment,
                checkpoints=previous.checkpoints,
                root_enabled=previous.root_enabled,
                distro=previous.distro,
            )
            result = await self.run_test(test, ctx)
            log.info(
                "Test completed: name=%s verdict=%s duration=%.1fs",
                result.name,
                result.verdict,
                result.duration,
            )
            results.append(result)
            previous = ctx

        if previous.deployment is not None:
            await self._deprovision(previous)

        log.info("Test execution completed")
        return results

    async def setup_environment(self) -> RunContext:
        """Deploy machines once without running any test."""
        location = await self.platform.resolve_location()
        ctx = RunContext(platform=self.platform.name, location=location)
        await self.controller.prepare(ctx, fresh=True)
        return ctx

    async def run_test(self, test: TestDefinition, ctx: RunContext) -> TestResultRecord:
        """Run a single test case and always return its record."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        fresh = self.config.deploy_per_test or test.deploy_fresh

        log.info("Starting test %s", test.name)
        try:
            await self.controller.prepare(ctx, fresh=fresh)
        except (ProvisioningError, ReadinessTimeoutError) as exc:
            log.error("Test %s aborted: %s", test.name, exc)
            await self._deprovision(ctx)
            return self._aborted(test, loop.time() - started, exc)
        except Exception as exc:
            log.error("Test %s aborted: %s", test.name, exc, exc_info=exc)
            await self._deprovision(ctx)
            return self._aborted(test, loop.time() - started, exc)

        outcomes: list[ScriptOutcome] = []
        message: str | None = None
        try:
            outcomes.append(await self._execute(test, ctx))
        except RemoteExecutionTimeout as exc:
            log.error("Test %s timed out: %s", test.name, exc)
            message = str(exc)
            outcomes.append(ScriptOutcome(verdict=Verdict.FAILED))
        except Exception as exc:
            log.error("Test %s failed: %s", test.name, exc, exc_info=exc)
            message = str(exc)
            outcomes.append(ScriptOutcome(verdict=Verdict.ABORTED))

        verdict = aggregate_verdicts(outcome.verdict for outcome in outcomes)

        if fresh:
            try:
                await self.cleanup(test, ctx)
            except Exception as exc:
                log.error("Cleanup of %s failed: %s", test.name, exc, exc_info=exc)

        return TestResultRecord(
            name=test.name,
            verdict=verdict,
            summary=outcomes[-1].summary,
            duration=loop.time() - started,
            message=message,
        )

    async def _execute(self, test: TestDefinition, ctx: RunContext) -> ScriptOutcome:
        ctx.timeout = test.timeout or DEFAULT_TIMEOUT
        ctx.distro = await self.detect_distro(ctx)
        ctx.parameters = resolve_parameters(
            test.parameters, ctx, self.config.password.get_secret_value()
        )
        log.info("Resolved %d parameter(s) for %s", len(ctx.parameters), test.name)

        await self.run_hook_scripts(test.setup_scripts, ctx)
        await self.upload_files(test.files, ctx)

        outcome = await self.dispatcher.dispatch(test.script, test.name, ctx)
        if outcome is None:
            outcome = await self.collector.collect(
                ctx.primary, classify_script(test.script), test.name
            )
        return outcome

    async def detect_distro(self, ctx: RunContext) -> str | None:
        """Return the os-release ID of the primary machine."""
        result = await self.shell.run(ctx.primary, DISTRO_COMMAND, check=False)
        distro = result.stdout.strip()
        log.info("Detected distribution %s on %s", distro or "?", ctx.primary.role_name)
        return distro or None

    async def run_hook_scripts(self, scripts: Sequence[str], ctx: RunContext) -> None:
        """Run host-local scripts in order while every machine is stopped.

        Machines are started again after each script, even if it fails.
        """
        if not scripts:
            return

        for script in scripts:
            if classify_script(script) is not ScriptKind.HOST_LOCAL:
                raise ConfigurationError(f"Hook script {script} must be a .ps1 script")

            log.info("Running hook script %s", script)
            async with AsyncExitStack() as stack:
                for machine in ctx.machines:
                    await stack.enter_async_context(
                        self.platform.machine_stopped(machine)
                    )
                outcome = await self.dispatcher.run_host_local(script, ctx)
            log.info("Hook script %s finished: %s", script, outcome.summary)

        await self.controller.probe(ctx)

    async def upload_files(self, files: Sequence[str], ctx: RunContext) -> None:
        """Upload the test's file dependencies to every machine."""
        if not files:
            return
        paths = [self.config.scripts_dir / name for name in files]
        for machine in ctx.machines:
            log.info("Uploading %d file(s) to %s", len(paths), machine.role_name)
            await self.shell.upload(machine, paths)

    async def check_kernel_logs(self, test: TestDefinition, ctx: RunContext) -> bool:
        """Save dmesg of every machine and report whether it is clean."""
        clean = True
        destination = self.config.log_dir / test.name
        destination.mkdir(parents=True, exist_ok=True)
        for machine in ctx.machines:
            result = await self.shell.run_privileged(
                machine, KERNEL_LOG_COMMAND, check=False
            )
            (destination / f"dmesg_{machine.role_name}.log").write_text(result.stdout)
            if CALL_TRACE_MARKER in result.stdout:
                log.warning("Kernel call trace found on %s", machine.role_name)
                clean = False
        return clean

    async def cleanup(self, test: TestDefinition, ctx: RunContext) -> None:
        """Run cleanup scripts and the kernel log check, then deprovision."""
        log.info("Cleaning up after %s", test.name)
        try:
            await self.run_hook_scripts(test.cleanup_scripts, ctx)
            if test.skip_kernel_log_check or not ctx.freshly_deployed:
                log.info("Skipping kernel log check for %s", test.name)
            elif await self.check_kernel_logs(test, ctx):
                log.info("Kernel logs of %s are clean", test.name)
            else:
                log.warning("Kernel log check of %s found call traces", test.name)
        finally:
            await self.controller.teardown(ctx)

    async def _deprovision(self, ctx: RunContext) -> None:
        try:
            await self.controller.teardown(ctx)
        except Exception as exc:
            log.error("Deprovisioning failed: %s", exc, exc_info=exc)

    @staticmethod
    def _aborted(
        test: TestDefinition, duration: float, exc: Exception
    ) -> TestResultRecord:
        return TestResultRecord(
            name=test.name,
            verdict=Verdict.ABORTED,
            duration=duration,
            message=str(exc),
        )
