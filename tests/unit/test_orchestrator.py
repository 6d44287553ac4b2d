"""Tests for test orchestrator."""

import logging
from unittest.mock import AsyncMock, Mock

import pytest

from vmtest_runner.collector import STATE_FILE, LogCollector
from vmtest_runner.config import RunnerConfig
from vmtest_runner.constants import CONSTANTS_FILE, parse_constants
from vmtest_runner.context import RunContext
from vmtest_runner.deployment import WIPE_HOME_COMMAND, DeploymentController
from vmtest_runner.dispatch import ScriptDispatcher
from vmtest_runner.errors import RemoteCommandError, RemoteExecutionTimeout
from vmtest_runner.models.machine import MachineDescriptor
from vmtest_runner.models.result import Verdict
from vmtest_runner.orchestrator import KERNEL_LOG_COMMAND, TestOrchestrator
from vmtest_runner.testing.factories import TestDefinitionFactory
from vmtest_runner.testing.platform import FakePlatform, always_reachable
from vmtest_runner.testing.shell import fake_downloads
from vmtest_runner.transport import CommandResult

OK = CommandResult(returncode=0, stdout="", stderr="")


def build_orchestrator(
    platform: FakePlatform, config: RunnerConfig, shell: Mock
) -> TestOrchestrator:
    """Orchestrator wired to a fake platform and a mocked shell."""
    return TestOrchestrator(
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
            check_reachable=always_reachable,
        ),
        dispatcher=ScriptDispatcher(
            shell=shell, scripts_dir=config.scripts_dir, work_dir=config.work_dir
        ),
        collector=LogCollector(
            shell=shell, log_dir=config.log_dir, remote_home="/home/tester"
        ),
    )


@pytest.fixture
def platform() -> FakePlatform:
    """Fake platform with one role."""
    return FakePlatform()


@pytest.fixture
def orchestrator(
    platform: FakePlatform, runner_config: RunnerConfig, shell_mock: Mock
) -> TestOrchestrator:
    """Orchestrator sharing one deployment across tests."""
    return build_orchestrator(platform, runner_config, shell_mock)


@pytest.fixture
def completed(shell_mock: Mock) -> Mock:
    """Shell whose scripts report TestCompleted."""
    fake_downloads(
        shell_mock, {STATE_FILE: "TestCompleted\n", "SMOKE_summary.log": "all good\n"}
    )
    return shell_mock


async def test_returns_empty_when_no_tests(
    orchestrator: TestOrchestrator, platform: FakePlatform
) -> None:
    """Returns an empty list and provisions nothing."""
    assert await orchestrator.run_tests([]) == []
    assert platform.calls == []


async def test_shell_script_with_secret_parameter_passes(
    orchestrator: TestOrchestrator,
    completed: Mock,
    runner_config: RunnerConfig,
) -> None:
    """A shell script reporting TestCompleted yields Passed."""
    test = TestDefinitionFactory.build(
        name="SMOKE", script="foo.sh", parameters=["SECRET_PARAMS=(Password)"]
    )

    results = await orchestrator.run_tests([test])

    assert len(results) == 1
    assert results[0].name == "SMOKE"
    assert results[0].verdict is Verdict.PASSED
    assert results[0].summary == "TestCompleted"
    assert results[0].message is None

    constants = parse_constants((runner_config.work_dir / CONSTANTS_FILE).read_text())
    assert constants["PASSWD"] == "s3cret"
    assert "SECRET_PARAMS" not in constants


async def test_script_runs_on_probed_address(
    orchestrator: TestOrchestrator, completed: Mock
) -> None:
    """The script targets the address found by the readiness probe."""
    test = TestDefinitionFactory.build(name="SMOKE", script="foo.sh")

    await orchestrator.run_tests([test])

    machine = completed.run_privileged.await_args_list[0].args[0]
    assert machine.role_name == "role-0"
    assert machine.address == "10.0.0.1"


async def test_readiness_timeout_aborts_test(
    runner_config: RunnerConfig, shell_mock: Mock
) -> None:
    """A machine that never gets an address aborts the test."""
    platform = FakePlatform(roles=("server",), addresses={"server": (None,)})
    config = runner_config.model_copy(
        update={"readiness_timeout": 0.05, "retry_interval": 0.01}
    )
    orchestrator = build_orchestrator(platform, config, shell_mock)
    test = TestDefinitionFactory.build(name="NET-01", script="net.sh")

    results = await orchestrator.run_tests([test])

    assert results[0].verdict is Verdict.ABORTED
    assert "server" in results[0].message
    assert ("deprovision", "fake-1") in platform.calls
    shell_mock.run_privileged.assert_not_called()


async def test_provisioning_failure_aborts_test(
    runner_config: RunnerConfig, shell_mock: Mock
) -> None:
    """A failed provisioning aborts the test without running anything."""
    platform = FakePlatform(fail_provision=True)
    orchestrator = build_orchestrator(platform, runner_config, shell_mock)
    test = TestDefinitionFactory.build(name="NET-01", script="net.sh")

    results = await orchestrator.run_tests([test])

    assert results[0].verdict is Verdict.ABORTED
    assert results[0].message == "quota exceeded"
    assert all(name != "deprovision" for name, _ in platform.calls)
    shell_mock.upload.assert_not_called()


async def test_remote_timeout_fails_test_and_still_cleans_up(
    orchestrator: TestOrchestrator,
    platform: FakePlatform,
    shell_mock: Mock,
    runner_config: RunnerConfig,
) -> None:
    """A script that times out is Failed and the fresh deployment is removed."""

    async def run_privileged(machine, command, *, timeout=None, check=True):
        if command == KERNEL_LOG_COMMAND:
            return OK
        raise RemoteExecutionTimeout("Command timed out after 5s")

    shell_mock.run_privileged.side_effect = run_privileged
    test = TestDefinitionFactory.build(name="HANG", script="hang.sh", deploy_fresh=True)

    results = await orchestrator.run_tests([test])

    assert results[0].verdict is Verdict.FAILED
    assert results[0].message == "Command timed out after 5s"
    assert (runner_config.log_dir / "HANG" / "dmesg_role-0.log").exists()
    assert platform.calls.count(("deprovision", "fake-1")) == 1


async def test_unsupported_script_aborts_test(
    orchestrator: TestOrchestrator, shell_mock: Mock
) -> None:
    """An unknown script type is reported, not run."""
    test = TestDefinitionFactory.build(name="ODD", script="odd.rb")

    results = await orchestrator.run_tests([test])

    assert results[0].verdict is Verdict.ABORTED
    assert "odd.rb" in results[0].message
    shell_mock.run_privileged.assert_not_called()


async def test_host_local_script_uses_last_output_line(
    orchestrator: TestOrchestrator,
    shell_mock: Mock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A host-local script's verdict comes from its last line of output."""
    run_process = AsyncMock(
        return_value=CommandResult(
            returncode=0, stdout="checking\nTestFailed\n", stderr=""
        )
    )
    monkeypatch.setattr("vmtest_runner.dispatch.run_process", run_process)
    test = TestDefinitionFactory.build(name="HOST", script="host.ps1")

    results = await orchestrator.run_tests([test])

    assert results[0].verdict is Verdict.FAILED
    assert results[0].summary == "TestFailed"
    shell_mock.download.assert_not_called()


async def test_setup_scripts_run_with_machines_stopped(
    orchestrator: TestOrchestrator,
    platform: FakePlatform,
    completed: Mock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Setup scripts run while machines are off and addresses are re-probed."""
    state_during_hook: list[tuple[str, str]] = []

    async def run_process(args, *, timeout=None, env=None):
        state_during_hook.append(platform.calls[-1])
        return CommandResult(returncode=0, stdout="TestCompleted\n", stderr="")

    monkeypatch.setattr("vmtest_runner.dispatch.run_process", run_process)
    test = TestDefinitionFactory.build(
        name="SMOKE", script="foo.sh", setup_scripts=["nic.ps1"]
    )

    results = await orchestrator.run_tests([test])

    assert results[0].verdict is Verdict.PASSED
    assert state_during_hook == [("stop", "role-0")]
    hook_start = platform.calls.index(("stop", "role-0"), 3)
    assert platform.calls[hook_start : hook_start + 3] == [
        ("stop", "role-0"),
        ("start", "role-0"),
        ("lookup", "role-0"),
    ]


async def test_remote_setup_script_is_rejected(
    orchestrator: TestOrchestrator, shell_mock: Mock
) -> None:
    """Setup scripts must be host-local."""
    test = TestDefinitionFactory.build(
        name="SMOKE", script="foo.sh", setup_scripts=["prep.sh"]
    )

    results = await orchestrator.run_tests([test])

    assert results[0].verdict is Verdict.ABORTED
    assert "prep.sh" in results[0].message


async def test_shared_deployment_is_restored_and_removed_once(
    orchestrator: TestOrchestrator, platform: FakePlatform, completed: Mock
) -> None:
    """Tests share one deployment, restored from checkpoint between tests."""
    tests = [
        TestDefinitionFactory.build(name="SMOKE", script="foo.sh"),
        TestDefinitionFactory.build(name="SMOKE", script="bar.sh"),
    ]

    results = await orchestrator.run_tests(tests)

    assert [result.verdict for result in results] == [Verdict.PASSED] * 2
    assert platform.calls.count(("provision", "local")) == 1
    assert ("restore", "role-0:ICABase") in platform.calls
    assert platform.calls.count(("deprovision", "fake-1")) == 1
    assert platform.calls[-1] == ("deprovision", "fake-1")


async def test_deploy_per_test_provisions_each_time(
    runner_config: RunnerConfig, completed: Mock
) -> None:
    """Every test gets new machines when configured."""
    platform = FakePlatform()
    config = runner_config.model_copy(update={"deploy_per_test": True})
    orchestrator = build_orchestrator(platform, config, completed)
    tests = [
        TestDefinitionFactory.build(name="SMOKE", script="foo.sh"),
        TestDefinitionFactory.build(name="SMOKE", script="bar.sh"),
    ]

    await orchestrator.run_tests(tests)

    assert platform.calls.count(("provision", "local")) == 2
    assert platform.calls.count(("deprovision", "fake-1")) == 2


async def test_fresh_test_replaces_shared_deployment(
    runner_config: RunnerConfig, completed: Mock
) -> None:
    """A fresh test removes the shared deployment before provisioning."""
    platform = FakePlatform(deployment_ids=("dep-1", "dep-2"))
    orchestrator = build_orchestrator(platform, runner_config, completed)
    tests = [
        TestDefinitionFactory.build(name="SMOKE", script="foo.sh"),
        TestDefinitionFactory.build(name="SMOKE", script="bar.sh", deploy_fresh=True),
    ]

    results = await orchestrator.run_tests(tests)

    assert [result.verdict for result in results] == [Verdict.PASSED] * 2
    assert platform.calls.count(("deprovision", "dep-1")) == 1
    assert platform.calls.count(("deprovision", "dep-2")) == 1


async def test_restore_failure_aborts_test_and_removes_deployment(
    runner_config: RunnerConfig, completed: Mock
) -> None:
    """A failed checkpoint restore aborts only the affected test."""
    platform = FakePlatform(fail_restore=True)
    orchestrator = build_orchestrator(platform, runner_config, completed)
    tests = [
        TestDefinitionFactory.build(name="SMOKE", script="foo.sh"),
        TestDefinitionFactory.build(name="SMOKE", script="bar.sh"),
    ]

    results = await orchestrator.run_tests(tests)

    assert [result.verdict for result in results] == [
        Verdict.PASSED,
        Verdict.ABORTED,
    ]
    assert "Restore-VMSnapshot failed" in results[1].message
    assert platform.calls.count(("deprovision", "fake-1")) == 1


async def test_workspace_wipe_failure_aborts_test(
    runner_config: RunnerConfig, completed: Mock
) -> None:
    """A failed home directory wipe aborts the test instead of the run."""
    platform = FakePlatform(checkpoints=False)
    orchestrator = build_orchestrator(platform, runner_config, completed)

    async def run(machine, command, *, timeout=None, check=True, user=None):
        if command == WIPE_HOME_COMMAND:
            raise RemoteCommandError("ssh: connection reset")
        return OK

    completed.run.side_effect = run
    tests = [
        TestDefinitionFactory.build(name="SMOKE", script="foo.sh"),
        TestDefinitionFactory.build(name="SMOKE", script="bar.sh"),
    ]

    results = await orchestrator.run_tests(tests)

    assert [result.verdict for result in results] == [
        Verdict.PASSED,
        Verdict.ABORTED,
    ]
    assert results[1].message == "ssh: connection reset"
    assert platform.calls.count(("deprovision", "fake-1")) == 1


class TestKernelLogCheck:
    """Tests for the dmesg verification at teardown."""

    async def test_skipped_when_opted_out(
        self, orchestrator: TestOrchestrator, completed: Mock
    ) -> None:
        """No dmesg is read for tests that opt out."""
        test = TestDefinitionFactory.build(
            name="SMOKE",
            script="foo.sh",
            deploy_fresh=True,
            skip_kernel_log_check=True,
        )

        await orchestrator.run_tests([test])

        commands = [call.args[1] for call in completed.run_privileged.await_args_list]
        assert KERNEL_LOG_COMMAND not in commands

    async def test_reports_call_trace(
        self,
        orchestrator: TestOrchestrator,
        shell_mock: Mock,
        runner_config: RunnerConfig,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A call trace in dmesg is logged and saved."""
        shell_mock.run_privileged.return_value = CommandResult(
            returncode=0, stdout="[ 1.0] Call Trace:\n", stderr=""
        )
        ctx = RunContext(
            platform="fake",
            machines=(MachineDescriptor(role_name="role-0", address="10.0.0.1"),),
        )
        test = TestDefinitionFactory.build(name="KERN")

        clean = await orchestrator.check_kernel_logs(test, ctx)

        assert clean is False
        assert "Kernel call trace found on role-0" in caplog.text
        saved = runner_config.log_dir / "KERN" / "dmesg_role-0.log"
        assert saved.read_text() == "[ 1.0] Call Trace:\n"

    async def test_cleanup_logs_call_trace_result(
        self,
        orchestrator: TestOrchestrator,
        completed: Mock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A fresh test whose dmesg has a call trace is reported after cleanup."""
        completed.run_privileged.return_value = CommandResult(
            returncode=0, stdout="[ 1.0] Call Trace:\n", stderr=""
        )
        test = TestDefinitionFactory.build(
            name="SMOKE", script="foo.sh", deploy_fresh=True
        )

        await orchestrator.run_tests([test])

        assert "Kernel log check of SMOKE found call traces" in caplog.text

    async def test_cleanup_logs_clean_result(
        self,
        orchestrator: TestOrchestrator,
        completed: Mock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A clean dmesg is reported after cleanup."""
        test = TestDefinitionFactory.build(
            name="SMOKE", script="foo.sh", deploy_fresh=True
        )

        with caplog.at_level(logging.INFO):
            await orchestrator.run_tests([test])

        assert "Kernel logs of SMOKE are clean" in caplog.text


async def test_setup_environment_deploys_without_running(
    orchestrator: TestOrchestrator, platform: FakePlatform, shell_mock: Mock
) -> None:
    """Setup-only mode provisions and probes machines."""
    ctx = await orchestrator.setup_environment()

    assert ctx.deployment is not None
    assert [machine.address for machine in ctx.machines] == ["10.0.0.1"]
    assert ("checkpoint", "role-0:ICABase") in platform.calls
    shell_mock.run_privileged.assert_not_called()


def test_create_wires_collaborators(
    platform: FakePlatform, runner_config: RunnerConfig
) -> None:
    """The factory shares one shell between collaborators."""
    orchestrator = TestOrchestrator.create(platform, runner_config)

    assert orchestrator.controller.shell is orchestrator.shell
    assert orchestrator.dispatcher.shell is orchestrator.shell
    assert orchestrator.collector.log_dir == runner_config.log_dir
    assert orchestrator.collector.remote_home == "/home/tester"
    assert orchestrator.dispatcher.scripts_dir == runner_config.scripts_dir

