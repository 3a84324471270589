"""Tests for CLI module."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from convoy.application.dtos.deployment_dtos import DeployServiceResponse
from convoy.application.planning.deployment_planner import DeploymentPlanner
from convoy.domain.entities.deployment_report import (
    DeploymentOutcome,
    DeploymentReport,
    ErrorRecord,
    OverallStatus,
)
from convoy.domain.entities.host_state import HostDeploymentState as S
from convoy.domain.errors import InvalidDescriptor, PermanentExecutionError, ServiceNotFound
from convoy.domain.value_objects.policies import FleetPolicy
from convoy.presentation.cli.cli import async_main, format_summary
from conftest import make_descriptor

NO_CONFIG = "/nonexistent/convoy.json"
DEPLOY = ["convoy", "--config", NO_CONFIG, "deploy", "--env", "qa", "--service", "billing-api"]


def _plan(hosts=2):
    return DeploymentPlanner().plan(make_descriptor(hosts), FleetPolicy(max_parallel=2))


def _report(plan, status, final_state=S.SUCCEEDED):
    outcomes = {}
    for host in plan.hosts:
        errors = ()
        if final_state is not S.SUCCEEDED:
            errors = (ErrorRecord.from_exception(S.UPDATING, PermanentExecutionError("denied")),)
        outcomes[host] = DeploymentOutcome(host, final_state, attempt_count=1, errors=errors)
    return DeploymentReport(plan.descriptor, outcomes, status)


def _make_container(response=None, error=None):
    container = MagicMock()
    container.deploy_service = MagicMock()
    if error is not None:
        container.deploy_service.execute = AsyncMock(side_effect=error)
    else:
        container.deploy_service.execute = AsyncMock(return_value=response)
    return container


async def _run(argv, container):
    with patch("sys.argv", argv):
        with patch("convoy.composition_root.create_container", return_value=container):
            await async_main()


class TestCLIHelp:
    @pytest.mark.asyncio
    async def test_no_command_prints_help(self, capsys):
        with patch("sys.argv", ["convoy", "--config", NO_CONFIG]):
            await async_main()
        assert "batched, canary-aware" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_help_flag(self):
        with patch("sys.argv", ["convoy", "--help"]), \
             pytest.raises(SystemExit, match="0"):
            await async_main()

    @pytest.mark.asyncio
    async def test_deploy_help(self, capsys):
        with patch("sys.argv", ["convoy", "deploy", "--help"]), \
             pytest.raises(SystemExit, match="0"):
            await async_main()
        out = capsys.readouterr().out
        assert "--canary-fraction" in out
        assert "--rollback-on-abort" in out

    @pytest.mark.asyncio
    async def test_unknown_environment_exits_3(self, capsys):
        with pytest.raises(SystemExit) as exc:
            await async_main(["deploy", "--env", "staging", "--service", "x"])
        assert exc.value.code == 3
        assert "invalid choice" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_missing_service_exits_3(self):
        with pytest.raises(SystemExit) as exc:
            await async_main(["deploy", "--env", "qa"])
        assert exc.value.code == 3

    @pytest.mark.asyncio
    async def test_malformed_number_exits_3(self):
        with pytest.raises(SystemExit) as exc:
            await async_main(DEPLOY[1:] + ["--max-parallel", "many"])
        assert exc.value.code == 3


class TestDeployCommand:
    @pytest.mark.asyncio
    async def test_success_prints_summary(self, capsys):
        plan = _plan()
        container = _make_container(
            DeployServiceResponse(plan, _report(plan, OverallStatus.ALL_SUCCEEDED))
        )

        await _run(DEPLOY, container)

        out = capsys.readouterr().out
        assert "HOST" in out and "LAST ERROR" in out
        assert str(plan.hosts[0]) in out
        assert "[+] billing-api 2.0.0: AllSucceeded" in out

    @pytest.mark.asyncio
    async def test_request_carries_flags(self):
        plan = _plan()
        container = _make_container(
            DeployServiceResponse(plan, _report(plan, OverallStatus.ALL_SUCCEEDED))
        )

        await _run(DEPLOY + [
            "--registry", "mirror.local", "--max-parallel", "3",
            "--canary-fraction", "0.2", "--failure-threshold", "0.5", "--rollback-on-abort",
        ], container)

        request, token = container.deploy_service.execute.await_args.args
        assert request.registry == "mirror.local"
        assert request.max_parallel == 3
        assert request.canary_fraction == 0.2
        assert request.failure_threshold == 0.5
        assert request.rollback_on_abort is True
        assert request.dry_run is False
        assert not token.cancelled

    @pytest.mark.asyncio
    async def test_rollback_flag_defaults_to_config(self):
        plan = _plan()
        container = _make_container(
            DeployServiceResponse(plan, _report(plan, OverallStatus.ALL_SUCCEEDED))
        )
        await _run(DEPLOY, container)
        request, _ = container.deploy_service.execute.await_args.args
        assert request.rollback_on_abort is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,final_state,code", [
        (OverallStatus.PARTIAL_FAILURE, S.FAILED, 1),
        (OverallStatus.ABORTED, S.FAILED, 1),
        (OverallStatus.ROLLED_BACK, S.ROLLED_BACK, 2),
    ])
    async def test_exit_codes(self, capsys, status, final_state, code):
        plan = _plan()
        container = _make_container(
            DeployServiceResponse(plan, _report(plan, status, final_state))
        )

        with pytest.raises(SystemExit) as exc:
            await _run(DEPLOY, container)

        assert exc.value.code == code
        out = capsys.readouterr().out
        assert f"[-] billing-api 2.0.0: {status.value}" in out
        assert "PermanentExecutionError: denied" in out

    @pytest.mark.asyncio
    async def test_invalid_descriptor_exits_3(self, capsys):
        container = _make_container(
            error=InvalidDescriptor(["targetHosts is empty", "version is empty"])
        )
        with pytest.raises(SystemExit) as exc:
            await _run(DEPLOY, container)
        assert exc.value.code == 3
        out = capsys.readouterr().out
        assert "- targetHosts is empty" in out
        assert "- version is empty" in out

    @pytest.mark.asyncio
    async def test_unknown_service_exits_3(self, capsys):
        container = _make_container(error=ServiceNotFound("Unknown service 'billing-api'"))
        with pytest.raises(SystemExit) as exc:
            await _run(DEPLOY, container)
        assert exc.value.code == 3
        assert "Could not resolve billing-api/qa" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_invalid_flag_value_exits_3(self, capsys):
        container = _make_container()
        with pytest.raises(SystemExit) as exc:
            await _run(DEPLOY + ["--max-parallel", "0"], container)
        assert exc.value.code == 3
        container.deploy_service.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_policy_error_exits_3(self):
        container = _make_container(error=ValueError("canary_fraction must be in (0, 1]"))
        with pytest.raises(SystemExit) as exc:
            await _run(DEPLOY + ["--canary-fraction", "3"], container)
        assert exc.value.code == 3

    @pytest.mark.asyncio
    async def test_unexpected_error_exits_1(self, capsys):
        container = _make_container(error=RuntimeError("event loop exploded"))
        with pytest.raises(SystemExit) as exc:
            await _run(DEPLOY, container)
        assert exc.value.code == 1
        assert "Deployment Failed: event loop exploded" in capsys.readouterr().out


class TestOutputModes:
    @pytest.mark.asyncio
    async def test_dry_run_prints_plan(self, capsys):
        plan = _plan(3)
        container = _make_container(DeployServiceResponse(plan))

        await _run(DEPLOY + ["--dry-run"], container)

        out = capsys.readouterr().out
        assert "Plan for billing-api 2.0.0" in out
        assert "batch 2" in out
        assert "nothing executed" in out
        request, _ = container.deploy_service.execute.await_args.args
        assert request.dry_run is True

    @pytest.mark.asyncio
    async def test_json_report(self, capsys):
        plan = _plan()
        container = _make_container(
            DeployServiceResponse(plan, _report(plan, OverallStatus.ALL_SUCCEEDED))
        )

        await _run(DEPLOY + ["--json"], container)

        data = json.loads(capsys.readouterr().out)
        assert data["overall_status"] == "AllSucceeded"
        assert len(data["outcomes"]) == 2
        assert data["events"] == []

    @pytest.mark.asyncio
    async def test_json_dry_run(self, capsys):
        container = _make_container(DeployServiceResponse(_plan()))
        await _run(DEPLOY + ["--dry-run", "--json"], container)
        data = json.loads(capsys.readouterr().out)
        assert data["dry_run"] is True
        assert "Plan for billing-api" in data["plan"]


class TestFormatSummary:
    def test_columns_are_aligned(self):
        plan = _plan()
        lines = format_summary(_report(plan, OverallStatus.PARTIAL_FAILURE, S.FAILED)).splitlines()
        assert lines[0].startswith("HOST")
        assert set(lines[1].replace(" ", "")) == {"-"}
        assert len(lines) == 2 + len(plan.hosts)
        state_col = lines[0].index("STATE")
        assert all(line[state_col:].startswith("Failed") for line in lines[2:])
