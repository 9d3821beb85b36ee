import pytest
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from autofix.agents.ci_monitor import CIMonitor
from autofix.core.errors import GitHubAPIError


def _monitor(responses, **kwargs):
    client = MagicMock()
    client.list_check_runs = AsyncMock(side_effect=responses)
    return CIMonitor(client, timeout_seconds=kwargs.pop("timeout_seconds", 180), **kwargs), client


def _run(name, status="completed", conclusion="success"):
    return {"name": name, "status": status, "conclusion": conclusion}


def test_all_passed_after_pending():
    async def run_test():
        monitor, _ = _monitor([
            [_run("build", status="in_progress", conclusion=None)],
            [_run("build"), _run("lint")],
        ], interval_seconds=10)
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await monitor.wait_for_checks("octo", "shop", "abc1234")
        assert result.outcome == "all_passed"
        mock_sleep.assert_called_once_with(10)

    asyncio.run(run_test())


def test_empty_check_list_uses_short_interval():
    async def run_test():
        monitor, _ = _monitor([[], [_run("build")]], interval_seconds=10, empty_interval_seconds=5)
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await monitor.wait_for_checks("octo", "shop", "abc1234")
        assert result.all_passed
        mock_sleep.assert_called_once_with(5)

    asyncio.run(run_test())


def test_some_failed_lists_non_success_conclusions():
    async def run_test():
        monitor, _ = _monitor([[
            _run("build"),
            _run("eslint", conclusion="failure"),
            _run("deploy-preview", conclusion="cancelled"),
        ]])
        result = await monitor.wait_for_checks("octo", "shop", "abc1234")
        assert result.outcome == "some_failed"
        assert [(c.name, c.conclusion) for c in result.failed_checks] == [
            ("eslint", "failure"), ("deploy-preview", "cancelled"),
        ]

    asyncio.run(run_test())


def test_forbidden_skips_verification():
    async def run_test():
        monitor, client = _monitor([GitHubAPIError(403, "GET", "/check-runs", "forbidden")])
        result = await monitor.wait_for_checks("octo", "shop", "abc1234")
        assert result.outcome == "skipped"
        assert "403" in result.reason
        assert client.list_check_runs.await_count == 1

    asyncio.run(run_test())


def test_consecutive_errors_give_up():
    async def run_test():
        errors = [
            GitHubAPIError(500, "GET", "/check-runs", "boom"),
            httpx.ReadTimeout("slow"),
            GitHubAPIError(502, "GET", "/check-runs", "bad gateway"),
        ]
        monitor, client = _monitor(errors, max_consecutive_errors=3)
        with patch("asyncio.sleep", new_callable=AsyncMock):
            result = await monitor.wait_for_checks("octo", "shop", "abc1234")
        assert result.outcome == "skipped"
        assert result.reason.startswith("Too many errors")
        assert client.list_check_runs.await_count == 3

    asyncio.run(run_test())


def test_error_counter_resets_after_success():
    async def run_test():
        monitor, _ = _monitor([
            GitHubAPIError(500, "GET", "/check-runs", "boom"),
            [_run("build", status="queued", conclusion=None)],
            GitHubAPIError(500, "GET", "/check-runs", "boom"),
            [_run("build")],
        ], max_consecutive_errors=2)
        with patch("asyncio.sleep", new_callable=AsyncMock):
            result = await monitor.wait_for_checks("octo", "shop", "abc1234")
        assert result.all_passed

    asyncio.run(run_test())


def test_polling_window_times_out():
    async def run_test():
        client = MagicMock()
        client.list_check_runs = AsyncMock(return_value=[_run("build", status="in_progress", conclusion=None)])
        monitor = CIMonitor(client, timeout_seconds=30, interval_seconds=10)

        # Counter-based clock so time.time never runs out of values
        call_count = {"n": 0}

        def fake_time():
            call_count["n"] += 1
            return 1000.0 + call_count["n"] * 4

        with patch("autofix.agents.ci_monitor.time.time", side_effect=fake_time), \
             patch("asyncio.sleep", new_callable=AsyncMock):
            result = await monitor.wait_for_checks("octo", "shop", "abc1234")

        assert result.outcome == "timed_out"
        assert result.timeline[-1]["status"] == "timed_out"

    asyncio.run(run_test())


def test_timeline_records_status_changes():
    async def run_test():
        monitor, _ = _monitor([
            [],
            [_run("build", status="in_progress", conclusion=None)],
            [_run("build", status="in_progress", conclusion=None)],
            [_run("build")],
        ])
        with patch("asyncio.sleep", new_callable=AsyncMock):
            await monitor.wait_for_checks("octo", "shop", "abc1234")
        statuses = [event["status"] for event in monitor.get_timeline()]
        assert statuses == ["queued", "in_progress", "all_passed"]

    asyncio.run(run_test())


@pytest.mark.parametrize("conclusion", ["neutral", "skipped", "timed_out", None])
def test_any_non_success_conclusion_counts_as_failed(conclusion):
    async def run_test():
        monitor, _ = _monitor([[_run("build", conclusion=conclusion)]])
        result = await monitor.wait_for_checks("octo", "shop", "abc1234")
        assert result.some_failed

    asyncio.run(run_test())


def test_last_wait_is_clamped_to_remaining_budget():
    async def run_test():
        clock = {"now": 0.0}

        async def fake_sleep(seconds):
            clock["now"] += seconds

        client = MagicMock()
        client.list_check_runs = AsyncMock(return_value=[_run("build", status="in_progress", conclusion=None)])
        monitor = CIMonitor(client, timeout_seconds=25, interval_seconds=10)

        with patch("autofix.agents.ci_monitor.time.time", side_effect=lambda: clock["now"]), \
             patch("asyncio.sleep", new_callable=AsyncMock, side_effect=fake_sleep) as mock_sleep:
            result = await monitor.wait_for_checks("octo", "shop", "abc1234")

        assert result.outcome == "timed_out"
        assert [c.args[0] for c in mock_sleep.await_args_list] == [10, 10, 5]
        assert clock["now"] == 25

    asyncio.run(run_test())


def test_each_result_timeline_covers_its_own_poll():
    async def run_test():
        monitor, _ = _monitor([
            [_run("build", status="in_progress", conclusion=None)],
            [_run("eslint", conclusion="failure")],
            [_run("eslint")],
        ])
        with patch("asyncio.sleep", new_callable=AsyncMock):
            first = await monitor.wait_for_checks("octo", "shop", "abc1234")
            second = await monitor.wait_for_checks("octo", "shop", "def5678")

        assert [e["status"] for e in first.timeline] == ["in_progress", "some_failed"]
        assert [e["status"] for e in second.timeline] == ["all_passed"]
        assert {e["head_sha"] for e in second.timeline} == {"def5678"}
        assert len(monitor.get_timeline()) == 3

    asyncio.run(run_test())
