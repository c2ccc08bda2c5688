from __future__ import annotations

import sys
import textwrap

import pytest

from viralclip.agents.pool import AgentPool, AgentStatus
from viralclip.errors import AgentFailed, AgentTimeout

ECHO_WORKER = textwrap.dedent(
    """
    import json, sys
    request = json.loads(sys.stdin.read())
    print("working on " + request["task_id"], file=sys.stderr)
    print("progress line")
    print(json.dumps({"ok": True, "output": {"stage": request["stage"], "params": request["params"]}}))
    """
)

SLEEPING_WORKER = "import sys, time\nsys.stdin.read()\ntime.sleep(30)\n"

SILENT_WORKER = "import sys\nsys.stdin.read()\nsys.exit(3)\n"


def _pool(script: str, max_concurrent: int = 2) -> AgentPool:
    return AgentPool(max_concurrent, worker_command=[sys.executable, "-c", script])


def test_wait_returns_typed_response_from_last_stdout_line() -> None:
    pool = _pool(ECHO_WORKER)
    try:
        task = pool.spawn("analyze", "task-1", {"video_path": "/tmp/a.mp4"})
        response = pool.wait("task-1", timeout=30)
    finally:
        pool.shutdown()

    assert task is not None
    assert response.ok is True
    assert response.output == {"stage": "analyze", "params": {"video_path": "/tmp/a.mp4"}}
    assert task.status is AgentStatus.EXITED
    assert task.return_code == 0
    assert "working on task-1" in task.output_lines
    assert "progress line" in task.stdout_lines


def test_spawn_at_capacity_returns_none_and_keeps_count() -> None:
    pool = _pool(SLEEPING_WORKER, max_concurrent=2)
    try:
        assert pool.spawn("download", "a", {}) is not None
        assert pool.spawn("download", "b", {}) is not None
        assert pool.active_count == 2

        assert pool.spawn("download", "c", {}) is None
        assert pool.active_count == 2
        assert sorted(entry["id"] for entry in pool.list_active()) == ["a", "b"]
    finally:
        pool.shutdown()

    assert pool.active_count == 0


def test_spawn_rejects_duplicate_and_unknown_stage() -> None:
    pool = _pool(SLEEPING_WORKER)
    try:
        pool.spawn("extract", "dup", {})
        with pytest.raises(ValueError, match="already active"):
            pool.spawn("extract", "dup", {})
        with pytest.raises(ValueError, match="Unknown stage type"):
            pool.spawn("upload", "other", {})
    finally:
        pool.shutdown()


def test_wait_timeout_kills_agent() -> None:
    pool = _pool(SLEEPING_WORKER)
    try:
        task = pool.spawn("analyze", "slow", {})
        with pytest.raises(AgentTimeout, match="exceeded 0.5s"):
            pool.wait("slow", timeout=0.5)
    finally:
        pool.shutdown()

    assert task is not None
    assert task.status is AgentStatus.KILLED
    assert pool.active_count == 0


def test_wait_without_response_raises_agent_failed() -> None:
    pool = _pool(SILENT_WORKER)
    try:
        pool.spawn("download", "quiet", {})
        with pytest.raises(AgentFailed, match="exited with code 3 without a response") as excinfo:
            pool.wait("quiet", timeout=30)
    finally:
        pool.shutdown()

    assert excinfo.value.error_kind == "NoResponse"


def test_list_active_reports_uptime_and_output_counts() -> None:
    pool = _pool(SLEEPING_WORKER)
    try:
        pool.spawn("extract", "running", {})
        entries = pool.list_active()
    finally:
        pool.shutdown()

    assert len(entries) == 1
    assert entries[0]["stage_type"] == "extract"
    assert entries[0]["uptime"] >= 0
    assert entries[0]["output_line_count"] == 0


def test_pool_requires_positive_capacity() -> None:
    with pytest.raises(ValueError, match="max_concurrent must be at least 1"):
        AgentPool(0)


def test_exited_agent_is_deregistered_and_frees_its_slot() -> None:
    pool = _pool(SILENT_WORKER, max_concurrent=1)
    try:
        first = pool.spawn("download", "first", {})
        assert first is not None
        first.process.wait(timeout=30)

        assert pool.active_count == 0
        assert first.status is AgentStatus.EXITED
        assert first.return_code == 3
        assert pool.spawn("download", "second", {}) is not None
    finally:
        pool.shutdown()


def test_unclaimed_results_are_evicted_oldest_first() -> None:
    pool = AgentPool(1, worker_command=[sys.executable, "-c", SILENT_WORKER], finished_history=2)
    try:
        for index in range(5):
            task = pool.spawn("extract", f"job-{index}", {})
            assert task is not None
            task.process.wait(timeout=30)
            pool.list_active()

        with pytest.raises(KeyError, match="job-0"):
            pool.wait("job-0")
        with pytest.raises(AgentFailed, match="exited with code 3"):
            pool.wait("job-4")
    finally:
        pool.shutdown()


def test_pool_rejects_negative_finished_history() -> None:
    with pytest.raises(ValueError, match="finished_history must not be negative"):
        AgentPool(1, finished_history=-1)
