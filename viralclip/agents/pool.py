from __future__ import annotations

import logging
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from time import monotonic
from typing import IO, Any, Sequence

from viralclip.agents.contract import STAGE_TYPES, AgentRequest, AgentResponse, parse_response
from viralclip.errors import AgentFailed, AgentTimeout, EngineError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 4
DEFAULT_FINISHED_HISTORY = 16


class AgentStatus(str, Enum):
    SPAWNED = "spawned"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"


@dataclass(slots=True)
class AgentTask:
    """One worker process and its captured output."""

    task_id: str
    stage_type: str
    process: subprocess.Popen[str]
    started_at: float
    status: AgentStatus = AgentStatus.SPAWNED
    output_lines: list[str] = field(default_factory=list)
    stdout_lines: list[str] = field(default_factory=list)
    return_code: int | None = None
    readers: list[threading.Thread] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def uptime(self) -> float:
        return monotonic() - self.started_at

    def record(self, line: str, *, from_stdout: bool) -> None:
        with self.lock:
            self.output_lines.append(line)
            if from_stdout:
                self.stdout_lines.append(line)

    def snapshot_stdout(self) -> list[str]:
        with self.lock:
            return list(self.stdout_lines)


class AgentPool:
    """Bounded-concurrency supervisor for stage worker processes.

    The pool owns its task registry and is the only code that mutates it; all
    registry changes happen on the thread calling the pool. Reader threads only
    append to per-task buffers. There is no queue: a spawn at capacity returns
    ``None`` and the caller decides whether to retry.
    """

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        *,
        worker_command: Sequence[str] | None = None,
        config_path: str | None = None,
        finished_history: int = DEFAULT_FINISHED_HISTORY,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1.")
        if finished_history < 0:
            raise ValueError("finished_history must not be negative.")
        self.max_concurrent = max_concurrent
        self.worker_command = list(worker_command or [sys.executable, "-m", "viralclip.agents.worker"])
        self.config_path = config_path
        self._tasks: dict[str, AgentTask] = {}
        self.finished_history = finished_history
        self._finished: dict[str, AgentTask] = {}

    @property
    def active_count(self) -> int:
        self.reap()
        return len(self._tasks)

    def spawn(self, stage_type: str, task_id: str, params: dict[str, Any]) -> AgentTask | None:
        if stage_type not in STAGE_TYPES:
            raise ValueError(f"Unknown stage type '{stage_type}'. Expected one of: {', '.join(STAGE_TYPES)}.")

        self.reap()
        if task_id in self._tasks:
            raise ValueError(f"Task id '{task_id}' is already active.")
        if len(self._tasks) >= self.max_concurrent:
            logger.info("Rejecting task %s: %d/%d agents active", task_id, len(self._tasks), self.max_concurrent)
            return None

        request = AgentRequest(stage=stage_type, task_id=task_id, params=params, config_path=self.config_path)
        try:
            process = subprocess.Popen(
                self.worker_command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            raise EngineError(f"Could not start {stage_type} agent for task {task_id}: {exc}") from exc

        task = AgentTask(task_id=task_id, stage_type=stage_type, process=process, started_at=monotonic())
        task.readers = [
            _start_reader(task, process.stdout, from_stdout=True),
            _start_reader(task, process.stderr, from_stdout=False),
        ]
        self._tasks[task_id] = task

        try:
            if process.stdin is not None:
                process.stdin.write(request.model_dump_json())
                process.stdin.close()
        except (BrokenPipeError, OSError) as exc:
            logger.warning("[%s:%s] could not deliver request: %s", stage_type, task_id, exc)

        task.status = AgentStatus.RUNNING
        logger.info("Spawned %s agent for task %s", stage_type, task_id)
        return task

    def reap(self) -> list[AgentTask]:
        """Deregister every task whose process has exited; no restart or retry.

        Exited tasks stay available to ``wait`` until the oldest are evicted
        past ``finished_history``.
        """

        finished: list[AgentTask] = []
        for task_id, task in list(self._tasks.items()):
            return_code = task.process.poll()
            if return_code is None:
                continue
            self._finish(task, return_code)
            self._finished[task_id] = task
            finished.append(task)
        while len(self._finished) > self.finished_history:
            evicted = next(iter(self._finished))
            del self._finished[evicted]
            logger.debug("Dropped unclaimed result for task %s", evicted)
        return finished

    def list_active(self) -> list[dict[str, Any]]:
        self.reap()
        return [
            {
                "id": task_id,
                "stage_type": task.stage_type,
                "uptime": round(task.uptime, 3),
                "output_line_count": len(task.output_lines),
            }
            for task_id, task in self._tasks.items()
        ]

    def wait(self, task_id: str, timeout: float | None = None) -> AgentResponse:
        """Block until a task exits and return its typed response.

        On timeout the process is killed and AgentTimeout is raised.
        """

        task = self._tasks.get(task_id) or self._finished.pop(task_id, None)
        if task is None:
            raise KeyError(f"Unknown task id '{task_id}'.")

        if task.status is AgentStatus.RUNNING or task.status is AgentStatus.SPAWNED:
            try:
                return_code = task.process.wait(timeout=timeout or None)
            except subprocess.TimeoutExpired as exc:
                self._kill(task)
                raise AgentTimeout(
                    f"{task.stage_type} agent {task_id} exceeded {timeout:.1f}s and was killed",
                    error_kind="AgentTimeout",
                ) from exc
            self._finish(task, return_code)

        response = parse_response(task.snapshot_stdout())
        if response is None:
            raise AgentFailed(
                f"{task.stage_type} agent {task_id} exited with code {task.return_code} without a response",
                error_kind="NoResponse",
            )
        return response

    def shutdown(self) -> None:
        """Kill every active process and clear the registry."""

        if self._tasks:
            logger.info("Shutting down %d agents", len(self._tasks))
        for task in list(self._tasks.values()):
            self._kill(task)
        self._tasks.clear()
        self._finished.clear()

    def _kill(self, task: AgentTask) -> None:
        if task.process.poll() is None:
            task.process.kill()
        try:
            task.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("[%s:%s] did not exit after kill", task.stage_type, task.task_id)
        task.status = AgentStatus.KILLED
        task.return_code = task.process.returncode
        self._tasks.pop(task.task_id, None)

    def _finish(self, task: AgentTask, return_code: int) -> None:
        for reader in task.readers:
            reader.join(timeout=5)
        task.return_code = return_code
        if task.status is not AgentStatus.KILLED:
            task.status = AgentStatus.EXITED
        self._tasks.pop(task.task_id, None)
        logger.info("[%s:%s] completed with code %s", task.stage_type, task.task_id, return_code)


def _start_reader(task: AgentTask, stream: IO[str] | None, *, from_stdout: bool) -> threading.Thread:
    def _pump() -> None:
        if stream is None:
            return
        for raw_line in stream:
            line = raw_line.rstrip("\n")
            task.record(line, from_stdout=from_stdout)
            if from_stdout:
                logger.debug("[%s:%s] %s", task.stage_type, task.task_id, line)
            else:
                logger.info("[%s:%s] %s", task.stage_type, task.task_id, line)
        stream.close()

    reader = threading.Thread(target=_pump, name=f"agent-{task.task_id}-{'out' if from_stdout else 'err'}", daemon=True)
    reader.start()
    return reader
