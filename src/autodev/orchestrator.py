"""Execution orchestrator: runs a plan's task graph with bounded parallelism."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any

from rich.markup import escape

from autodev import log
from autodev.broadcast import EventType, StatusBroadcaster
from autodev.config import Config
from autodev.errors import OrchestratorError, classify_failure, looks_like_rate_limit
from autodev.executor import AgentExecutor, AgentRequest, AgentResponse, build_task_prompt, session_title
from autodev.graph import TaskGraph
from autodev.models.selector import ModelSelector
from autodev.reports import save_task_report
from autodev.review import AutoReviewer
from autodev.status import (
    ActiveAgent,
    AgentState,
    ExecutionError,
    ExecutionPhase,
    ExecutionStatus,
    build_status,
)
from autodev.tasks.model import ExecutionPlan, Task, TaskResult, TaskStatus, now_ms
from autodev.tasks.plan import validate_plan


@dataclass
class AgentHandle:
    """Tracks one in-flight executor call.

    ``started`` stays ``None`` while the call waits for a pool worker, so the
    timeout only counts time actually spent in the executor.
    """

    agent: ActiveAgent
    future: Future[AgentResponse] | None = None
    started: float | None = None


class ExecutionOrchestrator:
    """Drives a plan to completion: dispatch, review, retry, escalate.

    The thread calling :meth:`execute` runs the loop and is the only one that
    changes task records, the graph or the handle map. Agent calls run on a
    thread pool sized ``max_parallel``; their completion wakes the loop.
    :meth:`pause`, :meth:`resume` and :meth:`cancel` are safe from any thread.
    """

    def __init__(
        self,
        cfg: Config | None = None,
        executor: AgentExecutor | None = None,
        *,
        selector: ModelSelector | None = None,
        reviewer: AutoReviewer | None = None,
        broadcaster: StatusBroadcaster | None = None,
    ) -> None:
        self.cfg = cfg or Config()
        self.executor = executor
        self.selector = selector or ModelSelector()
        self.reviewer = reviewer or AutoReviewer(threshold=self.cfg.review_threshold)
        self.broadcaster = broadcaster or StatusBroadcaster()

        self._lock = threading.RLock()
        self._wake = threading.Event()
        self._pool: ThreadPoolExecutor | None = None
        self._running = False
        self._paused = False
        self._cancel_requested = False
        self._phase = ExecutionPhase.PLANNING
        self._reset()

    def _reset(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._graph = TaskGraph()
        self._handles: dict[str, AgentHandle] = {}
        self._completed_ids: set[str] = set()
        self._failed_ids: set[str] = set()
        self._retry_after: dict[str, float] = {}
        self._use_fallback: set[str] = set()
        self._errors: list[ExecutionError] = []
        self._started_at: int | None = None
        self._completed_at: int | None = None

    # ── public API ───────────────────────────────────────────────

    def execute(self, plan: ExecutionPlan) -> ExecutionStatus:
        """Run *plan* to completion, pause-and-cancel aware.

        Returns the final status snapshot. Raises :class:`OrchestratorError`
        when the execution cannot start.
        """
        with self._lock:
            if self._running:
                raise OrchestratorError("An execution is already in progress")
            self._reset()
            self._paused = False
            self._cancel_requested = False

        if self.executor is None:
            self._fail_execution("No agent executor configured")
            raise OrchestratorError("No agent executor configured")

        if self.cfg.validate_plan:
            try:
                validate_plan(plan)
            except OrchestratorError as e:
                self._fail_execution(str(e))
                raise

        try:
            self._seed(plan)
        except Exception as e:
            self._fail_execution(str(e) or type(e).__name__)
            raise
        log.info(f"Executing {len(plan.tasks)} task(s) (max {self.cfg.max_parallel} parallel)")

        self._pool = ThreadPoolExecutor(
            max_workers=self.cfg.max_parallel,
            thread_name_prefix="agent",
        )
        with self._lock:
            self._running = True
            self._started_at = now_ms()
        self._set_phase(ExecutionPhase.EXECUTING)

        try:
            finished = self._main_loop()
        except Exception as e:
            self._abort_all_active(TaskStatus.FAILED, "Execution aborted")
            self._fail_execution(str(e) or type(e).__name__)
            raise
        finally:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None
            with self._lock:
                self._running = False
                self._completed_at = now_ms()

        return self._finish(finished)

    def pause(self) -> None:
        """Stop dispatching new tasks; in-flight tasks finish normally."""
        with self._lock:
            if not self._running or self._paused or self._cancel_requested:
                return
            self._paused = True
        log.info("Execution paused")
        self._set_phase(ExecutionPhase.PAUSED)
        self._wake.set()

    def resume(self) -> None:
        with self._lock:
            if not self._paused:
                return
            self._paused = False
        log.info("Execution resumed")
        self._set_phase(ExecutionPhase.EXECUTING)
        self._wake.set()

    def cancel(self) -> None:
        """Drop all in-flight tasks without waiting and end the execution."""
        with self._lock:
            if not self._running or self._cancel_requested:
                return
            self._cancel_requested = True
            self._paused = False
        log.warn("Cancelling execution...")
        self._set_phase(ExecutionPhase.CANCELLED)
        self._wake.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def tasks(self) -> list[Task]:
        """Current task records in plan order."""
        with self._lock:
            return list(self._tasks.values())

    def status(self) -> ExecutionStatus:
        with self._lock:
            return build_status(
                self._tasks.values(),
                [h.agent for h in self._handles.values()],
                self._phase,
                errors=self._errors,
                started_at=self._started_at,
                completed_at=self._completed_at,
            )

    # ── main loop ────────────────────────────────────────────────

    def _seed(self, plan: ExecutionPlan) -> None:
        with self._lock:
            self._tasks = {t.id: t for t in plan.tasks}
            self._graph.seed(plan.tasks)

        dangling = self._graph.unresolved_dependencies()
        for tid, missing in dangling.items():
            log.warn(f"Task {escape(tid)} depends on unknown task(s): {escape(', '.join(missing))}")
        cycle = self._graph.find_cycle()
        if cycle:
            log.warn(f"Dependency cycle detected: {escape(' -> '.join(cycle))}")

    def _main_loop(self) -> bool:
        """Returns ``False`` when the run stopped on a dependency deadlock."""
        while True:
            self._wake.clear()

            with self._lock:
                self._reap_finished()

                if self._cancel_requested:
                    self._abort_all_active(TaskStatus.CANCELLED, "Cancelled")
                    return True

                if not self._handles and len(self._graph) == 0:
                    return True

                if not self._paused:
                    if not self._handles and not self._graph.ready_tasks(self._completed_ids):
                        self._report_deadlock()
                        return False

                    slots = self.cfg.max_parallel - len(self._handles)
                    if slots > 0:
                        for task in self._get_ready_tasks()[:slots]:
                            self._launch_agent(task)

            self.broadcaster.dispatch()
            self._wake.wait(self._next_wait())

    def _next_wait(self) -> float:
        """Poll interval, shortened when a retry delay expires sooner."""
        wait = self.cfg.poll_interval
        if self._retry_after:
            soonest = min(self._retry_after.values()) - time.monotonic()
            wait = max(0.001, min(wait, soonest))
        return wait

    def _get_ready_tasks(self) -> list[Task]:
        """Return ready tasks, honoring retry delays."""
        ready: list[Task] = []
        now = time.monotonic()
        for task in self._graph.ready_tasks(self._completed_ids):
            retry_at = self._retry_after.get(task.id)
            if retry_at and retry_at > now:
                continue
            self._retry_after.pop(task.id, None)
            ready.append(task)
        return ready

    def _launch_agent(self, task: Task) -> None:
        assert self._pool is not None and self.executor is not None
        self._graph.remove(task.id)

        assignment = task.model_assignment or self.selector.assign(task.complexity)
        tier = assignment.primary
        if task.id in self._use_fallback and assignment.fallback is not None:
            tier = assignment.fallback

        started = now_ms()
        agent = ActiveAgent(
            task_id=task.id,
            tier=tier,
            model=self.selector.model_id(tier),
            provider=self.selector.provider(tier),
            started_at=started,
            attempt=task.retry_count + 1,
        )
        task = replace(
            task,
            status=TaskStatus.RUNNING,
            model_assignment=assignment,
            started_at=started,
        )
        self._tasks[task.id] = task

        log.task_line("●", "cyan", task.title or task.id, task.id, f"[dim]{agent.model}[/dim]")
        self._emit(EventType.TASK_STARTED, {"taskId": task.id, "agent": agent.to_dict()})

        request = AgentRequest(
            session_title=session_title(task),
            tier=tier,
            provider=agent.provider,
            model_id=agent.model,
            prompt=build_task_prompt(task),
        )
        handle = AgentHandle(agent=agent)
        handle.future = self._pool.submit(self._run_attempt, handle, request)
        agent.state = AgentState.RUNNING
        self._handles[task.id] = handle
        handle.future.add_done_callback(lambda _f: self._wake.set())

    def _run_attempt(self, handle: AgentHandle, request: AgentRequest) -> AgentResponse:
        """Worker-side entry: starts the timeout clock, then calls the executor."""
        assert self.executor is not None
        handle.started = time.monotonic()
        return self.executor.invoke(request)

    def _reap_finished(self) -> None:
        """Process finished (or timed-out) agent calls."""
        now = time.monotonic()
        timeout = self.cfg.task_timeout
        for task_id, handle in list(self._handles.items()):
            assert handle.future is not None
            if handle.future.done():
                del self._handles[task_id]
                try:
                    response = handle.future.result()
                except Exception as e:
                    self._handle_failure(handle, str(e) or type(e).__name__)
                else:
                    self._handle_completion(handle, response)
            elif timeout and handle.started is not None and now - handle.started > timeout:
                del self._handles[task_id]
                handle.future.cancel()
                log.warn(f"Task {escape(task_id)} exceeded {timeout:g}s, abandoning attempt")
                self._handle_failure(handle, "timeout")

    # ── outcome handling ─────────────────────────────────────────

    def _handle_completion(self, handle: AgentHandle, response: AgentResponse) -> None:
        agent = handle.agent
        task = self._tasks[agent.task_id]
        agent.tokens_used = response.tokens_used
        agent.cost = self.selector.estimate_cost(agent.tier, response.tokens_used)
        result = TaskResult(
            success=True,
            output=response.text,
            tokens_used=response.tokens_used,
            cost=agent.cost,
            duration=now_ms() - agent.started_at,
        )
        review = self.reviewer.review(task, result)

        if review.passed:
            agent.state = AgentState.COMPLETED
            task = self._store(task, TaskStatus.COMPLETED, result=result, review=review)
            self._completed_ids.add(task.id)
            log.task_line("✓", "green", task.title or task.id, task.id, f"[dim]score {review.score:.2f}[/dim]")
            self._emit(EventType.TASK_COMPLETED, {
                "taskId": task.id,
                "result": result.to_dict(),
                "review": review.to_dict(),
            })
            self._save_report(task, agent.attempt)
            return

        attempts = task.retry_count + 1
        if attempts < task.max_retries:
            task = self._requeue(task, attempts, result=result, review=review)
            log.task_line(
                "↻", "yellow", task.title or task.id, task.id,
                f"review {review.score:.2f} (attempt {attempts + 1}/{task.max_retries})",
            )
            self._emit(EventType.TASK_FAILED, {
                "taskId": task.id,
                "result": result.to_dict(),
                "review": review.to_dict(),
                "retrying": True,
                "attempt": attempts,
            })
            self._save_report(task, agent.attempt, "retrying")
            return

        task = self._store(
            task,
            TaskStatus.REVIEW_PENDING,
            result=result,
            review=review,
            retry_count=min(attempts, task.max_retries),
        )
        log.task_line("?", "yellow", task.title or task.id, task.id, "[dim]needs human review[/dim]")
        self._emit(EventType.TASK_COMPLETED, {
            "taskId": task.id,
            "result": result.to_dict(),
            "review": review.to_dict(),
            "needsHumanReview": True,
        })
        self._save_report(task, agent.attempt)

    def _handle_failure(self, handle: AgentHandle, err_msg: str) -> None:
        agent = handle.agent
        task = self._tasks[agent.task_id]
        rate_limited = looks_like_rate_limit(err_msg)
        agent.state = AgentState.RATE_LIMITED if rate_limited else AgentState.FAILED

        result = TaskResult(
            success=False,
            error=err_msg,
            duration=now_ms() - agent.started_at,
            failure_type=classify_failure(err_msg),
        )

        # Executor failures are also bounded by the run-wide retry limit.
        limit = min(task.max_retries, self.cfg.max_retries)
        should_retry = False
        retry_count = task.retry_count
        if self.cfg.retry_on_failure:
            attempts = task.retry_count + 1
            should_retry = attempts < limit
            retry_count = attempts if should_retry else min(attempts, limit)

        self._errors.append(
            ExecutionError(
                message=err_msg,
                code=_error_code(err_msg, rate_limited),
                timestamp=now_ms(),
                task_id=task.id,
                agent_id=agent.id,
                recoverable=should_retry,
            )
        )

        if should_retry:
            if rate_limited and self.cfg.fallback_on_rate_limit:
                self._use_fallback.add(task.id)
            task = self._requeue(task, retry_count, result=result)
            log.task_line(
                "↻", "yellow", task.title or task.id, task.id,
                f"in {self.cfg.retry_delay:g}s (attempt {retry_count + 1}/{limit})",
            )
            self._emit(EventType.TASK_FAILED, {
                "taskId": task.id,
                "result": result.to_dict(),
                "retrying": True,
                "attempt": retry_count,
            })
            self._save_report(task, agent.attempt, "retrying")
        else:
            task = self._store(task, TaskStatus.FAILED, result=result, retry_count=retry_count)
            self._failed_ids.add(task.id)
            log.task_line("x", "red", task.title or task.id, task.id)
            self._emit(EventType.TASK_FAILED, {"taskId": task.id, "result": result.to_dict()})
            self._save_report(task, agent.attempt)

        log.console.print(f"[dim]    Error: {escape(err_msg)}[/dim]")

    def _store(self, task: Task, status: TaskStatus, **changes: Any) -> Task:
        task = replace(task, status=status, completed_at=now_ms(), **changes)
        self._tasks[task.id] = task
        return task

    def _requeue(self, task: Task, retry_count: int, **changes: Any) -> Task:
        task = replace(task, status=TaskStatus.QUEUED, retry_count=retry_count, **changes)
        self._tasks[task.id] = task
        if self.cfg.retry_delay:
            self._retry_after[task.id] = time.monotonic() + self.cfg.retry_delay
        self._graph.requeue(task)
        return task

    def _abort_all_active(self, status: TaskStatus, reason: str) -> None:
        """Drop every tracked handle without waiting for it."""
        with self._lock:
            if not self._handles:
                return
            log.warn(f"Stopping {len(self._handles)} active agent(s)...")
            handles = list(self._handles.values())
            self._handles.clear()

            for handle in handles:
                handle.future.cancel()
                task = self._tasks[handle.agent.task_id]
                result = TaskResult(
                    success=False,
                    error=reason,
                    duration=now_ms() - handle.agent.started_at,
                )
                task = self._store(task, status, result=result)
                self._save_report(task, handle.agent.attempt)

    def _report_deadlock(self) -> None:
        queued = self._graph.queued()
        if any(self._graph.has_failed_deps(t.id, self._failed_ids) for t in queued):
            log.error("Workflow halted: Dependencies failed, preventing further progress.")
        else:
            log.error("DEADLOCK: No progress possible (dependency cycle or unknown task)")

        states = {tid: t.status.value for tid, t in self._tasks.items()}
        log.console.print("")
        log.console.print("[red]Blocked tasks:[/red]")
        for task in queued:
            log.console.print(f"  {escape(task.id)}: {escape(self._graph.explain_block(task.id, states))}")

    # ── completion ───────────────────────────────────────────────

    def _finish(self, finished: bool) -> ExecutionStatus:
        with self._lock:
            if self._cancel_requested:
                phase = ExecutionPhase.CANCELLED
            elif not finished or self._failed_ids:
                phase = ExecutionPhase.FAILED
            else:
                phase = ExecutionPhase.COMPLETED
        if phase != self._phase:
            self._set_phase(phase)

        status = self.status()
        self._emit(EventType.EXECUTION_COMPLETED, {
            "phase": phase.value,
            "completedTasks": status.completed_tasks,
            "failedTasks": status.failed_tasks,
            "pendingReview": status.pending_review_tasks,
            "queuedTasks": status.queued_tasks,
        })
        self.broadcaster.flush()
        return status

    def _fail_execution(self, message: str) -> None:
        log.error(f"Execution failed: {escape(message)}")
        with self._lock:
            self._phase = ExecutionPhase.FAILED
            self._emit(EventType.EXECUTION_FAILED, {"error": message})
        self.broadcaster.flush()

    def _set_phase(self, phase: ExecutionPhase) -> None:
        with self._lock:
            self._phase = phase
            self._emit(EventType.PHASE_CHANGED, {"phase": phase.value})
        self.broadcaster.dispatch()

    def _emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        """Queue an event; callers deliver it once the lock is released."""
        self.broadcaster.publish(event_type, payload)

    def _save_report(self, task: Task, attempt: int, outcome: str = "") -> None:
        if not self.cfg.artifacts_dir:
            return
        try:
            save_task_report(task, self.cfg.artifacts_dir, outcome=outcome, attempt=attempt)
        except OSError as e:
            log.warn(f"Could not write report for {escape(task.id)}: {escape(str(e))}")


def _error_code(err_msg: str, rate_limited: bool) -> str:
    if rate_limited:
        return "rate_limited"
    if err_msg == "timeout":
        return "timeout"
    return "executor_error"
