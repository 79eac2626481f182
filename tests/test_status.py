"""Tests for worker handles and the derived status snapshot."""

from __future__ import annotations

import pytest

from autodev.status import (
    ActiveAgent,
    AgentState,
    ExecutionError,
    ExecutionPhase,
    build_status,
)
from autodev.tasks.model import ModelTier, Task, TaskResult, TaskStatus


def _t(id: str, status: TaskStatus = TaskStatus.QUEUED, **kwargs) -> Task:
    return Task(id=id, title=f"Task {id}", status=status, **kwargs)


def _agent(task_id: str) -> ActiveAgent:
    return ActiveAgent(
        task_id=task_id,
        tier=ModelTier.CLAUDE_SONNET,
        model="claude-3-5-sonnet-20241022",
        provider="anthropic",
        state=AgentState.RUNNING,
        started_at=1000,
    )


class TestActiveAgent:
    def test_id_and_dict(self):
        agent = _agent("t1")
        assert agent.id == "agent-t1"
        data = agent.to_dict()
        assert data["taskId"] == "t1"
        assert data["tier"] == "claude-sonnet"
        assert data["state"] == "running"
        assert data["attempt"] == 1


class TestBuildStatus:
    """Counts, buckets and estimates are derived from task records."""

    def test_empty(self):
        status = build_status([], [], ExecutionPhase.PLANNING)
        assert status.total_tasks == 0
        assert status.progress_percentage == 0.0

    def test_counts_partition_tasks(self):
        tasks = [
            _t("a", TaskStatus.COMPLETED),
            _t("b", TaskStatus.RUNNING),
            _t("c"),
            _t("d", TaskStatus.FAILED),
            _t("e", TaskStatus.REVIEW_PENDING),
            _t("f", TaskStatus.CANCELLED),
        ]
        s = build_status(tasks, [], ExecutionPhase.EXECUTING)
        assert (
            s.completed_tasks, s.running_tasks, s.queued_tasks,
            s.failed_tasks, s.pending_review_tasks, s.cancelled_tasks,
        ) == (1, 1, 1, 1, 1, 1)
        assert s.total_tasks == 6
        assert s.progress_percentage == pytest.approx(100 / 6)
        assert [t.id for t in s.pending_review] == ["e"]

    def test_buckets_keep_input_order(self):
        tasks = [_t("z"), _t("a"), _t("m")]
        s = build_status(tasks, [], ExecutionPhase.EXECUTING)
        assert [t.id for t in s.queued] == ["z", "a", "m"]

    def test_totals_cover_completed_only(self):
        tasks = [
            _t("a", TaskStatus.COMPLETED, result=TaskResult(True, tokens_used=100, cost=0.5, duration=2000)),
            _t("b", TaskStatus.COMPLETED, result=TaskResult(True, tokens_used=50, cost=0.25, duration=1000)),
            _t("c", TaskStatus.FAILED, result=TaskResult(False, tokens_used=999, cost=9.0)),
        ]
        s = build_status(tasks, [], ExecutionPhase.FAILED)
        assert s.total_tokens_used == 150
        assert s.total_cost == pytest.approx(0.75)
        assert s.total_duration == 3000

    def test_remaining_estimates_cover_queued(self):
        tasks = [
            _t("a", estimated_minutes=10, estimated_cost=0.1),
            _t("b", estimated_minutes=5, estimated_cost=0.2),
            _t("c", TaskStatus.RUNNING, estimated_minutes=99, estimated_cost=9.0),
        ]
        s = build_status(tasks, [], ExecutionPhase.EXECUTING)
        assert s.estimated_time_remaining == 15 * 60 * 1000
        assert s.estimated_cost_remaining == pytest.approx(0.3)

    def test_agents_are_copied_and_sorted(self):
        b, a = _agent("b"), _agent("a")
        s = build_status([], [b, a], ExecutionPhase.EXECUTING)
        assert [x.task_id for x in s.active_agents] == ["a", "b"]
        b.state = AgentState.FAILED
        assert s.active_agents[1].state == AgentState.RUNNING

    def test_to_dict(self):
        err = ExecutionError(message="boom", code="executor_error", timestamp=5, task_id="a")
        s = build_status(
            [_t("a", TaskStatus.FAILED)],
            [],
            ExecutionPhase.FAILED,
            errors=[err],
            started_at=1,
            completed_at=2,
        )
        data = s.to_dict()
        assert data["failed"] == ["a"]
        assert data["phase"] == "failed"
        assert data["errors"][0]["code"] == "executor_error"
        assert data["startedAt"] == 1 and data["completedAt"] == 2

    def test_snapshots_are_equal_for_same_input(self):
        tasks = [_t("a"), _t("b", TaskStatus.RUNNING)]
        agents = [_agent("b")]
        assert build_status(tasks, agents, ExecutionPhase.EXECUTING) == build_status(
            tasks, agents, ExecutionPhase.EXECUTING
        )
