"""Worker handles and the derived execution-status snapshot."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from autodev.tasks.model import ModelTier, Task, TaskStatus


class AgentState(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RATE_LIMITED = "rate-limited"


class ExecutionPhase(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ActiveAgent:
    """Worker handle for one in-flight task attempt.

    Owned by the orchestrator loop; snapshots receive copies.
    """

    task_id: str
    tier: ModelTier
    model: str
    provider: str
    state: AgentState = AgentState.INITIALIZING
    started_at: int = 0
    attempt: int = 1
    tokens_used: int = 0
    cost: float = 0.0

    @property
    def id(self) -> str:
        return f"agent-{self.task_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "tier": self.tier.value,
            "model": self.model,
            "provider": self.provider,
            "state": self.state.value,
            "startedAt": self.started_at,
            "attempt": self.attempt,
            "tokensUsed": self.tokens_used,
            "cost": self.cost,
        }


@dataclass(frozen=True)
class ExecutionError:
    """A recorded attempt failure, kept for the status snapshot."""

    message: str
    code: str
    timestamp: int
    task_id: str | None = None
    agent_id: str | None = None
    recoverable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "agentId": self.agent_id,
            "message": self.message,
            "code": self.code,
            "timestamp": self.timestamp,
            "recoverable": self.recoverable,
        }


@dataclass(frozen=True)
class ExecutionStatus:
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    queued_tasks: int = 0
    running_tasks: int = 0
    pending_review_tasks: int = 0
    cancelled_tasks: int = 0
    progress_percentage: float = 0.0
    active_agents: tuple[ActiveAgent, ...] = ()
    completed: tuple[Task, ...] = ()
    running: tuple[Task, ...] = ()
    queued: tuple[Task, ...] = ()
    failed: tuple[Task, ...] = ()
    pending_review: tuple[Task, ...] = ()
    cancelled: tuple[Task, ...] = ()
    estimated_time_remaining: int = 0
    estimated_cost_remaining: float = 0.0
    total_tokens_used: int = 0
    total_cost: float = 0.0
    total_duration: int = 0
    phase: ExecutionPhase = ExecutionPhase.PLANNING
    started_at: int | None = None
    completed_at: int | None = None
    errors: tuple[ExecutionError, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalTasks": self.total_tasks,
            "completedTasks": self.completed_tasks,
            "failedTasks": self.failed_tasks,
            "queuedTasks": self.queued_tasks,
            "runningTasks": self.running_tasks,
            "pendingReviewTasks": self.pending_review_tasks,
            "cancelledTasks": self.cancelled_tasks,
            "progressPercentage": self.progress_percentage,
            "activeAgents": [a.to_dict() for a in self.active_agents],
            "completed": [t.id for t in self.completed],
            "running": [t.id for t in self.running],
            "queued": [t.id for t in self.queued],
            "failed": [t.id for t in self.failed],
            "pendingReview": [t.id for t in self.pending_review],
            "cancelled": [t.id for t in self.cancelled],
            "estimatedTimeRemaining": self.estimated_time_remaining,
            "estimatedCostRemaining": self.estimated_cost_remaining,
            "totalTokensUsed": self.total_tokens_used,
            "totalCost": self.total_cost,
            "totalDuration": self.total_duration,
            "phase": self.phase.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "errors": [e.to_dict() for e in self.errors],
        }


def build_status(
    tasks: Iterable[Task],
    agents: Iterable[ActiveAgent],
    phase: ExecutionPhase,
    *,
    errors: Iterable[ExecutionError] = (),
    started_at: int | None = None,
    completed_at: int | None = None,
) -> ExecutionStatus:
    """Derive a snapshot from the task records and live worker handles.

    Buckets keep the order of *tasks*. Totals cover completed tasks only;
    remaining estimates cover queued tasks (minutes converted to ms).
    """
    buckets: dict[TaskStatus, list[Task]] = {s: [] for s in TaskStatus}
    tasks = list(tasks)
    for t in tasks:
        buckets[t.status].append(t)

    completed = buckets[TaskStatus.COMPLETED]
    queued = buckets[TaskStatus.QUEUED]
    total = len(tasks)

    return ExecutionStatus(
        total_tasks=total,
        completed_tasks=len(completed),
        failed_tasks=len(buckets[TaskStatus.FAILED]),
        queued_tasks=len(queued),
        running_tasks=len(buckets[TaskStatus.RUNNING]),
        pending_review_tasks=len(buckets[TaskStatus.REVIEW_PENDING]),
        cancelled_tasks=len(buckets[TaskStatus.CANCELLED]),
        progress_percentage=(len(completed) / total) * 100 if total else 0.0,
        active_agents=tuple(replace(a) for a in sorted(agents, key=lambda a: a.task_id)),
        completed=tuple(completed),
        running=tuple(buckets[TaskStatus.RUNNING]),
        queued=tuple(queued),
        failed=tuple(buckets[TaskStatus.FAILED]),
        pending_review=tuple(buckets[TaskStatus.REVIEW_PENDING]),
        cancelled=tuple(buckets[TaskStatus.CANCELLED]),
        estimated_time_remaining=sum(t.estimated_minutes for t in queued) * 60 * 1000,
        estimated_cost_remaining=sum(t.estimated_cost for t in queued),
        total_tokens_used=sum(t.result.tokens_used for t in completed if t.result),
        total_cost=sum(t.result.cost for t in completed if t.result),
        total_duration=sum(t.result.duration for t in completed if t.result),
        phase=phase,
        started_at=started_at,
        completed_at=completed_at,
        errors=tuple(errors),
    )
