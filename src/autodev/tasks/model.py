"""Task, plan and result data models used across planning and execution.

Task records are frozen: every state change produces a new record via
:func:`dataclasses.replace`, so the graph, the orchestrator and status
snapshots never share a mutable task.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Wall-clock timestamp in milliseconds (the event-stream unit)."""
    return int(time.time() * 1000)


class TaskComplexity(str, Enum):
    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"
    EXPERT = "expert"


class ProjectPhase(str, Enum):
    FOUNDATION = "foundation"
    MVP = "mvp"
    SCALE = "scale"
    POLISH = "polish"


class ModelTier(str, Enum):
    """Model quality/cost levels, declared highest-quality first."""

    CLAUDE_OPUS = "claude-opus"
    GPT_4O = "gpt-4o"
    CLAUDE_SONNET = "claude-sonnet"
    GPT_4O_MINI = "gpt-4o-mini"


TIER_ORDER: tuple[ModelTier, ...] = tuple(ModelTier)


class TaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    REVIEW_PENDING = "review-pending"
    CANCELLED = "cancelled"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class ModelAssignment:
    primary: ModelTier
    fallback: ModelTier | None = None
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"primary": self.primary.value, "reason": self.reason}
        if self.fallback is not None:
            data["fallback"] = self.fallback.value
        return data


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one agent attempt. Durations are milliseconds."""

    success: bool
    output: str = ""
    error: str = ""
    tokens_used: int = 0
    cost: float = 0.0
    duration: int = 0
    failure_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "tokensUsed": self.tokens_used,
            "cost": self.cost,
            "duration": self.duration,
        }
        if self.output:
            data["output"] = self.output
        if self.error:
            data["error"] = self.error
        if self.failure_type:
            data["failureType"] = self.failure_type
        return data


@dataclass(frozen=True)
class ReviewIssue:
    severity: Severity
    message: str
    location: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"severity": self.severity.value, "message": self.message}
        if self.location is not None:
            data["location"] = self.location
        return data


@dataclass(frozen=True)
class TaskReview:
    score: float
    passed: bool
    issues: tuple[ReviewIssue, ...] = ()
    suggestions: tuple[str, ...] = ()
    reviewed_at: int = 0
    auto_reviewed: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": round(self.score, 4),
            "passed": self.passed,
            "issues": [i.to_dict() for i in self.issues],
            "suggestions": list(self.suggestions),
            "reviewedAt": self.reviewed_at,
            "autoReviewed": self.auto_reviewed,
        }


@dataclass(frozen=True)
class Task:
    id: str
    title: str = ""
    description: str = ""
    instructions: str = ""
    complexity: TaskComplexity = TaskComplexity.MEDIUM
    phase: ProjectPhase = ProjectPhase.MVP
    feature_id: str = ""
    depends_on: tuple[str, ...] = ()
    blocked_by: tuple[str, ...] = ()
    model_assignment: ModelAssignment | None = None
    estimated_minutes: int = 30
    estimated_tokens: int = 5000
    estimated_cost: float = 0.0
    status: TaskStatus = TaskStatus.QUEUED
    priority: int = 0
    retry_count: int = 0
    max_retries: int = 3
    started_at: int | None = None
    completed_at: int | None = None
    result: TaskResult | None = None
    review: TaskReview | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "instructions": self.instructions,
            "complexity": self.complexity.value,
            "phase": self.phase.value,
            "featureId": self.feature_id,
            "dependsOn": list(self.depends_on),
            "blockedBy": list(self.blocked_by),
            "estimatedMinutes": self.estimated_minutes,
            "estimatedTokens": self.estimated_tokens,
            "estimatedCost": self.estimated_cost,
            "status": self.status.value,
            "priority": self.priority,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
        }
        if self.model_assignment is not None:
            data["modelAssignment"] = self.model_assignment.to_dict()
        if self.started_at is not None:
            data["startedAt"] = self.started_at
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.review is not None:
            data["review"] = self.review.to_dict()
        return data


@dataclass(frozen=True)
class Feature:
    id: str
    name: str = ""
    description: str = ""
    phase: ProjectPhase = ProjectPhase.MVP
    task_ids: tuple[str, ...] = ()
    priority: int = 0
    estimated_minutes: int = 0


@dataclass(frozen=True)
class PhaseInfo:
    phase: ProjectPhase
    name: str = ""
    description: str = ""
    task_ids: tuple[str, ...] = ()
    estimated_minutes: int = 0
    order: int = 0


@dataclass(frozen=True)
class PlanPreferences:
    """Caller preferences that steer model assignment."""

    models: tuple[str, ...] = ()
    priority: str = "quality"  # speed | quality | cost
    max_parallel_tasks: int | None = None
    auto_approve_threshold: float | None = None


@dataclass(frozen=True)
class ExecutionPlan:
    id: str
    project_name: str = ""
    original_idea: str = ""
    tasks: tuple[Task, ...] = ()
    phases: tuple[PhaseInfo, ...] = ()
    features: tuple[Feature, ...] = ()
    total_estimate_minutes: int = 0
    estimated_cost: float = 0.0
    status: str = "approved"
    created_at: int = field(default_factory=now_ms)

    @property
    def dependencies(self) -> dict[str, tuple[str, ...]]:
        return {t.id: t.depends_on for t in self.tasks}

    def get_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None
