"""Task graph: dependency index and ready-set derivation for the scheduler."""

from __future__ import annotations

from collections.abc import Iterable

from rich.markup import escape

from autodev import log
from autodev.tasks.model import Task
from autodev.tasks.plan import dangling_dependencies, derive_blocked_by, find_cycle


class TaskGraph:
    """Indexes queued tasks and their dependency edges.

    Usage::

        graph = TaskGraph()
        graph.seed(plan.tasks)
        ready = graph.ready_tasks(completed_ids)   # deps done, not dispatched
        graph.remove(task.id)                      # dispatched
        graph.requeue(updated_task)                # back for a retry

    The graph never changes task status; the orchestrator owns the records
    and hands updated copies back through :meth:`requeue`.
    """

    def __init__(self) -> None:
        self._queued: dict[str, Task] = {}
        self._order: dict[str, int] = {}
        self._deps: dict[str, tuple[str, ...]] = {}
        self._blocked_by: dict[str, tuple[str, ...]] = {}

    # ── seeding ──────────────────────────────────────────────────

    def seed(self, tasks: Iterable[Task]) -> None:
        tasks = list(tasks)
        self._queued = {t.id: t for t in tasks}
        self._order = {t.id: i for i, t in enumerate(tasks)}
        self._deps = {t.id: tuple(d for d in t.depends_on if d) for t in tasks}
        self._blocked_by = derive_blocked_by(tasks)
        log.debug(f"Task graph seeded with {len(tasks)} task(s)")

    def remove(self, task_id: str) -> Task | None:
        """Drop *task_id* from the queued set (it has been dispatched)."""
        return self._queued.pop(task_id, None)

    def requeue(self, task: Task) -> None:
        """Put a task back in the queued set, e.g. for a retry."""
        if task.id not in self._deps:
            raise KeyError(f"Unknown task: {task.id}")
        self._queued[task.id] = task
        log.debug(f"Task {escape(task.id)}: requeued")

    # ── queries ──────────────────────────────────────────────────

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._queued

    def __len__(self) -> int:
        return len(self._queued)

    def queued(self) -> list[Task]:
        """Queued tasks in original plan order."""
        return sorted(self._queued.values(), key=lambda t: self._order[t.id])

    def depends_on(self, task_id: str) -> tuple[str, ...]:
        return self._deps.get(task_id, ())

    def blocked_by(self, task_id: str) -> tuple[str, ...]:
        return self._blocked_by.get(task_id, ())

    def deps_satisfied(self, task_id: str, completed_ids: set[str] | frozenset[str]) -> bool:
        return all(dep in completed_ids for dep in self._deps.get(task_id, ()))

    def ready_tasks(self, completed_ids: set[str] | frozenset[str]) -> list[Task]:
        """Queued tasks whose dependencies are all completed.

        Ordered by priority descending, ties broken by plan order.
        """
        ready = [
            t for t in self._queued.values()
            if self.deps_satisfied(t.id, completed_ids)
        ]
        ready.sort(key=lambda t: (-t.priority, self._order[t.id]))
        return ready

    # ── diagnostics ──────────────────────────────────────────────

    def unresolved_dependencies(self) -> dict[str, list[str]]:
        """Dependency ids that name no task in the graph."""
        return dangling_dependencies(
            [Task(id=tid, depends_on=deps) for tid, deps in self._deps.items()]
        )

    def find_cycle(self) -> list[str]:
        return find_cycle(self._deps)

    def has_failed_deps(self, task_id: str, failed_ids: set[str]) -> bool:
        """Check if any dependency of *task_id* has failed."""
        return any(dep in failed_ids for dep in self._deps.get(task_id, ()))

    def explain_block(self, task_id: str, states: dict[str, str]) -> str:
        """Human-readable explanation of why *task_id* is not ready.

        *states* maps task id to its current status value.
        """
        blocked = []
        for dep in self._deps.get(task_id, ()):
            st = states.get(dep)
            if st is None:
                blocked.append(f"{dep} (unknown task)")
            elif st != "completed":
                blocked.append(f"{dep} ({st})")
        if not blocked:
            return ""
        return f"dependsOn: {' '.join(blocked)}"
