"""Shared fixtures for autodev tests.

- ``make_task`` / ``make_plan`` build frozen records with sensible defaults.
- ``FakeExecutor`` is a scripted agent executor: per task title, a queue of
  outputs (str) or exceptions, falling back to ``GOOD_OUTPUT``. It tracks how
  many calls run concurrently.
- Use tmp_path for any file creation so tests are isolated and cleaned up.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import pytest

from autodev import log
from autodev.config import ENV_PREFIX, Config
from autodev.executor import AgentRequest, AgentResponse
from autodev.models.selector import ModelSelector
from autodev.tasks.model import ExecutionPlan, Task, TaskComplexity

# Scores 1.0 on every review check for a title containing "task".
GOOD_OUTPUT = """Implementation for the task:

```js
// run the task
function run() {
  try {
    return 1;
  } catch (e) {
    throw e;
  }
}
```
"""

# Unbalanced brackets, a typo, eval() and a hardcoded password: well below 0.85.
BAD_OUTPUT = """```js
function broken( {
  const password = "hunter2";
  eval(undefinded)
```
"""


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for tests that call a real agent CLI."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch):
    """No AUTODEV_* overrides leak in; log mode is reset after each test."""
    import os

    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    yield
    log.set_verbose(False)
    log.set_quiet(False)


def _make_task(
    id: str,
    title: str = "",
    depends_on: list[str] | None = None,
    complexity: TaskComplexity = TaskComplexity.MEDIUM,
    priority: int = 0,
    max_retries: int = 3,
    **kwargs,
) -> Task:
    selector = ModelSelector()
    assignment = kwargs.pop("model_assignment", None) or selector.assign(complexity)
    return Task(
        id=id,
        title=title or f"Task {id}",
        depends_on=tuple(depends_on or ()),
        complexity=complexity,
        priority=priority,
        max_retries=max_retries,
        model_assignment=assignment,
        **kwargs,
    )


def _make_plan(tasks: list[Task], plan_id: str = "plan-test") -> ExecutionPlan:
    return ExecutionPlan(id=plan_id, project_name="test", tasks=tuple(tasks))


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def make_plan():
    """Factory fixture that creates ExecutionPlan instances."""
    return _make_plan


@pytest.fixture
def fast_cfg() -> Config:
    """Config with a short poll interval so loops react quickly."""
    return Config(poll_interval=0.01)


class FakeExecutor:
    """Scripted :class:`~autodev.executor.AgentExecutor` for tests."""

    def __init__(self, default: str = GOOD_OUTPUT, delay: float = 0.0, tokens: int = 1000) -> None:
        self.default = default
        self.delay = delay
        self.tokens = tokens
        self.scripts: dict[str, list[str | Exception | Callable[[], str]]] = {}
        self.calls: list[AgentRequest] = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def script(self, title: str, *outcomes: str | Exception | Callable[[], str]) -> None:
        """Queue outcomes for the task titled *title*, consumed in order."""
        self.scripts.setdefault(title, []).extend(outcomes)

    def calls_for(self, title: str) -> list[AgentRequest]:
        return [c for c in self.calls if c.session_title == f"Task: {title[:50]}"]

    def invoke(self, request: AgentRequest) -> AgentResponse:
        title = request.session_title.removeprefix("Task: ")
        with self._lock:
            self.calls.append(request)
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            queue = self.scripts.get(title)
            outcome = queue.pop(0) if queue else self.default
        try:
            if self.delay:
                time.sleep(self.delay)
            if isinstance(outcome, Exception):
                raise outcome
            if callable(outcome):
                outcome = outcome()
            return AgentResponse(text=outcome, tokens_used=self.tokens)
        finally:
            with self._lock:
                self.running -= 1


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()
