"""Agent executor interface and the CLI-engine backed implementation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from rich.markup import escape

from autodev import log
from autodev.engines.base import EngineBase
from autodev.engines.opencode import OpenCodeEngine, opencode_model_id
from autodev.errors import ExecutorError
from autodev.tasks.model import ModelTier, Task

SESSION_TITLE_CHARS = 50

PROMPT_TEMPLATE = """You are an expert software developer. Complete the following task:

TASK: {title}

DESCRIPTION:
{description}

INSTRUCTIONS:
{instructions}

REQUIREMENTS:
1. Follow best practices for the technology stack
2. Write clean, maintainable code
3. Include error handling
4. Add comments for complex logic
5. Consider edge cases

Provide your complete implementation."""


@dataclass(frozen=True)
class AgentRequest:
    session_title: str
    tier: ModelTier
    provider: str
    model_id: str
    prompt: str


@dataclass(frozen=True)
class AgentResponse:
    text: str
    tokens_used: int = 0


class AgentExecutor(Protocol):
    """Runs one agent completion.

    Implementations raise on failure (``ExecutorError`` preferred) and may be
    called concurrently from worker threads.
    """

    def invoke(self, request: AgentRequest) -> AgentResponse: ...


def build_task_prompt(task: Task) -> str:
    return PROMPT_TEMPLATE.format(
        title=task.title,
        description=task.description,
        instructions=task.instructions,
    )


def session_title(task: Task) -> str:
    return f"Task: {task.title[:SESSION_TITLE_CHARS]}"


class EngineExecutor:
    """Adapts a CLI engine (Claude Code, OpenCode) to :class:`AgentExecutor`."""

    def __init__(
        self,
        engine: EngineBase,
        *,
        timeout: float | None = None,
        cwd: Path | None = None,
    ) -> None:
        self.engine = engine
        self.timeout = timeout
        self.cwd = cwd

    def _model_for(self, request: AgentRequest) -> str:
        if isinstance(self.engine, OpenCodeEngine):
            return opencode_model_id(request.provider, request.model_id)
        return request.model_id

    def invoke(self, request: AgentRequest) -> AgentResponse:
        model = self._model_for(request)
        log.debug(f"{escape(request.session_title)}: {self.engine.name} ({model})")
        result = self.engine.run_sync(
            request.prompt,
            model=model,
            cwd=self.cwd,
            timeout=self.timeout,
        )
        if result.error:
            raise ExecutorError(result.error)
        if result.return_code != 0:
            raise ExecutorError(f"{self.engine.name} exited with code {result.return_code}")
        return AgentResponse(text=result.text, tokens_used=result.tokens_used)
