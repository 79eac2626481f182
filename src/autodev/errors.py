"""Exception types and shared failure classification for agent attempts."""

from __future__ import annotations


class AutodevError(Exception):
    """Base class for errors raised by autodev."""


class ExecutorError(AutodevError):
    """An agent executor call failed."""


class OrchestratorError(AutodevError):
    """The execution itself could not start or continue."""


class PlanValidationError(OrchestratorError):
    """The plan's dependency graph is cyclic or references unknown tasks."""

    def __init__(self, message: str, *, cycle: list[str] | None = None,
                 dangling: dict[str, list[str]] | None = None) -> None:
        super().__init__(message)
        self.cycle = cycle or []
        self.dangling = dangling or {}


RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "usage limit",
    "you've hit your limit",
    "quota",
    "429",
    "too many requests",
    "overloaded",
)

POLICY_BLOCK_PATTERNS: tuple[str, ...] = (
    "blocked by policy",
    "read-only sandbox",
    "approval_policy",
)

EXTERNAL_FAILURE_PATTERNS: tuple[str, ...] = (
    "command not found",
    "not found in path",
    "enoent",
    "eacces",
    "permission denied",
    "network",
    "connection",
    "timeout",
    "timed out",
    "tls",
    "econnreset",
    "etimedout",
    "certificate",
    "ssl",
    "503",
    "502",
)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(pattern in lower for pattern in patterns)


def looks_like_rate_limit(text: str) -> bool:
    """Return ``True`` when text matches a rate/usage/quota limit."""
    if not text:
        return False
    return _contains_any(text, RATE_LIMIT_PATTERNS)


def looks_like_policy_block(text: str) -> bool:
    """Return ``True`` when text indicates policy/sandbox blocking."""
    if not text:
        return False
    return _contains_any(text, POLICY_BLOCK_PATTERNS)


def looks_like_external_failure(text: str) -> bool:
    """Return ``True`` when failure looks infrastructural/external."""
    if not text:
        return False
    if looks_like_rate_limit(text):
        return True
    if looks_like_policy_block(text):
        return True
    return _contains_any(text, EXTERNAL_FAILURE_PATTERNS)


def classify_failure(text: str) -> str:
    """Return ``"external"`` or ``"internal"`` for a failure message."""
    return "external" if looks_like_external_failure(text) else "internal"
