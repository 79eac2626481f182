"""Automated heuristic review of agent output.

Four independent checks (syntax, security, completeness, quality) each
produce a score in ``[0, 1]`` plus issues and suggestions. The weighted sum
decides whether an attempt is accepted. A failure inside the reviewer itself
never blocks the pipeline: it yields a passing review.
"""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from rich.markup import escape

from autodev import log
from autodev.tasks.model import ReviewIssue, Severity, Task, TaskResult, TaskReview, now_ms

DEFAULT_THRESHOLD = 0.85

WEIGHTS: dict[str, float] = {
    "syntax": 0.30,
    "security": 0.25,
    "completeness": 0.25,
    "quality": 0.20,
}

_CODE_BLOCK_RE = re.compile(r"```(\w*)\n([\s\S]*?)```")
_INLINE_CODE_MARKERS = ("function", "const", "import", "def ")

_BRACKETS = {"{": "}", "[": "]", "(": ")"}
_CLOSERS = set(_BRACKETS.values())

_TYPOS = ("undefinded", "fucntion")

SECURITY_PATTERNS: tuple[tuple[re.Pattern[str], str, Severity], ...] = (
    (re.compile(r"eval\s*\("), "Use of eval() is a security risk", Severity.ERROR),
    (re.compile(r"innerHTML\s*="), "innerHTML can lead to XSS vulnerabilities", Severity.WARNING),
    (
        re.compile(r"password\s*=\s*['\"][^'\"]+['\"]", re.IGNORECASE),
        "Hardcoded password detected",
        Severity.ERROR,
    ),
    (
        re.compile(r"api[_-]?key\s*=\s*['\"][^'\"]+['\"]", re.IGNORECASE),
        "Hardcoded API key detected",
        Severity.ERROR,
    ),
    (re.compile(r"document\.write"), "document.write can cause security issues", Severity.WARNING),
)

_COMMENT_RE = re.compile(r"//|/\*|\*/|#")
_FUNCTION_RE = re.compile(r"function\s+\w+|const\s+\w+\s*=\s*(?:async\s*)?\(|def\s+\w+")
_MAGIC_NUMBER_RE = re.compile(r"(?<![.\d])\d{2,}(?![.\d])")
_ERROR_HANDLING_TOKENS = ("try", "catch", "error", "throw", "except", "raise")

LONG_BLOCK_CHARS = 200
MAX_AVG_LINES_PER_FUNCTION = 50
MAX_MAGIC_NUMBERS = 3


@dataclass(frozen=True)
class CodeBlock:
    language: str
    code: str


@dataclass
class CheckResult:
    score: float = 1.0
    issues: list[ReviewIssue] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


def extract_code_blocks(text: str) -> list[CodeBlock]:
    """Fenced code blocks; unfenced code-looking text counts as one block."""
    blocks = [
        CodeBlock(language=m.group(1) or "unknown", code=m.group(2))
        for m in _CODE_BLOCK_RE.finditer(text)
    ]
    if not blocks and any(marker in text for marker in _INLINE_CODE_MARKERS):
        blocks.append(CodeBlock(language="javascript", code=text))
    return blocks


def check_brackets(code: str) -> tuple[bool, str]:
    """Stack-match ``{}[]()``; returns ``(balanced, offending_bracket)``."""
    stack: list[str] = []
    for ch in code:
        if ch in _BRACKETS:
            stack.append(ch)
        elif ch in _CLOSERS:
            if not stack or _BRACKETS[stack.pop()] != ch:
                return False, ch
    if stack:
        return False, _BRACKETS[stack[-1]]
    return True, ""


# ── individual checks ────────────────────────────────────────────────


def check_syntax(output: str) -> CheckResult:
    res = CheckResult()
    for block in extract_code_blocks(output):
        balanced, bracket = check_brackets(block.code)
        if not balanced:
            res.issues.append(
                ReviewIssue(Severity.ERROR, f"Unclosed {bracket} bracket", block.language)
            )
            res.score -= 0.2
        if any(typo in block.code for typo in _TYPOS):
            res.issues.append(
                ReviewIssue(Severity.WARNING, "Possible typo detected", block.language)
            )
            res.score -= 0.1
    res.score = max(0.0, res.score)
    return res


def check_security(output: str) -> CheckResult:
    res = CheckResult()
    for pattern, message, severity in SECURITY_PATTERNS:
        if pattern.search(output):
            res.issues.append(ReviewIssue(severity, message))
            res.score -= 0.3 if severity == Severity.ERROR else 0.1
    if not res.issues:
        res.suggestions.append("No security issues detected in initial scan")
    res.score = max(0.0, res.score)
    return res


def check_completeness(task: Task, output: str) -> CheckResult:
    res = CheckResult()
    blocks = extract_code_blocks(output)
    if not blocks:
        res.issues.append(ReviewIssue(Severity.WARNING, "No code blocks found in output"))
        res.score -= 0.3

    keywords = [w for w in task.title.lower().split() if len(w) > 3]
    lower = output.lower()
    found = [kw for kw in keywords if kw in lower]
    if len(found) < len(keywords) * 0.5:
        res.issues.append(
            ReviewIssue(Severity.INFO, "Output may not fully address the task requirements")
        )
        res.score -= 0.1

    if blocks and not any(
        token in b.code for b in blocks for token in _ERROR_HANDLING_TOKENS
    ):
        res.suggestions.append("Consider adding error handling")

    res.score = max(0.0, res.score)
    return res


def check_quality(output: str) -> CheckResult:
    res = CheckResult()
    for block in extract_code_blocks(output):
        if not _COMMENT_RE.search(block.code) and len(block.code) > LONG_BLOCK_CHARS:
            res.suggestions.append("Consider adding comments to explain complex logic")
            res.score -= 0.05

        functions = _FUNCTION_RE.findall(block.code)
        if functions:
            avg_lines = len(block.code.split("\n")) / len(functions)
            if avg_lines > MAX_AVG_LINES_PER_FUNCTION:
                res.suggestions.append("Consider breaking down large functions into smaller ones")

        if len(_MAGIC_NUMBER_RE.findall(block.code)) > MAX_MAGIC_NUMBERS:
            res.suggestions.append("Consider extracting magic numbers into named constants")

    # Quality is lenient.
    res.score = max(0.5, res.score)
    return res


# ── reviewer ─────────────────────────────────────────────────────────


def failed_review(reason: str) -> TaskReview:
    return TaskReview(
        score=0.0,
        passed=False,
        issues=(ReviewIssue(Severity.ERROR, reason),),
        reviewed_at=now_ms(),
    )


def passing_review() -> TaskReview:
    return TaskReview(score=1.0, passed=True, reviewed_at=now_ms())


class AutoReviewer:
    """Scores a task attempt's output against the configured threshold."""

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        *,
        check_syntax: bool = True,
        check_security: bool = True,
        check_completeness: bool = True,
        check_quality: bool = True,
    ) -> None:
        self.threshold = threshold
        self.enabled = {
            "syntax": check_syntax,
            "security": check_security,
            "completeness": check_completeness,
            "quality": check_quality,
        }

    def review(self, task: Task, result: TaskResult) -> TaskReview:
        if not result.success or not result.output:
            return failed_review("Task execution failed")

        try:
            checks = self._run_checks(task, result.output)
        except Exception as e:
            log.warn(f"Auto-review of {escape(task.id)} failed ({escape(str(e))}); accepting output")
            return passing_review()

        issues: list[ReviewIssue] = []
        suggestions: list[str] = []
        score = 0.0
        for name, weight in WEIGHTS.items():
            check = checks[name]
            issues.extend(check.issues)
            suggestions.extend(check.suggestions)
            score += check.score * weight

        return TaskReview(
            score=score,
            passed=score >= self.threshold,
            issues=tuple(issues),
            suggestions=tuple(suggestions),
            reviewed_at=now_ms(),
        )

    def _run_checks(self, task: Task, output: str) -> dict[str, CheckResult]:
        runners = {
            "syntax": lambda: check_syntax(output),
            "security": lambda: check_security(output),
            "completeness": lambda: check_completeness(task, output),
            "quality": lambda: check_quality(output),
        }
        with ThreadPoolExecutor(max_workers=len(runners), thread_name_prefix="review") as pool:
            futures = {
                name: pool.submit(fn)
                for name, fn in runners.items()
                if self.enabled[name]
            }
            results = {name: fut.result() for name, fut in futures.items()}
        for name in runners:
            results.setdefault(name, CheckResult())
        return results
