"""Base class for CLI agent engine adapters."""

from __future__ import annotations

import json
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from autodev.errors import looks_like_policy_block, looks_like_rate_limit


@dataclass
class EngineResult:
    """Uniform result from any engine invocation."""

    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    actual_cost: float = 0.0
    error: str = ""
    return_code: int = 0

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


class EngineBase(ABC):
    """Abstract engine adapter.  Subclasses implement ``build_cmd`` and ``parse_output``."""

    name: str = "base"
    binary: str = ""

    @abstractmethod
    def build_cmd(self, prompt: str, model: str = "") -> list[str]:
        """Return the CLI command list for *prompt*, optionally pinned to *model*."""
        ...

    @abstractmethod
    def parse_output(self, raw: str) -> EngineResult:
        """Parse raw stdout into an :class:`EngineResult`."""
        ...

    def check_available(self) -> str | None:
        """Return an error message if the engine CLI is not available, else None."""
        if not shutil.which(self.binary):
            return f"{self.binary} not found in PATH"
        return None

    def env(self) -> dict[str, str] | None:
        """Environment for the subprocess; ``None`` inherits the parent's."""
        return None

    def run_sync(
        self,
        prompt: str,
        *,
        model: str = "",
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> EngineResult:
        """Execute the engine synchronously and return the parsed result."""
        cmd = self.build_cmd(prompt, model)
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=cwd,
                env=self.env(),
            )
        except FileNotFoundError:
            return EngineResult(error=f"{cmd[0]} not found", return_code=-1)

        try:
            proc_stdout, proc_stderr = self._communicate_with_interrupts(proc, timeout=timeout)
        except subprocess.TimeoutExpired:
            self._terminate_process(proc)
            return EngineResult(error="timeout", return_code=-1)
        except KeyboardInterrupt:
            self._terminate_process(proc)
            raise

        elapsed_ms = int((time.monotonic() - start) * 1000)

        result = self.parse_output(proc_stdout or "")
        result.return_code = proc.returncode
        if not result.duration_ms:
            result.duration_ms = elapsed_ms

        error = self._check_errors(proc_stdout or "")
        if error and not result.error:
            result.error = error

        # Some CLIs report argument problems only on stderr with empty stdout.
        if proc.returncode != 0 and not result.error:
            stderr = (proc_stderr or "").strip()
            if stderr:
                result.error = stderr.splitlines()[0]
            else:
                result.error = f"exit code {proc.returncode}"

        return result

    @staticmethod
    def _communicate_with_interrupts(
        proc: subprocess.Popen[str],
        *,
        timeout: float | None,
    ) -> tuple[str, str]:
        """Read process output while remaining responsive to KeyboardInterrupt."""
        if timeout is None:
            return proc.communicate()

        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise subprocess.TimeoutExpired(proc.args, timeout)

            wait_timeout = min(0.2, remaining)
            try:
                return proc.communicate(timeout=wait_timeout)
            except subprocess.TimeoutExpired:
                continue

    @staticmethod
    def _terminate_process(proc: subprocess.Popen[str]) -> None:
        """Terminate a subprocess promptly, killing it if it ignores SIGTERM."""
        try:
            if proc.poll() is None:
                proc.terminate()
            proc.wait(timeout=2)
            return
        except (OSError, subprocess.TimeoutExpired):
            pass

        try:
            if proc.poll() is None:
                proc.kill()
            proc.wait(timeout=2)
        except (OSError, subprocess.TimeoutExpired):
            pass

    @staticmethod
    def _check_errors(raw: str) -> str:
        """Detect error objects in JSON-lines engine output."""
        if not raw:
            return ""

        # Structured parsing only; plain text may legitimately mention errors.
        for line in raw.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            try:
                obj = json.loads(stripped)
            except json.JSONDecodeError:
                continue

            if not isinstance(obj, dict):
                continue

            err = obj.get("error")
            if isinstance(err, dict):
                msg = str(err.get("message", "")).strip()
                code = str(err.get("type", "") or err.get("code", "")).strip().lower()
                if looks_like_rate_limit(code):
                    return msg or "Rate limit exceeded"
                if msg:
                    return msg

            if isinstance(err, str) and err.strip():
                if looks_like_policy_block(err):
                    return "Blocked by policy"
                if looks_like_rate_limit(err):
                    return "Rate limit exceeded"
                return err.strip()

            if str(obj.get("type", "")).lower() == "error":
                msg = obj.get("message") or obj.get("text") or ""
                msg = msg.strip() if isinstance(msg, str) else ""
                if not msg:
                    return "Unknown error"
                if looks_like_policy_block(msg):
                    return "Blocked by policy"
                if looks_like_rate_limit(msg):
                    return "Rate limit exceeded"
                return msg

        return ""
