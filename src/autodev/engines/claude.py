"""Claude Code engine adapter."""

from __future__ import annotations

import json
import shutil

from autodev.engines.base import EngineBase, EngineResult


class ClaudeEngine(EngineBase):
    name = "claude"
    binary = "claude"

    def build_cmd(self, prompt: str, model: str = "") -> list[str]:
        # Resolved path: some platforms resolve PATH differently in the child.
        claude = shutil.which("claude") or "claude"
        cmd = [
            claude,
            "--dangerously-skip-permissions",
            "--verbose",
            "-p",
            prompt,
            "--output-format",
            "stream-json",
        ]
        if model:
            cmd += ["--model", model]
        return cmd

    def parse_output(self, raw: str) -> EngineResult:
        result = EngineResult()
        for line in raw.splitlines():
            if '"type":"result"' not in line.replace(" ", ""):
                continue
            try:
                obj = json.loads(line)
                result.text = obj.get("result", "")
                usage = obj.get("usage", {})
                result.input_tokens = int(usage.get("input_tokens", 0))
                result.output_tokens = int(usage.get("output_tokens", 0))
                result.actual_cost = float(obj.get("total_cost_usd", 0) or 0)
            except (json.JSONDecodeError, ValueError, TypeError):
                result.text = "Could not parse result"
        return result

    def check_available(self) -> str | None:
        if not shutil.which("claude"):
            return "Claude Code CLI not found. Install from https://github.com/anthropics/claude-code"
        return None
