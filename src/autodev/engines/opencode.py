"""OpenCode engine adapter."""

from __future__ import annotations

import json
import os
import shutil

from autodev.engines.base import EngineBase, EngineResult

# OpenCode model ids are "<provider>/<model>"; tier providers map onto these.
PROVIDER_PREFIXES: dict[str, str] = {
    "anthropic": "anthropic",
    "openai": "openai",
}


class OpenCodeEngine(EngineBase):
    name = "opencode"
    binary = "opencode"

    def __init__(self, model: str = "") -> None:
        # Pinned model overrides per-task models when set.
        self.model = model

    def build_cmd(self, prompt: str, model: str = "") -> list[str]:
        opencode = shutil.which("opencode") or "opencode"
        cmd = [opencode, "run", "--format", "json"]
        chosen = self.model or model
        if chosen:
            cmd += ["--model", chosen]
        cmd.append(prompt)
        return cmd

    def env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["OPENCODE_PERMISSION"] = '{"*":"allow"}'
        return env

    def parse_output(self, raw: str) -> EngineResult:
        result = EngineResult()
        parts: list[str] = []
        for line in raw.splitlines():
            compact = line.replace(" ", "")
            if '"type":"step_finish"' in compact:
                try:
                    part = json.loads(line).get("part", {})
                    tokens = part.get("tokens", {})
                    result.input_tokens += int(tokens.get("input", 0))
                    result.output_tokens += int(tokens.get("output", 0))
                    result.actual_cost += float(part.get("cost", 0) or 0)
                except (json.JSONDecodeError, ValueError, TypeError):
                    pass
            elif '"type":"text"' in compact:
                try:
                    text = json.loads(line).get("part", {}).get("text", "")
                except (json.JSONDecodeError, ValueError, TypeError):
                    continue
                if text:
                    parts.append(text)

        result.text = "".join(parts)
        return result

    def check_available(self) -> str | None:
        if not shutil.which("opencode"):
            return "OpenCode CLI not found. Install from https://opencode.ai/docs/"
        return None


def opencode_model_id(provider: str, model_id: str) -> str:
    """Qualify *model_id* with its OpenCode provider prefix."""
    if "/" in model_id:
        return model_id
    prefix = PROVIDER_PREFIXES.get(provider, provider)
    return f"{prefix}/{model_id}" if prefix else model_id
