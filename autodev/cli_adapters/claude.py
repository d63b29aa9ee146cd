"""Claude Code CLI invoker."""

from __future__ import annotations

from autodev.cli_adapters.base import CLIModelInvoker


class ClaudeInvoker(CLIModelInvoker):
    """
    Invokes models through ``claude -p --output-format json``.

    Uses the CLI's own login (no API keys handled here).
    """

    CLI_NAME = "claude"
    INSTALL_HINT = "Install with: npm install -g @anthropic-ai/claude-code"

    def build_args(self, model_id: str, prompt: str) -> list[str]:
        # "claude/sonnet" style ids select the model after the prefix
        model = model_id.split("/", 1)[1] if model_id.startswith("claude/") else model_id
        return ["-p", prompt, "--model", model, "--output-format", "json"]

    def extract_text(self, stdout: str) -> str:
        """Pull the final ``result`` text out of the JSON envelope."""
        events = self.parse_json_lines(stdout)
        for item in reversed(events):
            if "result" in item:
                return str(item["result"])
            if "content" in item:
                return str(item["content"])
        return stdout
