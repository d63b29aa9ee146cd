"""OpenCode CLI invoker."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from autodev.cli_adapters.base import CLIModelInvoker

logger = logging.getLogger(__name__)


class OpencodeInvoker(CLIModelInvoker):
    """
    Invokes models through ``opencode run --format json``.

    The CLI emits one JSON event per line; text parts are concatenated and
    the model's JSON payload is extracted from the result.
    """

    CLI_NAME = "opencode"
    INSTALL_HINT = "Install with: npm install -g opencode-ai"
    MODELS_DIR_ENV = "OPEN_CODE_MODELS_DIR"

    def resolve_model(self, model_id: str) -> str:
        """Prefer a locally installed copy of the model when one exists."""
        models_dir = os.environ.get(self.MODELS_DIR_ENV)
        if not models_dir:
            return model_id

        local_candidate = Path(models_dir) / model_id.replace("/", "_")
        if local_candidate.exists():
            logger.info("Using local OpenCode model for %s -> %s", model_id, local_candidate)
            return f"local:{local_candidate}"
        return model_id

    def build_args(self, model_id: str, prompt: str) -> list[str]:
        return ["run", "--model", self.resolve_model(model_id), "--format", "json", prompt]

    def extract_text(self, stdout: str) -> str:
        parts = []
        for event in self.parse_json_lines(stdout):
            part = event.get("part")
            if event.get("type") == "text" and isinstance(part, dict) and part.get("text"):
                parts.append(part["text"])
        return "".join(parts) or stdout
