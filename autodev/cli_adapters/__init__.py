"""Model invokers for the AI coding CLIs autodev drives.

    opencode: default; hosts the free model hierarchy used out of the box.
    claude:   Claude Code CLI, for hierarchies configured with claude models.
"""

from autodev.cli_adapters.base import CLIModelInvoker, CLIResult, ModelInvoker
from autodev.cli_adapters.claude import ClaudeInvoker
from autodev.cli_adapters.opencode import OpencodeInvoker

__all__ = [
    "CLIModelInvoker",
    "CLIResult",
    "ModelInvoker",
    "ClaudeInvoker",
    "OpencodeInvoker",
    "get_invoker",
]


def get_invoker(cli_name: str, **kwargs) -> CLIModelInvoker:
    """
    Get a model invoker by CLI name.

    Raises:
        ValueError: If CLI name is not recognized.
    """
    invokers = {
        "opencode": OpencodeInvoker,
        "claude": ClaudeInvoker,
    }

    invoker_class = invokers.get(cli_name.lower())
    if invoker_class is None:
        raise ValueError(f"Unknown CLI: {cli_name}. Available: {list(invokers.keys())}")

    return invoker_class(**kwargs)
