"""UI package exports for the CLI, rendering, and the optional interactive picker."""

from agent_nightlies.ui.cli import CLIError, build_parser, main, run_cli
from agent_nightlies.ui.interactive import interactive_available, run_interactive_diff
from agent_nightlies.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "interactive_available",
    "main",
    "run_cli",
    "run_interactive_diff",
]
