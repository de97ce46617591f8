"""Console and log output format selection."""

import os
from enum import Enum
from typing import Literal, Optional


class OutputFormat(str, Enum):
    """Console output modes for the compliance CLI."""
    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"


def get_output_format(cli_override: Optional[str] = None) -> OutputFormat:
    """
    Resolve the console mode: ``--output-format`` first, then CONSOLE_OUTPUT_FORMAT, then auto.

    Unrecognized values at either level are skipped rather than rejected, so a stray
    environment setting never blocks a run.
    """
    for candidate in (cli_override, os.environ.get(ENV_VAR_NAME)):
        if not candidate:
            continue
        try:
            return OutputFormat(candidate.lower())
        except ValueError:
            continue
    return OutputFormat.AUTO


def log_format_for(output_format: OutputFormat) -> LogFormat:
    """Pair the console mode with a structlog renderer (json, uncolored or colored)."""
    if output_format is OutputFormat.JSON:
        return "json"
    if output_format is OutputFormat.PLAIN:
        return "plain"
    return "console"
