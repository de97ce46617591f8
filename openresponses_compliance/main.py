"""CLI entrypoint for openresponses-compliance."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from .config import ConfigError, load_config_file, parse_filter, resolve_config
from .console_reporter import ConsoleReporter
from .logging_utils import configure_logging
from .models import summarize
from .output_config import OutputFormat, get_output_format, log_format_for
from .report import build_report, write_junit
from .runner import run_all
from .templates import DEFAULT_TEMPLATES
from .transport import DEFAULT_TIMEOUT

app = typer.Typer(help="Check an HTTP service against the Open Responses protocol.")


@app.command()
def run(
    base_url: Optional[str] = typer.Option(None, "--base-url", "-u", help="API base URL, e.g. http://localhost:8000/v1."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key (or OPENRESPONSES_API_KEY)."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name (default: gpt-4o-mini)."),
    auth_header: Optional[str] = typer.Option(None, "--auth-header", help="Auth header name (default: Authorization)."),
    no_bearer: bool = typer.Option(False, "--no-bearer", help="Send the key without the 'Bearer ' prefix."),
    filter_ids: list[str] = typer.Option(
        [],
        "--filter",
        "-f",
        help="Run only these test ids (comma-separated or repeated).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Include request/response details."),
    json_output: bool = typer.Option(False, "--json", help="Print the results as a JSON document."),
    output_format: Optional[str] = typer.Option(None, help="Console output: auto, rich, plain or json."),
    timeout: float = typer.Option(DEFAULT_TIMEOUT, min=0.1, help="Per-test timeout in seconds, including stream drain."),
    junit: Optional[Path] = typer.Option(None, help="Also write a JUnit XML report to this path."),
    log_level: str = typer.Option("warning", help="Log level for diagnostics on stderr."),
    list_tests: bool = typer.Option(False, "--list", help="List available test ids and exit."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="YAML/JSON target profile; CLI options win."),
) -> None:
    """Run the compliance suite and exit non-zero when any test fails."""

    fmt = OutputFormat.JSON if json_output else get_output_format(output_format)
    configure_logging(log_level, log_format_for(fmt))

    if list_tests:
        for template in DEFAULT_TEMPLATES:
            typer.echo(f"{template.id:<22} {template.name} - {template.description}")
        raise typer.Exit(code=0)

    try:
        file_values = load_config_file(config_file) if config_file is not None else {}
        config = resolve_config(
            base_url=base_url,
            api_key=api_key,
            model=model,
            auth_header=auth_header,
            no_bearer=no_bearer,
            file_values=file_values,
        )
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc

    selected_ids = parse_filter(filter_ids) or parse_filter(file_values.get("filter"))
    if selected_ids:
        unknown = DEFAULT_TEMPLATES.unknown(selected_ids)
        if unknown:
            raise typer.BadParameter(
                f"Invalid test IDs: {', '.join(unknown)}. Available test IDs: {', '.join(DEFAULT_TEMPLATES.ids())}"
            )

    reporter = ConsoleReporter(output_format=fmt, verbose=verbose)
    reporter.start_run(
        total_tests=len(DEFAULT_TEMPLATES.select(selected_ids)),
        base_url=config.base_url,
        model=config.model,
        filter_ids=selected_ids,
    )
    try:
        results = asyncio.run(
            run_all(config, DEFAULT_TEMPLATES, reporter, only=selected_ids, timeout=timeout, verbose=verbose)
        )
    finally:
        reporter.stop()
    summary = summarize(results)
    reporter.finish_run(summary, results)

    if fmt == OutputFormat.JSON:
        typer.echo(json.dumps(build_report(summary, results), indent=2))
    if junit is not None:
        write_junit(results, junit, base_url=config.base_url)
        if fmt != OutputFormat.JSON:
            reporter.print_info(f"JUnit report written -> {junit}")

    raise typer.Exit(code=1 if summary.any_failed else 0)


def main() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
