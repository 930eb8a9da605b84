# weblog/cli.py
from pathlib import Path
from typing import Optional

import typer

from weblog.agg import USER_AGENT, analyze, load_logs_lazy
from weblog.config import AnalysisConfig, load_config
from weblog.errors import ConfigError, ParseError, WeblogError
from weblog.export import export_report, render
from weblog.log import setup_logging
from weblog.parse import ParseStats, parse_file_to_parquet, read_file
from weblog.partition import DirectorySink, FORMATS, write_partitioned
from weblog.ua import ua_family

cli = typer.Typer(help="Analytics over comma-delimited web access logs.")


def _fail(exc: Exception, code: int = 1):
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=code)


def _strict(items, path):
    for item in items:
        if isinstance(item, ParseError):
            raise WeblogError(f"{path}: {item}")
        yield item


def _is_parquet(path: str) -> bool:
    return path.endswith(".parquet")


@cli.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging.")):
    setup_logging(verbose)


@cli.command()
def load(
    in_file: str,
    out_file: str = "logs",
    batch_size: int = 50_000,
    header: bool = typer.Option(True, "--header/--no-header"),
):
    """Parse a raw CSV log into Parquet chunks (OUT_FILE-0.parquet, ...)."""
    if batch_size < 1:
        _fail(ConfigError("batch size must be positive"), code=2)
    try:
        stats = parse_file_to_parquet(in_file, out_file, batch_size, skip_header=header)
    except WeblogError as exc:
        _fail(exc)
    typer.echo(f"✅ Parsed {in_file} -> {out_file}-*.parquet")
    typer.echo(f"   {stats.parsed} records, {stats.failed} rejected")


@cli.command("analyze")
def analyze_cmd(
    in_file: str,
    out_dir: Path = typer.Option(Path("output"), help="Directory for report files."),
    top_n: Optional[int] = typer.Option(None, help="Entries in the top URL/agent reports."),
    threshold: Optional[int] = typer.Option(None, help="Failures an IP must exceed."),
    status: Optional[list[int]] = typer.Option(
        None, "--status", help="Status counted as a failure (repeatable)."
    ),
    precision: Optional[int] = typer.Option(None, help="Timestamp prefix length per bucket."),
    header: Optional[bool] = typer.Option(None, "--header/--no-header"),
    agent_family: bool = typer.Option(False, help="Group user agents by browser family."),
    strict: bool = typer.Option(False, help="Abort on the first malformed line."),
    config: Optional[Path] = typer.Option(None, help="TOML file with an [analysis] table."),
):
    """Run the six analyses over IN_FILE (CSV, .gz or Parquet) and export them."""
    try:
        settings = load_config(config) if config else AnalysisConfig()
        settings = settings.override(
            top_n=top_n,
            threshold=threshold,
            suspicious_statuses=tuple(status) if status else None,
            bucket_precision=precision,
            skip_header=header,
        )
    except ConfigError as exc:
        _fail(exc, code=2)

    stats = ParseStats()
    agent_key = ua_family() if agent_family else USER_AGENT
    try:
        if _is_parquet(in_file):
            data = load_logs_lazy(in_file)
        else:
            data = read_file(in_file, skip_header=settings.skip_header)
            if strict:
                data = _strict(data, in_file)
        report = analyze(data, settings, stats=stats, agent_key=agent_key)
        paths = export_report(report, out_dir)
    except WeblogError as exc:
        _fail(exc)

    typer.echo(f"Total requests: {render(report.total_requests).strip()}")
    if stats.failed:
        typer.echo(f"Skipped {stats.failed} malformed line(s)")
    for path in paths:
        typer.echo(f"✅ {path}")


@cli.command()
def partition(
    in_file: str,
    out_dir: Path = typer.Option(Path("partitions"), help="Root of the partitioned table."),
    fmt: str = typer.Option("csv", "--format", help="csv or parquet."),
    header: bool = typer.Option(True, "--header/--no-header"),
):
    """Write IN_FILE's records into one directory per status code."""
    if fmt not in FORMATS:
        _fail(ConfigError(f"format must be one of {', '.join(FORMATS)}"), code=2)
    try:
        sink = DirectorySink(out_dir, column="status", fmt=fmt)
        report = write_partitioned(read_file(in_file, skip_header=header), sink)
    except WeblogError as exc:
        _fail(exc)

    for key, count in report.partitions.items():
        typer.echo(f"status={key}: {count}")
    if report.skipped:
        typer.echo(f"Skipped {len(report.skipped)} record(s)")


if __name__ == "__main__":
    cli()
