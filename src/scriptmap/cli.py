# src/scriptmap/cli.py
"""scriptmap Command Line Interface.

Entry point for the scriptmap CLI tool.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from scriptmap import __version__
from scriptmap.contracts import (
    ChainResult,
    ConfigurationError,
    DatasetError,
    JobChainError,
    JobCompleted,
    JobResult,
    JobStarted,
    PartitionCompleted,
    PartitionStatus,
    StoreConnectionError,
)
from scriptmap.core.config import ScriptMapSettings, load_settings, resolve_config

if TYPE_CHECKING:
    from scriptmap.core.events import EventBus
    from scriptmap.engine.chain import JobChain
    from scriptmap.plugins.manager import PluginManager

__all__ = [
    "app",
    "load_settings",  # Re-exported from config for convenience
]

# Module-level singleton for plugin manager
_plugin_manager_cache: PluginManager | None = None


def _get_plugin_manager() -> PluginManager:
    """Get initialized plugin manager (singleton).

    Returns:
        PluginManager with all built-in plugins registered
    """
    global _plugin_manager_cache

    from scriptmap.plugins.manager import PluginManager

    if _plugin_manager_cache is None:
        manager = PluginManager()
        manager.register_builtin_plugins()
        _plugin_manager_cache = manager
    return _plugin_manager_cache


app = typer.Typer(
    name="scriptmap",
    help="scriptmap: run a script over every vertex of a partitioned graph.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"scriptmap version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # We handle existence check ourselves for better error message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """scriptmap: run a script over every vertex of a partitioned graph."""
    from scriptmap.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted validation error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    console.print(Panel(content, title=f"[red bold]{title}[/]", border_style="red", padding=(0, 1)))


def _load_or_exit(settings: str) -> ScriptMapSettings:
    """Load settings, reporting any problem and exiting 1."""
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        details = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            details.append(f"{loc}: {error['msg']}")
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None


def _build_chain_or_exit(config: ScriptMapSettings, events: EventBus | None = None) -> JobChain:
    from scriptmap.engine.chain import JobChain

    try:
        return JobChain.from_settings(config, events=events, plugin_manager=_get_plugin_manager())
    except (ConfigurationError, StoreConnectionError, ValueError) as e:
        _format_validation_error(
            title="Plugin Configuration Error",
            message=str(e),
            hint="Check dataset and store plugin names and options.",
        )
        raise typer.Exit(1) from None


def _job_summary(job: JobResult) -> dict[str, Any]:
    from scriptmap.engine.job import partition_state_summary

    return {
        "name": job.name,
        "index": job.index,
        "status": job.status.value,
        "partitions": partition_state_summary(job),
        "vertices_mapped": job.vertices_mapped,
        "vertex_failures": sum(len(p.vertex_failures) for p in job.partitions),
        "output": job.output.path if job.output is not None else None,
        "duration_ms": round(job.duration_ms, 1),
        "error": str(job.error) if job.error is not None else None,
    }


def _chain_summary(result: ChainResult) -> dict[str, Any]:
    final = result.final_output
    return {
        "chain_id": result.chain_id,
        "status": result.status.value,
        "failed_job_index": result.failed_job_index,
        "final_output": final.path if final is not None else None,
        "jobs": [_job_summary(job) for job in result.jobs],
    }


def _print_chain_summary(result: ChainResult) -> None:
    typer.echo(f"Chain {result.chain_id}: {result.status.value}")
    for job in result.jobs:
        summary = _job_summary(job)
        counts = ", ".join(f"{count} {status}" for status, count in summary["partitions"].items() if count)
        typer.echo(f"  [{job.index}] {job.name}: {job.status.value} ({counts or 'no partitions'})")
        typer.echo(f"      vertices mapped: {summary['vertices_mapped']}, vertex failures: {summary['vertex_failures']}")
        if summary["output"]:
            typer.echo(f"      output: {summary['output']}")
    if result.final_output is not None:
        typer.echo(f"Final output: {result.final_output.path}")


def _subscribe_console(events: EventBus, verbose: bool) -> None:
    def on_job_started(event: JobStarted) -> None:
        typer.echo(f"[{event.index}] {event.name}: {event.partition_count} partitions")

    def on_partition_completed(event: PartitionCompleted) -> None:
        if verbose or event.status != PartitionStatus.SUCCEEDED:
            typer.echo(
                f"      partition {event.partition}: {event.status.value} "
                f"after {event.attempts} attempt(s), {event.records_in} vertices"
            )

    def on_job_completed(event: JobCompleted) -> None:
        typer.echo(f"[{event.index}] {event.name}: {event.status.value} in {event.duration_seconds:.2f}s")

    events.subscribe(JobStarted, on_job_started)
    events.subscribe(PartitionCompleted, on_partition_completed)
    events.subscribe(JobCompleted, on_job_completed)


@app.command()
def run(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show per-partition progress.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Run the job chain described by a settings file.

    Exits 1 when a job fails or the chain is cancelled.
    """
    from scriptmap.core.events import EventBus

    config = _load_or_exit(settings)
    events = EventBus()
    if output_format == "console":
        _subscribe_console(events, verbose)

    chain = _build_chain_or_exit(config, events)
    with chain:
        try:
            result = chain.run()
        except JobChainError as e:
            assert e.result is not None, "chain errors always carry the chain result"
            if output_format == "json":
                summary = _chain_summary(e.result)
                summary["error"] = {
                    "job": e.job_name,
                    "job_index": e.job_index,
                    "partition": e.partition,
                    "vertex_id": e.vertex_id,
                    "message": str(e),
                }
                typer.echo(json.dumps(summary, default=str))
            else:
                _print_chain_summary(e.result)
                where = f"job {e.job_index} ({e.job_name})"
                if e.partition is not None:
                    where += f", partition {e.partition}"
                if e.vertex_id is not None:
                    where += f", vertex {e.vertex_id!r}"
                typer.secho(f"Failed at {where}: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1) from None

    if output_format == "json":
        typer.echo(json.dumps(_chain_summary(result), default=str))
    else:
        _print_chain_summary(result)
    if not result.succeeded:
        raise typer.Exit(1)


@app.command()
def validate(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Validate settings, plugins and every job's script without running."""
    config = _load_or_exit(settings)

    chain = _build_chain_or_exit(config)
    with chain:
        errors = chain.validate()
    if errors:
        _format_validation_error(
            title="Script Check Failed",
            message=f"{len(errors)} script(s) do not satisfy the setup/map/cleanup contract",
            details=[str(error) for error in errors],
            hint="Each script needs top-level setup(args), map(vertex, args) and cleanup(args).",
        )
        raise typer.Exit(1)

    typer.echo("Configuration valid!")
    typer.echo(f"  Dataset: {config.dataset.plugin}")
    typer.echo(f"  Store: {config.store.plugin if config.store else '(none)'}")
    typer.echo(f"  Jobs: {', '.join(job.name for job in config.jobs)}")
    typer.echo(f"  Slots: {len(config.scheduler.slots)} (capacity {config.scheduler.total_capacity})")


@app.command()
def plan(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Show where the first job's partitions would run."""
    from scriptmap.engine.scheduler import preferred_location

    config = _load_or_exit(settings)
    chain = _build_chain_or_exit(config)
    with chain:
        try:
            partitions = chain.source.partitions()
            assignments = chain.plan()
        except (OSError, ValueError, DatasetError) as e:
            typer.echo(f"Error reading dataset partitions: {e}", err=True)
            raise typer.Exit(1) from None
        shard_locations = chain.store.shard_locations() if chain.store is not None else {}

    slots = {slot.id: slot for slot in config.scheduler.slots}
    local_count = 0
    for partition in partitions:
        slot = slots[assignments[partition.index]]
        target = preferred_location(partition, shard_locations)
        if target is None:
            marker = "no hint"
        elif slot.location == target:
            marker = "local"
            local_count += 1
        else:
            marker = f"remote (wants {target})"
        typer.echo(f"partition {partition.index:>5} -> {slot.id} @ {slot.location}  [{marker}]")
    typer.echo(f"{local_count}/{len(partitions)} partitions co-located")


@app.command()
def partition(
    input_file: Path = typer.Argument(..., help="JSONL file, one vertex record per line."),
    output_dir: Path = typer.Argument(..., help="Directory for the partitioned dataset."),
    partitions: int = typer.Option(4, "--partitions", "-n", min=1, help="Number of partitions."),
    shard_map: Path | None = typer.Option(
        None,
        "--shard-map",
        help="JSON object mapping vertex id to store shard, for locality hints.",
    ),
) -> None:
    """Split a JSONL vertex file into a partitioned dataset."""
    from scriptmap.core.dataset import decode_vertex
    from scriptmap.core.partitioning import write_partitioned_dataset

    try:
        lines = input_file.read_text(encoding="utf-8").splitlines()
        vertices = [decode_vertex(line) for line in lines if line.strip()]
        shards: dict[str, str] | None = None
        if shard_map is not None:
            shards = {str(k): str(v) for k, v in json.loads(shard_map.read_text(encoding="utf-8")).items()}
    except (OSError, ValueError, KeyError, TypeError) as e:
        typer.echo(f"Error reading input: {e}", err=True)
        raise typer.Exit(1) from None

    shard_of = (lambda vertex_id: shards.get(str(vertex_id))) if shards is not None else None
    written = write_partitioned_dataset(output_dir, vertices, partitions, shard_of)
    typer.echo(f"Wrote {len(vertices)} vertices in {len(written)} partitions to {output_dir}")


# Plugins subcommand group
plugins_app = typer.Typer(help="Plugin management commands.")
app.add_typer(plugins_app, name="plugins")


@dataclass(frozen=True)
class PluginInfo:
    """Metadata for a registered plugin.

    Attributes:
        name: The plugin identifier used in configuration files.
        description: Human-readable description of the plugin's purpose.
    """

    name: str
    description: str


def _build_plugin_registry() -> dict[str, list[PluginInfo]]:
    manager = _get_plugin_manager()
    registry: dict[str, list[PluginInfo]] = {"source": [], "sink": [], "store": []}
    for spec in manager.list_plugins():
        registry[spec.kind].append(PluginInfo(name=spec.name, description=spec.description))
    return registry


@plugins_app.command("list")
def plugins_list(
    plugin_type: str | None = typer.Option(
        None,
        "--type",
        "-t",
        help="Filter by plugin type (source, sink, store).",
    ),
) -> None:
    """List available plugins."""
    registry = _build_plugin_registry()
    valid_types = set(registry.keys())

    if plugin_type and plugin_type not in valid_types:
        typer.echo(f"Error: Invalid type '{plugin_type}'.", err=True)
        typer.echo(f"Valid types: {', '.join(sorted(valid_types))}", err=True)
        raise typer.Exit(1)

    types_to_show = [plugin_type] if plugin_type else list(registry.keys())

    for ptype in types_to_show:
        typer.echo(f"\n{ptype.upper()}S:")
        plugins = registry[ptype]
        if plugins:
            for plugin in plugins:
                typer.echo(f"  {plugin.name:20} - {plugin.description}")
        else:
            typer.echo("  (none available)")

    typer.echo()


@app.command("config")
def show_config(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Print the resolved configuration (secrets redacted) as JSON."""
    config = _load_or_exit(settings)
    typer.echo(json.dumps(resolve_config(config), indent=2))
