"""Command line interface for the vfxcat project file index."""

from __future__ import annotations

import difflib
import logging
import time
from pathlib import Path
from typing import Any

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.table import Table

from vfxcat.config import ConfigError, ConfigManager, VfxcatConfig, resolve_with_precedence
from vfxcat.engine import IndexEngine, ScanSummary
from vfxcat.errors import (
    GroupNotFound,
    InvalidRoot,
    ScanCancelled,
    VersionNotFound,
    WatchSubscriptionFailure,
)
from vfxcat.index import ChangeSet, GroupedIndexView
from vfxcat.matching import FileType
from vfxcat.state import IndexRepository, MissingIndexError, StateError
from vfxcat.versions import resolve as resolve_token

console = Console()

LOGGER = logging.getLogger(__name__)

_WATCH_POLL_SECONDS = 1.0

_ERROR_CODES: dict[type[Exception], str] = {
    ConfigError: "config_error",
    InvalidRoot: "invalid_root",
    ScanCancelled: "scan_cancelled",
    GroupNotFound: "group_not_found",
    VersionNotFound: "version_not_found",
    WatchSubscriptionFailure: "watch_failed",
    MissingIndexError: "missing_index",
    StateError: "state_error",
}


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _fail(exc: Exception, *, json_output: bool) -> None:
    """Map a known exception onto its CLI error code."""
    code = next(
        (value for kind, value in _ERROR_CODES.items() if isinstance(exc, kind)),
        "cli_error",
    )
    _handle_cli_error(str(exc), code=code, json_output=json_output, original=exc)


def _emit_message(message: Any, *, mode: str, quiet: bool, summary_only: bool) -> None:
    """Conditionally print CLI output according to quiet/summary settings.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
        summary_only: Whether only summary lines should be emitted.
    """

    if quiet and mode != "error":
        return
    if summary_only and mode not in {"summary", "warning", "error"}:
        return
    console.print(message)


def _format_summary_line(command: str, root: Path | str, metrics: dict[str, Any]) -> str:
    """Return a consistent summary line for CLI commands.

    Args:
        command: Command name to include in the summary.
        root: Project root relevant to the command.
        metrics: Ordered mapping of metric names to values.

    Returns:
        str: Rich-formatted summary string.
    """

    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {root}: {parts}.[/green]"


def _configure_logging(level: str) -> None:
    """Route log records through rich at the configured level."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=False)],
        force=True,
    )


def _load_settings(
    ctx: click.Context, *, quiet: bool, summary_mode: bool, json_output: bool
) -> tuple[VfxcatConfig, bool, bool]:
    """Load configuration and resolve the effective output modes.

    Returns:
        tuple[VfxcatConfig, bool, bool]: Config, quiet flag, and summary flag.

    Raises:
        ConfigError: If the configuration cannot be loaded.
        click.ClickException: If the output flags conflict.
    """
    manager = ConfigManager()
    manager.ensure_exists()
    config = manager.load()
    _configure_logging(config.logging.level)

    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    explicit_summary = ctx.get_parameter_source("summary_mode") == ParameterSource.COMMANDLINE
    quiet_enabled = quiet if explicit_quiet else config.cli.quiet_default
    summary_only = summary_mode if explicit_summary else config.cli.summary_default

    if json_output:
        if explicit_quiet and quiet_enabled:
            raise click.ClickException("--json cannot be combined with --quiet.")
        if explicit_summary and summary_only:
            raise click.ClickException("--json cannot be combined with --summary.")
        return config, False, False

    if quiet_enabled and summary_only:
        raise click.ClickException(
            "Quiet and summary modes cannot both be enabled. Adjust CLI defaults or flags."
        )
    return config, quiet_enabled, summary_only


def _project_id(root: Path, explicit: str | None) -> str:
    return explicit or root.name or "project"


def _scan_filters(
    include: tuple[str, ...], exclude: tuple[str, ...], scan_dir: tuple[str, ...]
) -> dict[str, list[str] | None]:
    """Turn repeatable CLI options into engine keyword arguments."""
    return {
        "include_patterns": list(include) or None,
        "exclude_patterns": list(exclude) or None,
        "scan_dirs": list(scan_dir) or None,
    }


def _summary_payload(root: Path, summary: ScanSummary) -> dict[str, Any]:
    return {
        "context": {"project_id": summary.project_id, "root": str(root)},
        "counts": {
            "records": summary.record_count,
            "added": summary.added,
            "updated": summary.updated,
            "removed": summary.removed,
            "warnings": len(summary.warnings),
        },
        "warnings": [warning.model_dump(mode="json") for warning in summary.warnings],
        "duration_seconds": round(summary.duration_seconds, 3),
    }


def _emit_scan_warnings(summary: ScanSummary, *, quiet: bool, summary_only: bool) -> None:
    if not summary.warnings:
        return
    _emit_message(
        f"[yellow]{len(summary.warnings)} path(s) could not be read completely:[/yellow]",
        mode="warning",
        quiet=quiet,
        summary_only=summary_only,
    )
    for warning in summary.warnings:
        _emit_message(
            f"  - {warning.path}: {warning.message}",
            mode="warning",
            quiet=quiet,
            summary_only=summary_only,
        )


def _groups_payload(view: GroupedIndexView) -> list[dict[str, Any]]:
    return [
        {
            "key": key.as_string(),
            "file_type": key.file_type.value,
            "folder": key.folder,
            "shot_group": key.shot_group,
            "base_name": key.base_name,
            "current": group[0].version,
            "versions": [record.model_dump(mode="json") for record in group],
        }
        for key, group in view.groups.items()
    ]


def _render_index(view: GroupedIndexView, *, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Type")
    table.add_column("Folder")
    table.add_column("Shot")
    table.add_column("Name")
    table.add_column("Current")
    table.add_column("Versions", justify="right")
    table.add_column("Path", overflow="fold")
    for key, group in view.groups.items():
        current = group[0]
        table.add_row(
            key.file_type.value,
            key.folder,
            key.shot_group,
            key.base_name,
            current.version or "-",
            str(len(group)),
            current.relative_path,
        )
    return table


def _wait_for_interrupt() -> None:
    """Block until the user presses Ctrl+C."""
    while True:
        time.sleep(_WATCH_POLL_SECONDS)


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign ``value`` at the dotted ``path`` inside ``target``.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """

    node = target
    for segment in path[:-1]:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ConfigError(f"Cannot assign into '{segment}' because it is not a mapping.")
        node = child
    node[path[-1]] = value


_filter_options = [
    click.option("--project", "project", type=str, help="Project id (defaults to the directory name)."),
    click.option("--include", multiple=True, help="Glob a file must match; repeatable."),
    click.option("--exclude", multiple=True, help="Glob that removes a file; repeatable."),
    click.option("--scan-dir", "scan_dir", multiple=True, help="Subdirectory to restrict to; repeatable."),
]

_output_options = [
    click.option("--json", "json_output", is_flag=True, help="Emit JSON output."),
    click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines."),
    click.option("--quiet", is_flag=True, help="Suppress non-error output."),
]


def _with_options(options: list[Any]) -> Any:
    def decorator(func: Any) -> Any:
        for option in reversed(options):
            func = option(func)
        return func

    return decorator


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="vfxcat")
def cli() -> None:
    """Index VFX project files and resolve their current versions."""


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=str))
@_with_options(_filter_options)
@_with_options(_output_options)
@click.pass_context
def scan(
    ctx: click.Context,
    path: str,
    project: str | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    scan_dir: tuple[str, ...],
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Scan PATH and report what the index holds.

    Args:
        ctx: Click context for parameter source inspection.
        path: Project root directory.
        project: Optional project id.
        include: Include globs overriding the configured defaults.
        exclude: Exclude globs overriding the configured defaults.
        scan_dir: Scan directories overriding the configured defaults.
        json_output: When True, emit JSON instead of text.
        summary_mode: When True, restrict output to summary/warning lines.
        quiet: When True, suppress non-error output entirely.
    """

    try:
        config, quiet_enabled, summary_only = _load_settings(
            ctx, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )
        root = Path(path).expanduser().resolve()
        project_id = _project_id(root, project)
        with IndexEngine(config) as engine:
            summary = engine.scan(project_id, root, **_scan_filters(include, exclude, scan_dir))
            view = engine.get_index(project_id)

        if json_output:
            payload = _summary_payload(root, summary)
            payload["groups"] = len(view.groups)
            console.print_json(data=payload)
            return

        _emit_message(
            f"[cyan]Indexed {summary.record_count} file(s) in {len(view.groups)} group(s).[/cyan]",
            mode="detail",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
        _emit_scan_warnings(summary, quiet=quiet_enabled, summary_only=summary_only)
        _emit_message(
            _format_summary_line(
                "Scan",
                root,
                {
                    "records": summary.record_count,
                    "groups": len(view.groups),
                    "warnings": len(summary.warnings),
                },
            ),
            mode="summary",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
    except (ConfigError, InvalidRoot, ScanCancelled) as exc:
        _fail(exc, json_output=json_output)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("--cached", is_flag=True, help="Show the index mirror saved by the last scan.")
@_with_options(_filter_options)
@_with_options(_output_options)
@click.pass_context
def show(
    ctx: click.Context,
    path: str,
    cached: bool,
    project: str | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    scan_dir: tuple[str, ...],
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Display the grouped index for PATH with the current version of each artifact.

    Args:
        ctx: Click context for parameter source inspection.
        path: Project root directory.
        cached: When True, read the saved mirror instead of scanning.
        project: Optional project id.
        include: Include globs overriding the configured defaults.
        exclude: Exclude globs overriding the configured defaults.
        scan_dir: Scan directories overriding the configured defaults.
        json_output: When True, emit JSON instead of text.
        summary_mode: When True, restrict output to summary/warning lines.
        quiet: When True, suppress non-error output entirely.
    """

    try:
        config, quiet_enabled, summary_only = _load_settings(
            ctx, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )
        root = Path(path).expanduser().resolve()
        project_id = _project_id(root, project)

        saved_at: str | None = None
        if cached:
            repository = IndexRepository(config.state.directory)
            try:
                snapshot = repository.load(project_id)
            except MissingIndexError as exc:
                raise MissingIndexError(
                    f"No cached index for project {project_id}. Run `vfxcat scan {root}` first."
                ) from exc
            view = GroupedIndexView(project_id, snapshot.records)
            saved_at = snapshot.saved_at.isoformat()
            age_seconds = repository.age(snapshot)
        else:
            with IndexEngine(config) as engine:
                engine.scan(project_id, root, **_scan_filters(include, exclude, scan_dir))
                view = engine.get_index(project_id)

        if json_output:
            payload: dict[str, Any] = {
                "context": {"project_id": project_id, "root": str(root), "cached": cached},
                "counts": {"records": len(view), "groups": len(view.groups)},
                "groups": _groups_payload(view),
            }
            if saved_at is not None:
                payload["context"]["saved_at"] = saved_at
            console.print_json(data=payload)
            return

        if saved_at is not None:
            _emit_message(
                f"[yellow]Cached snapshot saved at {saved_at} ({age_seconds:.0f}s ago).[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        if view.groups:
            _emit_message(
                _render_index(view, title=f"Index for {root}"),
                mode="detail",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        _emit_message(
            _format_summary_line(
                "Show", root, {"records": len(view), "groups": len(view.groups), "cached": cached}
            ),
            mode="summary",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
    except (ConfigError, InvalidRoot, ScanCancelled, StateError) as exc:
        _fail(exc, json_output=json_output)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option(
    "--type",
    "file_type",
    type=click.Choice([member.value for member in FileType], case_sensitive=False),
    required=True,
    help="File type of the artifact.",
)
@click.option("--folder", required=True, help="Top-level folder of the artifact.")
@click.option("--shot", "shot_group", required=True, help="Shot group of the artifact.")
@click.option("--name", "base_name", required=True, help="Base name of the artifact.")
@click.option("--version", "requested", type=str, help="Version token to open instead of the current one.")
@_with_options(_filter_options)
@_with_options(_output_options)
@click.pass_context
def resolve(
    ctx: click.Context,
    path: str,
    file_type: str,
    folder: str,
    shot_group: str,
    base_name: str,
    requested: str | None,
    project: str | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    scan_dir: tuple[str, ...],
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Print the file that opening an artifact under PATH would use."""

    try:
        config, quiet_enabled, summary_only = _load_settings(
            ctx, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )
        root = Path(path).expanduser().resolve()
        project_id = _project_id(root, project)
        with IndexEngine(config) as engine:
            engine.scan(project_id, root, **_scan_filters(include, exclude, scan_dir))
            group = engine.versions(project_id, file_type.lower(), folder, shot_group, base_name)
            record = engine.resolve_version(
                project_id, file_type.lower(), folder, shot_group, base_name, requested
            )

        fallback = False
        if requested is not None:
            try:
                resolve_token(group, requested)
            except VersionNotFound:
                fallback = True
        if json_output:
            console.print_json(
                data={
                    "context": {"project_id": project_id, "root": str(root)},
                    "requested": requested,
                    "fallback": fallback,
                    "record": record.model_dump(mode="json"),
                }
            )
            return

        if fallback:
            _emit_message(
                f"[yellow]Version {requested} is no longer available; using {record.version}.[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        if not quiet_enabled:
            # Plain and unwrapped so the output can be fed to another program.
            console.print(record.path, soft_wrap=True, markup=False, highlight=False)
    except (ConfigError, InvalidRoot, ScanCancelled, GroupNotFound) as exc:
        _fail(exc, json_output=json_output)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("--debounce", type=float, help="Override debounce interval in seconds.")
@_with_options(_filter_options)
@_with_options(_output_options)
@click.pass_context
def watch(
    ctx: click.Context,
    path: str,
    debounce: float | None,
    project: str | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    scan_dir: tuple[str, ...],
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Scan PATH, then keep its index current until interrupted.

    Args:
        ctx: Click context for parameter source inspection.
        path: Project root directory.
        debounce: Optional debounce override in seconds.
        project: Optional project id.
        include: Include globs overriding the configured defaults.
        exclude: Exclude globs overriding the configured defaults.
        scan_dir: Scan directories overriding the configured defaults.
        json_output: When True, emit JSON lines describing each update.
        summary_mode: When True, restrict output to summary/warning lines.
        quiet: When True, suppress non-error output entirely.
    """

    if debounce is not None and debounce < 0:
        raise click.ClickException("--debounce must not be negative.")

    try:
        config, quiet_enabled, summary_only = _load_settings(
            ctx, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )
        root = Path(path).expanduser().resolve()
        project_id = _project_id(root, project)

        def _on_change(changed_project: str, changes: ChangeSet) -> None:
            if json_output:
                console.print_json(
                    data={"project_id": changed_project, "changes": changes.model_dump(mode="json")}
                )
                return
            _emit_message(
                _format_summary_line(
                    "Watch",
                    root,
                    {
                        "added": len(changes.added),
                        "updated": len(changes.updated),
                        "removed": len(changes.removed),
                    },
                ),
                mode="summary",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )

        with IndexEngine(config, listener=_on_change, debounce_override=debounce) as engine:
            summary = engine.scan(project_id, root, **_scan_filters(include, exclude, scan_dir))
            if json_output:
                console.print_json(data=_summary_payload(root, summary))
            else:
                _emit_scan_warnings(summary, quiet=quiet_enabled, summary_only=summary_only)
                _emit_message(
                    f"[cyan]Watching {root} ({summary.record_count} files indexed). "
                    "Press Ctrl+C to stop.[/cyan]",
                    mode="detail",
                    quiet=quiet_enabled,
                    summary_only=summary_only,
                )
            engine.start_watch(project_id, root)
            try:
                _wait_for_interrupt()
            except KeyboardInterrupt:
                engine.stop_watch(project_id)
                if not json_output:
                    _emit_message(
                        "[yellow]Watch stopped by user request.[/yellow]",
                        mode="summary",
                        quiet=quiet_enabled,
                        summary_only=summary_only,
                    )
    except (ConfigError, InvalidRoot, ScanCancelled, WatchSubscriptionFailure) as exc:
        _fail(exc, json_output=json_output)


@cli.group()
def config() -> None:
    """Manage vfxcat configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Args:
        no_env: If True, ignore environment-derived overrides.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = ConfigManager()
    try:
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="YAML value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        key: Dotted path such as ``watch.debounce_seconds``.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must be a dotted path such as 'watch.debounce_seconds'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    before = manager.read_text().splitlines()
    try:
        file_data = manager.load_file_overrides()
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=VfxcatConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    # The header timestamp always changes, so compare the bodies only.
    before_body = [line for line in before if not line.startswith("#")]
    after_body = [line for line in after if not line.startswith("#")]
    diff = list(
        difflib.unified_diff(
            before_body,
            after_body,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    if not diff:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
