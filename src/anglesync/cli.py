"""
AngleSync CLI
Command-line interface for audio-based synchronization of camera angles.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .analyzer import AudioSyncAnalyzer
from .errors import AnglesyncError, AudioSyncError, ConfigurationError, describe_error
from .notifications import CallbackSink
from .sync.state import SyncState, SyncStateManager
from .sync.store import PackageConfigStore
from .utils.config_file import ConfigFileManager
from .utils.logging import configure_from_cli, get_cli_args_parser, get_logger

console = Console()
error_console = Console(stderr=True)


def print_state(state: Optional[SyncState], package: Optional[str] = None) -> None:
    """Render a sync state as a table."""
    table = Table(title=f"Sync state: {package}" if package else "Sync state")
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    if state is None:
        table.add_row("Status", "[yellow]no sync data stored[/yellow]")
    else:
        confidence = "-" if state.confidence is None else f"{state.confidence:.1%}"
        table.add_row("Offset", f"{state.offset_seconds:+.3f} s")
        table.add_row("Analyzed", "yes" if state.is_analyzed else "no")
        table.add_row("Confidence", confidence)
    console.print(table)


def print_result(result, source_a: str, source_b: str) -> None:
    """Render an analysis result with its search phases."""
    table = Table(title="Audio sync analysis")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Angle 1", source_a)
    table.add_row("Angle 2", source_b)
    table.add_row("Offset", f"{result.offset_seconds:+.4f} s")
    table.add_row("Confidence", f"{result.confidence:.1%}")
    table.add_row("Correlation peak", f"{result.correlation_peak:.4f}")
    console.print(table)

    if result.phases:
        phases = Table(title="Search phases")
        phases.add_column("Phase")
        phases.add_column("Offset (samples)", justify="right")
        phases.add_column("Correlation", justify="right")
        phases.add_column("Lags", justify="right")
        for phase in result.phases:
            phases.add_row(
                phase.name,
                str(phase.offset_samples),
                f"{phase.correlation:.4f}",
                str(phase.evaluated),
            )
        console.print(phases)


def load_config_manager(args: argparse.Namespace) -> ConfigFileManager:
    """Config manager loaded once per invocation (user, project and --config files)."""
    existing = getattr(args, "config_manager", None)
    if existing is not None:
        return existing
    manager = ConfigFileManager()
    manager.load(Path(args.config) if getattr(args, "config", None) else None)
    return manager


def open_package(package: str) -> Tuple[PackageConfigStore, Optional[SyncState]]:
    """Store for a package directory and the state it holds.

    Raises:
        ConfigurationError: If the directory does not exist.
        PersistenceError: If its config file is unreadable.
    """
    if not Path(package).is_dir():
        raise ConfigurationError(f"Package directory not found: {package}")
    store = PackageConfigStore()
    return store, store.load(package)


def update_package(package: str, update: Callable[[SyncStateManager], SyncState]) -> SyncState:
    """Apply ``update`` to the stored state and write the result back."""
    store, stored = open_package(package)
    state = update(SyncStateManager(initial=stored))
    store.save(package, state)
    return state


# =============================================================================
# Commands
# =============================================================================


def analyze_command(args: argparse.Namespace) -> int:
    """Run audio analysis on two sources."""
    config = load_config_manager(args).sync_config({
        "max_offset_seconds": args.max_offset,
        "analysis_length_seconds": args.analysis_length,
        "analysis_sample_rate": args.sample_rate,
    })
    if args.package:
        open_package(args.package)

    if args.json:
        result = AudioSyncAnalyzer(config).analyze(args.source_a, args.source_b)
    else:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Starting...", total=100)

            def on_progress(stage: str, percent: float) -> None:
                progress.update(task, description=stage, completed=percent)

            analyzer = AudioSyncAnalyzer(config, sink=CallbackSink(on_progress))
            result = analyzer.analyze(args.source_a, args.source_b)

    state = None
    if args.package:
        state = update_package(args.package, lambda manager: manager.from_analysis(result))

    if args.json:
        payload: Dict[str, Any] = {"result": result.to_dict()}
        if state is not None:
            payload["syncData"] = state.to_dict()
        print(json.dumps(payload, indent=2))
    else:
        print_result(result, args.source_a, args.source_b)
        if state is not None:
            console.print(f"[green]Saved to {PackageConfigStore.config_path(args.package)}[/green]")
        if result.confidence < AudioSyncAnalyzer.MIN_CONFIDENCE:
            console.print("[yellow]Low confidence: verify the offset before relying on it.[/yellow]")
    return 0


def show_command(args: argparse.Namespace) -> int:
    """Show the sync state stored in a package."""
    _, state = open_package(args.package)
    if args.json:
        print(json.dumps(state.to_dict() if state is not None else None, indent=2))
    else:
        print_state(state, args.package)
    return 0


def set_offset_command(args: argparse.Namespace) -> int:
    """Store an operator-entered offset in a package."""
    state = update_package(args.package, lambda manager: manager.from_manual_offset(args.seconds))
    if args.json:
        print(json.dumps(state.to_dict(), indent=2))
    else:
        print_state(state, args.package)
    return 0


def reset_command(args: argparse.Namespace) -> int:
    """Reset the sync state stored in a package."""
    state = update_package(args.package, lambda manager: manager.reset())
    if args.json:
        print(json.dumps(state.to_dict(), indent=2))
    else:
        print_state(state, args.package)
    return 0


def config_command(args: argparse.Namespace) -> int:
    """Show the merged configuration or write a default config file."""
    manager = load_config_manager(args)
    if args.config_action == "init":
        path = manager.init_config(args.target)
        console.print(f"[green]Wrote default configuration to {path}[/green]")
        return 0

    console.print(manager.show_config(), markup=False, highlight=False)
    errors = manager.get_validation_errors()
    for error in errors:
        error_console.print(f"[yellow]{error}[/yellow]")
    return 1 if errors else 0


# =============================================================================
# Parser
# =============================================================================


def _add_json(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="anglesync",
        description="AngleSync - audio-based synchronization of camera angles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Estimate the offset between two angles
  anglesync analyze angle1.mp4 angle2.mp4

  # Analyze and store the result in a package
  anglesync analyze angle1.mp4 angle2.mp4 --package ./match-2024-05-01

  # Inspect or override the stored offset
  anglesync show ./match-2024-05-01
  anglesync set-offset ./match-2024-05-01 -- -1.25
  anglesync reset ./match-2024-05-01
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=str, default=None, help="Additional YAML config file")
    for flags, options in get_cli_args_parser():
        parser.add_argument(*flags, **options)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    analyze_parser = subparsers.add_parser("analyze", help="Estimate the offset between two angles")
    analyze_parser.add_argument("source_a", help="Primary angle (media file)")
    analyze_parser.add_argument("source_b", help="Secondary angle (media file)")
    analyze_parser.add_argument("--package", type=str, default=None,
                                help="Package directory to store the result in")
    analyze_parser.add_argument("--max-offset", type=float, default=None,
                                help="Largest offset searched, in seconds (default: 30)")
    analyze_parser.add_argument("--analysis-length", type=float, default=None,
                                help="Seconds of audio correlated per lag (default: 20)")
    analyze_parser.add_argument("--sample-rate", type=int, default=None,
                                help="Analysis sample rate in Hz (default: 8000)")
    _add_json(analyze_parser)
    analyze_parser.set_defaults(func=analyze_command)

    show_parser = subparsers.add_parser("show", help="Show the stored sync state")
    show_parser.add_argument("package", help="Package directory")
    _add_json(show_parser)
    show_parser.set_defaults(func=show_command)

    offset_parser = subparsers.add_parser("set-offset", help="Store a manual offset")
    offset_parser.add_argument("package", help="Package directory")
    offset_parser.add_argument("seconds", type=float, help="Secondary time minus primary time")
    _add_json(offset_parser)
    offset_parser.set_defaults(func=set_offset_command)

    reset_parser = subparsers.add_parser("reset", help="Reset the stored sync state")
    reset_parser.add_argument("package", help="Package directory")
    _add_json(reset_parser)
    reset_parser.set_defaults(func=reset_command)

    config_parser = subparsers.add_parser("config", help="Configuration files")
    config_parser.add_argument("config_action", choices=["show", "init"], help="Action")
    config_parser.add_argument("--target", choices=["user", "project"], default="user",
                               help="Where `init` writes (default: user)")
    config_parser.set_defaults(func=config_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config_manager = load_config_manager(args)
        configure_from_cli(
            log_level=args.log_level or config_manager.get("logging.log_level"),
            log_format=args.log_format or config_manager.get("logging.log_format"),
            log_file=args.log_file or config_manager.get("logging.log_file"),
            component_levels=config_manager.get("logging.component_levels") or None,
        )
    except ConfigurationError as e:
        error_console.print(f"[red]Configuration error:[/red] {e}")
        return 1
    args.config_manager = config_manager
    logger = get_logger("cli")

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except AudioSyncError as e:
        logger.debug(describe_error(e), command=args.command)
        error_console.print(f"[red]Error:[/red] {e.user_message}")
        error_console.print(f"[dim]{e}[/dim]")
        return 1
    except (AnglesyncError, ValueError) as e:
        logger.debug(describe_error(e), command=args.command)
        error_console.print(f"[red]Error:[/red] {e}")
        return 1
    except KeyboardInterrupt:
        error_console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
