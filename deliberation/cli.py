"""Click CLI: list modes and replay transcripts through a session."""

import logging
import os
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, ModePolicy, load_config, load_modes
from deliberation.models import Roster, new_message
from deliberation.orchestrator import DeliberationSession
from deliberation.output import print_intervention, print_modes, print_phase_change, print_status, save_draft, save_state
from deliberation.transcript import TranscriptError, load_transcript
from deliberation.transport import InMemoryTransport

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

SETTINGS_ENV = "DELIBERATION_SETTINGS"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _load(settings_path: str | None) -> tuple[AppConfig, dict[str, ModePolicy]]:
    """Load settings and modes, exiting with a readable error on failure."""
    try:
        config = load_config(Path(settings_path)) if settings_path else load_config()
        modes = load_modes(config.defaults.modes_file)
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)
    return config, modes


@click.group()
@click.option("--settings", "settings_path", default=None, type=click.Path(dir_okay=False),
              help=f"Path to settings.yaml (default: ${SETTINGS_ENV} or the bundled file)")
@click.pass_context
def main(ctx: click.Context, settings_path: str | None) -> None:
    """Deliberation referee -- keeps multi-agent discussions on track.

    \b
    Examples:
      deliberation modes
      deliberation replay session.yaml
      deliberation replay session.md --mode ideation --save-state state.json
    """
    load_dotenv()
    ctx.ensure_object(dict)
    ctx.obj["settings_path"] = settings_path or os.environ.get(SETTINGS_ENV)


@main.command()
@click.pass_context
def modes(ctx: click.Context) -> None:
    """List the available deliberation modes."""
    _, all_modes = _load(ctx.obj["settings_path"])
    print_modes(list(all_modes.values()))


@main.command()
@click.argument("transcript_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--mode", "mode_id", default=None, help="Mode id (default: transcript's mode, then settings)")
@click.option("--save-state", "state_path", default=None, help="Write session state JSON to this path")
@click.option("--output", "output_dir", default=None, help="Save the drafted copy as markdown in this directory")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.pass_context
def replay(
    ctx: click.Context,
    transcript_path: str,
    mode_id: str | None,
    state_path: str | None,
    output_dir: str | None,
    verbose: bool,
) -> None:
    """Feed a recorded transcript through a session and report what happened."""
    _setup_logging(verbose)
    config, all_modes = _load(ctx.obj["settings_path"])

    try:
        transcript = load_transcript(Path(transcript_path))
    except (FileNotFoundError, TranscriptError) as exc:
        console.print(f"[bold red]Transcript error:[/bold red] {exc}")
        sys.exit(1)

    effective_mode = mode_id or transcript.mode or config.defaults.mode
    mode = all_modes.get(effective_mode)
    if mode is None:
        console.print(
            f"[bold red]Error:[/bold red] Unknown mode '{effective_mode}'. "
            f"Available: {', '.join(sorted(all_modes))}"
        )
        sys.exit(1)

    roster = Roster(transcript.agents)
    transport = InMemoryTransport()
    session = DeliberationSession(
        goal=transcript.goal,
        roster=roster,
        transport=transport,
        mode=mode,
        config=config,
        project_name=transcript.project,
    )
    transport.subscribe(session.on_message)

    def on_event(event_type: str, data: dict) -> None:
        if event_type == "phase_change":
            print_phase_change(data["from"], data["to"])
        elif event_type == "intervention":
            print_intervention(data["type"], data["priority"], data["message"])
        elif event_type == "wireframe_converged":
            console.print(f"[green]Wireframe converged:[/green] {', '.join(data['sections']) or '(none)'}")

    session.on(on_event)

    console.print(f"\n[bold cyan]Deliberation[/bold cyan] -- {mode.icon} {mode.name}, {len(roster)} participants")
    console.print(f"Goal: [italic]{transcript.goal[:80]}{'...' if len(transcript.goal) > 80 else ''}[/italic]\n")

    session.start()
    for entry in transcript.entries:
        transport.deliver(new_message(entry.author, entry.content, type=entry.type))
        session.tick()

    print_status(session)

    if state_path:
        saved = save_state(session, Path(state_path))
        console.print(f"\n[dim]State saved to: {saved}[/dim]")
    if output_dir:
        saved = save_draft(session, Path(output_dir))
        console.print(f"[dim]Draft saved to: {saved}[/dim]")


if __name__ == "__main__":
    main()
