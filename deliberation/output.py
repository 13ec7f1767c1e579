"""Rich console output and file saves for replayed sessions."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from config.config_loader import ModePolicy
from deliberation.orchestrator import DeliberationSession

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_PRIORITY_STYLES = {"high": "red", "medium": "yellow", "low": "dim"}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(content: str, words: int = 30) -> str:
    all_words = content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_modes(modes: list[ModePolicy]) -> None:
    table = Table(title="Deliberation modes")
    table.add_column("ID", style="bold cyan")
    table.add_column("Name")
    table.add_column("Phases")
    table.add_column("Max messages", justify="right")
    table.add_column("Description", style="dim")
    for mode in modes:
        table.add_row(
            mode.id,
            f"{mode.icon} {mode.name}".strip(),
            " → ".join(p.name for p in mode.phases),
            str(mode.success_criteria.max_messages),
            mode.description,
        )
    console.print(table)


def print_intervention(intervention_type: str, priority: str, message: str) -> None:
    style = _PRIORITY_STYLES.get(priority, "dim")
    console.print(
        Panel(
            _preview(message, 40),
            title=f"[bold]{intervention_type}[/bold]",
            subtitle=priority,
            border_style=style,
        )
    )


def print_phase_change(previous: str, phase: str) -> None:
    console.print(Rule(f"[bold cyan]{previous} → {phase}[/bold cyan]"))


def print_status(session: DeliberationSession) -> None:
    """Print the end-of-replay summary."""
    status = session.get_consensus_status()
    info = session.get_mode_info()
    met, missing = session.check_mode_success()

    console.print(Rule("[bold green]Session Status[/bold green]"))
    console.print(
        Text(
            f"Phase: {session.get_current_phase()} | "
            f"Mode: {info['name']} ({info['phase']}) | "
            f"Canvas: {session.get_canvas_consensus_phase()}",
            style="dim",
        )
    )

    table = Table(show_header=True)
    table.add_column("Participant")
    table.add_column("Contributions", justify="right")
    for agent_id, count in status.contributions_by_agent.items():
        table.add_row(session.roster.display_name(agent_id), str(count))
    console.print(table)

    console.print(
        f"Consensus points: [green]{status.consensus_points}[/green]  "
        f"Conflicts: [red]{status.conflict_points}[/red]"
    )
    console.print(f"[italic]{status.recommendation}[/italic]")
    if met:
        console.print("[bold green]Mode success criteria met[/bold green]")
    else:
        for item in missing:
            console.print(f"  [yellow]-[/yellow] {item}")

    drafted = [s for s in session.get_copy_sections() if s.content]
    if drafted:
        console.print(Rule("[bold]Draft[/bold]"))
        console.print(Markdown("\n\n".join(f"## {s.name}\n{s.content}" for s in drafted)))


def save_state(session: DeliberationSession, path: Path) -> Path:
    """Write the session and rules-engine state as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(session.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("State saved to: %s", path)
    return path


def save_draft(session: DeliberationSession, output_dir: Path) -> Path:
    """Save the drafted copy sections as a markdown file."""
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(session.goal)}.md"

    lines = [
        f"# {session.goal}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Mode:** {session.rules.get_mode().name}",
        f"**Phase reached:** {session.get_current_phase()}",
        "",
        "---",
        "",
    ]
    for section in session.get_copy_sections():
        lines.append(f"## {section.name}")
        lines.append("")
        lines.append(section.content or "_(not drafted)_")
        if section.assigned_agent:
            lines.append("")
            lines.append(f"*Drafted by {session.roster.display_name(section.assigned_agent)}*")
        lines.append("")

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Draft saved to: %s", filepath)
    return filepath
