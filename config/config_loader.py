"""Load settings.yaml and modes.yaml into typed dataclasses."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path(__file__).parent
_SETTINGS_PATH = _CONFIG_DIR / "settings.yaml"
_MODES_PATH = _CONFIG_DIR / "modes.yaml"


# --- Mode policy ---------------------------------------------------------


@dataclass(frozen=True)
class GoalReminder:
    frequency: int
    template: str          # carries a {goal} placeholder


@dataclass(frozen=True)
class ExitCriteria:
    min_proposals: int | None = None
    min_consensus_points: int | None = None
    min_research_requests: int | None = None
    required_outputs: tuple[str, ...] | None = None


@dataclass(frozen=True)
class PhaseConfig:
    id: str
    name: str
    order: int
    max_messages: int
    auto_transition: bool
    agent_focus: str
    transition_criteria: str = ""
    exit_criteria: ExitCriteria | None = None


@dataclass(frozen=True)
class ResearchLimits:
    max_requests: int
    max_per_topic: int
    required_before_synthesis: int


@dataclass(frozen=True)
class LoopDetection:
    enabled: bool
    max_similar_messages: int
    max_rounds_without_progress: int
    intervention: str
    window_size: int = 10
    min_hash_length: int = 10
    messages_per_round: int = 3


@dataclass(frozen=True)
class SuccessCriteria:
    min_consensus_points: int
    required_outputs: frozenset[str]
    max_messages: int


@dataclass(frozen=True)
class ModePolicy:
    id: str
    name: str
    icon: str
    description: str
    goal_reminder: GoalReminder
    phases: tuple[PhaseConfig, ...]
    research: ResearchLimits
    loop_detection: LoopDetection
    success_criteria: SuccessCriteria
    agent_instructions: str


# --- Engine settings -----------------------------------------------------


@dataclass
class PhaseText:
    name: str
    focus: str


@dataclass
class SectionTemplate:
    id: str
    name: str


@dataclass
class DefaultsConfig:
    mode: str
    modes_file: Path


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    phases: dict[str, PhaseText] = field(default_factory=dict)
    response_cues: dict[str, list[str]] = field(default_factory=dict)
    copy_sections: list[SectionTemplate] = field(default_factory=list)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load engine settings from settings.yaml.

    Raises FileNotFoundError if the settings file is missing. The modes
    file path is resolved relative to the settings file.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        mode=str(defaults_raw["mode"]),
        modes_file=settings_path.parent / str(defaults_raw.get("modes_file", "modes.yaml")),
    )

    phases = {
        phase_id: PhaseText(name=str(p["name"]), focus=str(p["focus"]))
        for phase_id, p in raw.get("phases", {}).items()
    }

    # Order matters: categories are tried in file order
    cues_raw = raw.get("response_cues", {})
    response_cues = {category: [str(c) for c in cues] for category, cues in cues_raw.items()}

    copy_sections = [
        SectionTemplate(id=str(s["id"]), name=str(s["name"]))
        for s in raw.get("copy_sections", [])
    ]

    return AppConfig(
        defaults=defaults,
        phases=phases,
        response_cues=response_cues,
        copy_sections=copy_sections,
    )


def _parse_exit_criteria(raw: dict | None) -> ExitCriteria | None:
    if not raw:
        return None
    outputs = raw.get("required_outputs")
    return ExitCriteria(
        min_proposals=raw.get("min_proposals"),
        min_consensus_points=raw.get("min_consensus_points"),
        min_research_requests=raw.get("min_research_requests"),
        required_outputs=tuple(outputs) if outputs is not None else None,
    )


def parse_mode(mode_id: str, raw: dict) -> ModePolicy:
    """Build a ModePolicy from its YAML mapping."""
    reminder_raw = raw["goal_reminder"]
    phases = tuple(
        PhaseConfig(
            id=str(p["id"]),
            name=str(p["name"]),
            order=int(p["order"]),
            max_messages=int(p["max_messages"]),
            auto_transition=bool(p["auto_transition"]),
            agent_focus=str(p.get("agent_focus", "")),
            transition_criteria=str(p.get("transition_criteria", "")),
            exit_criteria=_parse_exit_criteria(p.get("exit_criteria")),
        )
        for p in raw["phases"]
    )
    research_raw = raw["research"]
    loop_raw = raw["loop_detection"]
    success_raw = raw["success_criteria"]

    return ModePolicy(
        id=mode_id,
        name=str(raw["name"]),
        icon=str(raw.get("icon", "")),
        description=str(raw.get("description", "")),
        goal_reminder=GoalReminder(
            frequency=int(reminder_raw["frequency"]),
            template=str(reminder_raw["template"]),
        ),
        phases=phases,
        research=ResearchLimits(
            max_requests=int(research_raw["max_requests"]),
            max_per_topic=int(research_raw["max_per_topic"]),
            required_before_synthesis=int(research_raw["required_before_synthesis"]),
        ),
        loop_detection=LoopDetection(
            enabled=bool(loop_raw["enabled"]),
            max_similar_messages=int(loop_raw["max_similar_messages"]),
            max_rounds_without_progress=int(loop_raw["max_rounds_without_progress"]),
            intervention=str(loop_raw["intervention"]),
            window_size=int(loop_raw.get("window_size", 10)),
            min_hash_length=int(loop_raw.get("min_hash_length", 10)),
            messages_per_round=int(loop_raw.get("messages_per_round", 3)),
        ),
        success_criteria=SuccessCriteria(
            min_consensus_points=int(success_raw["min_consensus_points"]),
            required_outputs=frozenset(success_raw.get("required_outputs") or []),
            max_messages=int(success_raw["max_messages"]),
        ),
        agent_instructions=str(raw.get("agent_instructions", "")),
    )


def load_modes(modes_path: Path = _MODES_PATH) -> dict[str, ModePolicy]:
    """Load every mode policy from modes.yaml, keyed by mode id.

    Raises FileNotFoundError if the modes file is missing.
    """
    if not modes_path.exists():
        raise FileNotFoundError(f"Modes file not found: {modes_path}")

    with modes_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    modes = {mode_id: parse_mode(mode_id, mode_raw) for mode_id, mode_raw in raw.items()}
    logger.debug("Loaded %d modes from %s", len(modes), modes_path)
    return modes
