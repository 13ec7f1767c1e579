"""Built-in mode policy registry, backed by config/modes.yaml."""

from functools import lru_cache

from config.config_loader import ModePolicy, load_modes

DEFAULT_MODE_ID = "copywrite"


@lru_cache(maxsize=1)
def _builtin_modes() -> dict[str, ModePolicy]:
    return load_modes()


def get_mode_by_id(mode_id: str) -> ModePolicy | None:
    return _builtin_modes().get(mode_id)


def get_all_modes() -> list[ModePolicy]:
    return list(_builtin_modes().values())


def get_default_mode() -> ModePolicy:
    return _builtin_modes()[DEFAULT_MODE_ID]
