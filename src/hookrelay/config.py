from __future__ import annotations

import tomllib
from pathlib import Path

DEFAULT_CONFIG_PATHS = (
    Path("hookrelay.toml"),
    Path.home() / ".config" / "hookrelay" / "hookrelay.toml",
)


class ConfigError(RuntimeError):
    pass


def _display_path(path: Path) -> str:
    try:
        cwd = Path.cwd()
        if path.is_relative_to(cwd):
            return f"./{path.relative_to(cwd).as_posix()}"
        home = Path.home()
        if path.is_relative_to(home):
            return f"~/{path.relative_to(home).as_posix()}"
    except Exception:
        return str(path)
    return str(path)


def read_config(cfg_path: Path) -> dict:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(
            f"Missing config file `{_display_path(cfg_path)}`."
        ) from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def find_config(path: str | Path | None = None) -> Path | None:
    """Resolve the config file to load.

    An explicit path must exist. Without one, the local and home locations
    are tried in order and ``None`` means "run on defaults".
    """
    if path:
        cfg_path = Path(path).expanduser()
        if not cfg_path.is_file():
            raise ConfigError(f"Missing config file `{_display_path(cfg_path)}`.")
        return cfg_path

    for candidate in DEFAULT_CONFIG_PATHS:
        if candidate.is_file():
            return candidate
    return None
