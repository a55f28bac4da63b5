"""Settings loader for dynconf.

dynconf has four settings, all flat: where the monolithic document lives
(``dynamic_file``), the split directory (``config_dir``), where the operation
log goes (``logs_dir``) and the permission bits given to written files
(``file_mode``). Each one is resolved from, in increasing precedence:

1. Built-in defaults.
2. ``./dynconf.yml`` (or the file named by ``--config-file`` /
   ``DYNCONF_CONFIG_FILE``).
3. ``DYNAMIC_FILE_PATH`` and ``CONFIG_PATH``, the variables the original web
   service read.
4. ``DYNCONF_<SETTING>`` variables::

       export DYNCONF_DYNAMIC_FILE=/etc/traefik/dynamic.yml
       export DYNCONF_CONFIG_DIR=/etc/traefik/conf.d
       export DYNCONF_FILE_MODE=0640

5. Explicit overrides supplied programmatically.

Environment values are taken as plain strings. ``DYNCONF_*`` variables that
do not name a setting are ignored.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load dynconf settings. Install with "
        "`pip install dynconf` or ensure PyYAML>=6.0 is available."
    ) from exc

from .storage import DEFAULT_FILE_MODE

DEFAULT_CONFIG_FILE = Path("./dynconf.yml")
CONFIG_ENV_VAR = "DYNCONF_CONFIG_FILE"

DEFAULTS: dict[str, object] = {
    "dynamic_file": "./dynamic.yml",
    "config_dir": "./config",
    "logs_dir": "./logs",
    "file_mode": f"{DEFAULT_FILE_MODE:04o}",
}
SETTINGS: tuple[str, ...] = tuple(DEFAULTS)

ENV_VARS = {f"DYNCONF_{name.upper()}": name for name in SETTINGS}
LEGACY_ENV_VARS = {
    "DYNAMIC_FILE_PATH": "dynamic_file",
    "CONFIG_PATH": "config_dir",
}


class ConfigError(RuntimeError):
    """Raised when settings parsing fails."""


@dataclass(frozen=True)
class AppConfig:
    """Resolved settings for dynconf."""

    config_file: Path
    dynamic_file: Path
    config_dir: Path
    logs_dir: Path
    file_mode: int

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the settings."""
        return {
            "config_file": str(self.config_file),
            "dynamic_file": str(self.dynamic_file),
            "config_dir": str(self.config_dir),
            "logs_dir": str(self.logs_dir),
            "file_mode": f"{self.file_mode:04o}",
        }


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Resolve every setting and return an :class:`AppConfig`."""
    resolved_env = dict(os.environ if env is None else env)
    config_path = _config_path(config_file, resolved_env)

    values: dict[str, object] = dict(DEFAULTS)
    values.update(_read_settings_file(config_path))
    values.update(_from_env(resolved_env, LEGACY_ENV_VARS, skip_empty=True))
    values.update(_from_env(resolved_env, ENV_VARS))
    if overrides:
        _reject_unknown(overrides, "overrides")
        values.update(overrides)

    return AppConfig(
        config_file=config_path,
        dynamic_file=_to_path(values["dynamic_file"], "dynamic_file"),
        config_dir=_to_path(values["config_dir"], "config_dir"),
        logs_dir=_to_path(values["logs_dir"], "logs_dir"),
        file_mode=_parse_permission_mode(values["file_mode"], "file_mode"),
    )


def _config_path(
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if env.get(CONFIG_ENV_VAR):
        return Path(env[CONFIG_ENV_VAR])
    return DEFAULT_CONFIG_FILE


def _read_settings_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to parse settings file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Settings file {path} must contain a mapping at the top level.")
    _reject_unknown(data, str(path))
    return dict(data)


def _reject_unknown(values: Mapping[object, object], source: str) -> None:
    unknown = sorted(str(key) for key in values if key not in DEFAULTS)
    if unknown:
        raise ConfigError(f"Unknown configuration keys in {source}: {', '.join(unknown)}.")


def _from_env(
    env: Mapping[str, str],
    names: Mapping[str, str],
    *,
    skip_empty: bool = False,
) -> dict[str, object]:
    """Pick the variables in *names* out of *env*, keyed by setting name."""
    picked: dict[str, object] = {}
    for variable, setting in names.items():
        if variable not in env:
            continue
        if skip_empty and not env[variable]:
            continue
        picked[setting] = env[variable]
    return picked


def _parse_permission_mode(value: object, label: str) -> int:
    # YAML reads an unquoted 0640 as the octal integer already.
    if isinstance(value, bool):
        raise ConfigError(f"{label} must be an octal permission such as 0644, not {value!r}.")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        text = value.strip().lower().removeprefix("0o")
        try:
            mode = int(text, 8)
        except ValueError as exc:
            raise ConfigError(
                f"{label} must be an octal permission such as 0644, not {value!r}."
            ) from exc
    else:
        raise ConfigError(f"{label} must be an octal permission such as 0644, not {value!r}.")
    if not 0 <= mode <= 0o777:
        raise ConfigError(f"{label} must be between 0000 and 0777 inclusive.")
    return mode


def _to_path(value: object, label: str) -> Path:
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str) and value.strip():
        return Path(value).expanduser()
    raise ConfigError(f"Expected {label} to be a filesystem path. Got {value!r}.")


__all__ = [
    "AppConfig",
    "ConfigError",
    "load_config",
]
