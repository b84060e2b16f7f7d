"""
owl.config
AUTHOR: carter-vin

Resolve the run configuration from the command line and a TOML file.

Command line:
    owl [+Name:value]... COMMAND [ARGS]...

- leading `+Name:value` arguments are options (names are case sensitive)
- `+Name` without a colon sets an empty value
- the first argument not starting with `+` is the command; everything
  after it is passed to the command unmodified

Configuration file (`[watch]` table, same option names):
- `+Conf:path` -> only that file is read (must exist and parse)
- otherwise the first readable of ./owl.toml, /etc/owl/owl.toml, /etc/owl.toml

Precedence: command line > file > built-in defaults. Empty values fall
through to the next source.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from owl.emit import DEFAULT_REMOTE_HOST, DEFAULT_REMOTE_PORT
from owl.exceptions import ConfigError

OPTION_START = "+"
OPTION_DELIMITER = ":"
SECTION_WATCH = "watch"

OPT_CONF = "Conf"
OPT_HOST = "Host"
OPT_PORT = "Port"
OPT_NAME = "Name"
OPT_HEARTBEAT = "Heartbeat"
OPT_LOG = "Log"
KNOWN_OPTIONS = {OPT_CONF, OPT_HOST, OPT_PORT, OPT_NAME, OPT_HEARTBEAT, OPT_LOG}

DEFAULT_HEARTBEAT_MS = 1000

CONF_LOCATION_CWD = Path("owl.toml")
CONF_LOCATION_ETC_OWL = Path("/etc/owl/owl.toml")
CONF_LOCATION_ETC = Path("/etc/owl.toml")
DEFAULT_CONF_LOCATIONS = (CONF_LOCATION_CWD, CONF_LOCATION_ETC_OWL, CONF_LOCATION_ETC)


@dataclass(frozen=True)
class Config:
    """
    Fully resolved run configuration (defaults already applied)
    """

    command: str
    args: tuple[str, ...] = ()
    host: str = DEFAULT_REMOTE_HOST
    port: int = DEFAULT_REMOTE_PORT
    heartbeat_interval_ms: int = DEFAULT_HEARTBEAT_MS
    display_name: str = ""
    event_log: str | None = None
    config_path: Path | None = None
    ignored_options: tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self) -> None:
        if not self.command:
            raise ConfigError("command must be non-empty")
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"port must be in 1..65535, got {self.port}")
        if self.heartbeat_interval_ms <= 0:
            raise ConfigError(
                f"heartbeat interval must be > 0 ms, got {self.heartbeat_interval_ms}"
            )
        if not self.display_name:
            object.__setattr__(self, "display_name", default_display_name(self.command))


def default_display_name(command: str) -> str:
    """
    Base name of the invoked command
    """
    return os.path.basename(command.rstrip("/")) or command


def split_argv(argv: Sequence[str]) -> tuple[dict[str, str], list[str]]:
    """
    Split raw arguments into (options, command line)
    """
    options: dict[str, str] = {}
    index = 0

    for index, arg in enumerate(argv):
        if not arg.startswith(OPTION_START):
            break
        name, _, value = arg[len(OPTION_START):].partition(OPTION_DELIMITER)
        options[name] = value
    else:
        index = len(argv)

    return options, list(argv[index:])


def _toml_scalar(value: Any) -> str | None:
    """
    Render a scalar TOML value as option text; tables/arrays are skipped
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return None


def read_config_file(path: Path) -> dict[str, str]:
    """
    Read the [watch] table of a TOML file as option text

    Raises OSError / tomllib.TOMLDecodeError; callers decide severity.
    """
    with path.open("rb") as f:
        document = tomllib.load(f)

    watch = document.get(SECTION_WATCH, {})
    if not isinstance(watch, dict):
        return {}

    options: dict[str, str] = {}
    for name, value in watch.items():
        text = _toml_scalar(value)
        if text is not None:
            options[name] = text
    return options


def load_config_options(
    explicit_path: str | None,
    *,
    search: Sequence[Path] = DEFAULT_CONF_LOCATIONS,
) -> tuple[dict[str, str], Path | None]:
    """
    Locate and read the configuration file

    Returns (options, path read) or ({}, None) when nothing was found.
    """
    if explicit_path:
        path = Path(explicit_path)
        try:
            return read_config_file(path), path
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"cannot read configuration file {path}: {e}") from e

    for path in search:
        try:
            return read_config_file(path), path
        except (OSError, tomllib.TOMLDecodeError):
            # Implicit locations are best-effort
            continue

    return {}, None


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def resolve_config(
    argv: Sequence[str],
    *,
    search: Sequence[Path] = DEFAULT_CONF_LOCATIONS,
) -> Config | None:
    """
    Build a Config from raw arguments

    Returns None when no command was given.
    Raises ConfigError on invalid values.
    """
    cli_options, command_line = split_argv(argv)
    if not command_line:
        return None

    file_options, config_path = load_config_options(cli_options.get(OPT_CONF), search=search)

    def pick(name: str) -> str | None:
        for source in (cli_options, file_options):
            value = source.get(name, "")
            if value:
                return value
        return None

    ignored = sorted((set(cli_options) | set(file_options)) - KNOWN_OPTIONS)

    host = pick(OPT_HOST) or DEFAULT_REMOTE_HOST
    port = pick(OPT_PORT)
    heartbeat = pick(OPT_HEARTBEAT)

    return Config(
        command=command_line[0],
        args=tuple(command_line[1:]),
        host=host,
        port=_parse_int(OPT_PORT, port) if port else DEFAULT_REMOTE_PORT,
        heartbeat_interval_ms=(
            _parse_int(OPT_HEARTBEAT, heartbeat) if heartbeat else DEFAULT_HEARTBEAT_MS
        ),
        display_name=pick(OPT_NAME) or "",
        event_log=pick(OPT_LOG),
        config_path=config_path,
        ignored_options=tuple(ignored),
    )
