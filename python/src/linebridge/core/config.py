"""
Bridge configuration, from keyword arguments or LINEBRIDGE_* environment variables.
"""

import os
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .framing import DEFAULT_MAX_FRAME_BYTES
from .logging import LogLevel

ENV_PREFIX = "LINEBRIDGE_"

# Crashes tolerated before the supervisor gives up on the worker
DEFAULT_MAX_FAILS = 4

# Seconds before a respawn, multiplied by the fail count
DEFAULT_RESTART_DELAY = 0.1


@dataclass
class BridgeConfig:
    """Settings for one bridge and its worker process."""

    command: List[str] = field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    cwd: Optional[str] = None
    max_fails: int = DEFAULT_MAX_FAILS
    auto_restart: bool = True
    restart_delay: float = DEFAULT_RESTART_DELAY
    default_timeout: Optional[float] = None
    read_chunk_size: int = 64 * 1024
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES
    terminate_timeout: float = 2.0
    log_level: LogLevel = LogLevel.INFO

    def __post_init__(self):
        if self.max_fails < 0:
            raise ValueError(f"max_fails must be >= 0, got {self.max_fails}")
        if self.restart_delay < 0:
            raise ValueError(f"restart_delay must be >= 0, got {self.restart_delay}")
        if self.read_chunk_size <= 0:
            raise ValueError(f"read_chunk_size must be > 0, got {self.read_chunk_size}")
        if self.max_frame_bytes <= 0:
            raise ValueError(f"max_frame_bytes must be > 0, got {self.max_frame_bytes}")

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = ENV_PREFIX,
        **overrides,
    ) -> "BridgeConfig":
        """
        Build a config from environment variables.

        Recognized variables (with the default prefix):
        - LINEBRIDGE_WORKER_COMMAND: worker command line, shell-split
        - LINEBRIDGE_MAX_FAILS: crashes tolerated before giving up
        - LINEBRIDGE_AUTO_RESTART: "1"/"true"/"yes" or "0"/"false"/"no"
        - LINEBRIDGE_RESTART_DELAY: seconds, multiplied by the fail count
        - LINEBRIDGE_DEFAULT_TIMEOUT: seconds per call
        - LINEBRIDGE_MAX_FRAME_BYTES: largest accepted reply line
        - LINEBRIDGE_LOG_LEVEL: debug, info, warn or error

        Keyword overrides win over the environment.
        """
        environ = os.environ if environ is None else environ
        values = {}

        def get(name: str) -> Optional[str]:
            raw = environ.get(prefix + name)
            if raw is None or raw.strip() == "":
                return None
            return raw.strip()

        def parse(name: str, convert):
            raw = get(name)
            if raw is None:
                return None
            try:
                return convert(raw)
            except ValueError as e:
                raise ValueError(f"Invalid {prefix}{name}={raw!r}: {e}") from e

        command = get("WORKER_COMMAND")
        if command is not None:
            values["command"] = shlex.split(command)

        for name, key, convert in (
            ("MAX_FAILS", "max_fails", int),
            ("AUTO_RESTART", "auto_restart", _parse_bool),
            ("RESTART_DELAY", "restart_delay", float),
            ("DEFAULT_TIMEOUT", "default_timeout", float),
            ("MAX_FRAME_BYTES", "max_frame_bytes", int),
            ("LOG_LEVEL", "log_level", lambda v: LogLevel(v.lower())),
        ):
            value = parse(name, convert)
            if value is not None:
                values[key] = value

        values.update(overrides)
        return cls(**values)


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value}")
