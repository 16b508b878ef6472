"""
Ferry Configuration Management

Handles loading and validation of configuration from TOML file.

Routing settings are frozen once built and handed to every component at
construction, so one host's settings can never leak into another's.
"""

from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass, field, replace
from enum import Enum

import toml

from . import DEFAULT_MULE_BUFFER_THRESHOLD, MAX_DIRECTION_COEFFICIENT
from .errors import ConfigError


# Default configuration path
DEFAULT_CONFIG_PATH = Path("ferry.toml")

# Keys that must be present in the [routing] table of a config file
REQUIRED_ROUTING_KEYS = ("initial_copies", "binary_mode")


class RoutingPolicy(Enum):
    """Neighbor selection strategy."""
    DIRECTION = "direction"
    CONTACT_HISTORY = "contact_history"


class QueueMode(Enum):
    """Order in which candidate messages are offered."""
    FIFO = "fifo"                       # Oldest arrival first
    SMALLEST_FIRST = "smallest_first"   # Smallest size first
    RANDOM = "random"                   # Seeded shuffle


class EvictionPolicy(Enum):
    """Which resident message goes first when the buffer is full."""
    OLDEST = "oldest"
    LARGEST = "largest"


@dataclass(frozen=True)
class RoutingConfig:
    """
    Forwarding engine settings.

    Validated on construction; an invalid combination raises ConfigError.
    """
    # Replication
    initial_copies: int = 6
    binary_mode: bool = True

    # Neighbor selection
    policy: RoutingPolicy = RoutingPolicy.DIRECTION
    direction_coefficient: int = 4

    # Buffer pressure (capacity / free ratios)
    low_buffer_factor: int = 4
    high_buffer_factor: int = 2
    mule_buffer_threshold: int = DEFAULT_MULE_BUFFER_THRESHOLD

    # Buffer and queueing
    buffer_size: int = 5_000_000  # bytes
    msg_ttl: Optional[float] = None  # simulated seconds, None = no expiry
    queue_mode: QueueMode = QueueMode.FIFO
    eviction_policy: EvictionPolicy = EvictionPolicy.OLDEST
    seed: int = 0

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Validate settings.

        Raises:
            ConfigError: If a setting is out of range
        """
        _require_int(self.initial_copies, "initial_copies", minimum=1)

        if not isinstance(self.binary_mode, bool):
            raise ConfigError(
                f"binary_mode must be a boolean, got {self.binary_mode!r}",
                key="binary_mode",
            )

        if not isinstance(self.policy, RoutingPolicy):
            raise ConfigError(f"Invalid policy: {self.policy!r}", key="policy")

        _require_int(self.direction_coefficient, "direction_coefficient", minimum=1)
        if self.direction_coefficient > MAX_DIRECTION_COEFFICIENT:
            raise ConfigError(
                f"direction_coefficient must be at most {MAX_DIRECTION_COEFFICIENT}, "
                f"got {self.direction_coefficient}",
                key="direction_coefficient",
            )

        _require_int(self.low_buffer_factor, "low_buffer_factor", minimum=1)
        _require_int(self.high_buffer_factor, "high_buffer_factor", minimum=1)
        if self.low_buffer_factor < self.high_buffer_factor:
            raise ConfigError(
                f"low_buffer_factor ({self.low_buffer_factor}) must not be smaller "
                f"than high_buffer_factor ({self.high_buffer_factor})",
                key="low_buffer_factor",
            )

        _require_int(self.mule_buffer_threshold, "mule_buffer_threshold", minimum=1)
        _require_int(self.buffer_size, "buffer_size", minimum=1)

        if self.msg_ttl is not None:
            if isinstance(self.msg_ttl, bool) or not isinstance(self.msg_ttl, (int, float)):
                raise ConfigError(f"Invalid msg_ttl: {self.msg_ttl!r}", key="msg_ttl")
            if self.msg_ttl <= 0:
                raise ConfigError(f"msg_ttl must be positive, got {self.msg_ttl}", key="msg_ttl")

        if not isinstance(self.queue_mode, QueueMode):
            raise ConfigError(f"Invalid queue_mode: {self.queue_mode!r}", key="queue_mode")
        if not isinstance(self.eviction_policy, EvictionPolicy):
            raise ConfigError(
                f"Invalid eviction_policy: {self.eviction_policy!r}", key="eviction_policy"
            )


def _require_int(value: Any, key: str, minimum: int) -> None:
    """Check that a setting is an integer no smaller than minimum."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer, got {value!r}", key=key)
    if value < minimum:
        raise ConfigError(f"{key} must be at least {minimum}, got {value}", key=key)


def _parse_enum(enum_type, value: Any, key: str):
    """Look up an enum member by its value."""
    try:
        return enum_type(str(value).lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_type)
        raise ConfigError(f"Invalid {key}: {value!r} (expected one of {choices})", key=key)


@dataclass
class Config:
    """
    Complete Ferry configuration.
    """
    routing: RoutingConfig = field(default_factory=RoutingConfig)

    # Paths
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """
        Load configuration from file.

        Args:
            config_path: Path to config file (default: ./ferry.toml)

        Returns:
            Loaded configuration

        Raises:
            ConfigError: If the file is missing, unreadable or invalid
        """
        path = Path(config_path or DEFAULT_CONFIG_PATH)

        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            data = toml.load(path)
        except toml.TomlDecodeError as e:
            raise ConfigError(f"Failed to parse {path}: {e}")

        config = cls.from_dict(data)
        config.config_path = path
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Build configuration from an already parsed TOML document."""
        if "routing" not in data:
            raise ConfigError("Missing [routing] table", key="routing")

        missing = [key for key in REQUIRED_ROUTING_KEYS if key not in data["routing"]]
        if missing:
            raise ConfigError(
                f"Missing required routing setting(s): {', '.join(missing)}",
                key=missing[0],
            )

        config = cls()
        config._apply_dict(data)
        return config

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary data to config."""
        # Top-level settings
        if "log_level" in data:
            self.log_level = str(data["log_level"]).upper()
        if "log_file" in data:
            self.log_file = Path(data["log_file"])

        # Routing config
        if "routing" in data:
            r = data["routing"]
            changes: Dict[str, Any] = {}
            for key in (
                "initial_copies",
                "direction_coefficient",
                "low_buffer_factor",
                "high_buffer_factor",
                "mule_buffer_threshold",
                "buffer_size",
                "seed",
            ):
                if key in r:
                    changes[key] = r[key]
            if "binary_mode" in r:
                changes["binary_mode"] = r["binary_mode"]
            if "msg_ttl" in r:
                changes["msg_ttl"] = r["msg_ttl"]
            if "policy" in r:
                changes["policy"] = _parse_enum(RoutingPolicy, r["policy"], "policy")
            if "queue_mode" in r:
                changes["queue_mode"] = _parse_enum(QueueMode, r["queue_mode"], "queue_mode")
            if "eviction_policy" in r:
                changes["eviction_policy"] = _parse_enum(
                    EvictionPolicy, r["eviction_policy"], "eviction_policy"
                )

            unknown = set(r) - set(changes)
            if unknown:
                raise ConfigError(
                    f"Unknown routing setting(s): {', '.join(sorted(unknown))}",
                    key=sorted(unknown)[0],
                )

            # replace() re-runs validation
            self.routing = replace(self.routing, **changes)

    def validate(self) -> None:
        """
        Validate configuration.

        Raises:
            ConfigError: If configuration is invalid
        """
        self.routing.validate()

        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Invalid log level: {self.log_level}", key="log_level")
