"""
Ferry Scenarios

Scripted runs of the loopback world, described in TOML.

Format:
    ticks = 10

    [loopback]
    tick_seconds = 1.0
    transfer_ticks = 1

    [routing]
    initial_copies = 6
    binary_mode = true
    policy = "direction"

    [[hosts]]
    id = "a"
    position = [0, 0]
    waypoint = [10, 0]
    speed = 1.0

    [[events]]
    tick = 0
    type = "message"       # message | up | down | move
    host = "a"
    destination = "c"
    size = 1000

Events at tick t are applied before the world advances from t to t+1.
"""

import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field

import toml

from .config import Config, RoutingConfig
from .env.base import HostEnvironmentError
from .env.loopback import LoopbackConfig, LoopbackWorld
from .errors import BufferFull, ConfigError, MessageExpired
from .packet.digest import generate_message_id
from .packet.message import HostId, Message


logger = logging.getLogger("ferry.scenario")


EVENT_TYPES = ("message", "up", "down", "move")


@dataclass
class ScenarioEvent:
    """One scripted event."""
    tick: int
    type: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Scenario:
    """A parsed scenario file."""
    routing: RoutingConfig
    loopback: LoopbackConfig
    hosts: List[Dict[str, Any]]
    events: List[ScenarioEvent]
    ticks: int
    path: Optional[Path] = None

    # Logging overrides from the document
    log_level: Optional[str] = None
    log_file: Optional[Path] = None


@dataclass
class ScenarioResult:
    """Outcome of a scenario run."""
    ticks: int
    created: Dict[str, HostId] = field(default_factory=dict)     # message id -> destination
    rejected: List[str] = field(default_factory=list)             # ids refused at creation
    delivered: Dict[str, float] = field(default_factory=dict)    # message id -> delivery time
    evicted: List[Tuple[HostId, str]] = field(default_factory=list)  # (host, message id)
    snapshot: Dict[HostId, dict] = field(default_factory=dict)
    stats: Dict[HostId, dict] = field(default_factory=dict)

    @property
    def delivery_ratio(self) -> float:
        if not self.created:
            return 0.0
        return len(self.delivered) / len(self.created)

    def to_dict(self) -> dict:
        """JSON-friendly form (sets become sorted lists)."""
        def plain(value):
            if isinstance(value, set):
                return sorted(str(v) for v in value)
            if isinstance(value, dict):
                return {str(k): plain(v) for k, v in value.items()}
            return value

        return {
            "ticks": self.ticks,
            "created": plain(self.created),
            "rejected": list(self.rejected),
            "delivered": plain(self.delivered),
            "evicted": [[str(host), message_id] for host, message_id in self.evicted],
            "delivery_ratio": self.delivery_ratio,
            "hosts": plain(self.snapshot),
        }


def _coord(value: Any, key: str):
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigError(f"{key} must be a pair of numbers, got {value!r}", key=key)
    return (float(value[0]), float(value[1]))


def _optional(value: Any, convert):
    return convert(value) if value is not None else None


def parse_scenario(data: Dict[str, Any], path: Optional[Path] = None) -> Scenario:
    """
    Build a scenario from a parsed TOML document.

    Raises:
        ConfigError: If the document is malformed
    """
    config = Config.from_dict(data)
    config.validate()
    routing = config.routing

    try:
        loopback = LoopbackConfig(**data.get("loopback", {}))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid [loopback] table: {e}", key="loopback")

    hosts = data.get("hosts", [])
    if not hosts:
        raise ConfigError("Scenario defines no [[hosts]]", key="hosts")

    host_ids = set()
    for h in hosts:
        if "id" not in h:
            raise ConfigError("Every host needs an id", key="hosts")
        if h["id"] in host_ids:
            raise ConfigError(f"Duplicate host id {h['id']!r}", key="hosts")
        host_ids.add(h["id"])

    events = []
    for raw in data.get("events", []):
        raw = dict(raw)
        etype = raw.pop("type", None)
        if etype not in EVENT_TYPES:
            raise ConfigError(f"Unknown event type {etype!r}", key="events")
        tick = raw.pop("tick", 0)
        if not isinstance(tick, int) or tick < 0:
            raise ConfigError(f"Event tick must be a non-negative integer, got {tick!r}", key="events")
        events.append(ScenarioEvent(tick=tick, type=etype, params=raw))

    last_event = max((e.tick for e in events), default=0)
    ticks = data.get("ticks", last_event + 1)
    if not isinstance(ticks, int) or ticks < 0:
        raise ConfigError(f"ticks must be a non-negative integer, got {ticks!r}", key="ticks")

    return Scenario(
        routing=routing,
        loopback=loopback,
        hosts=hosts,
        events=events,
        ticks=ticks,
        path=path,
        log_level=config.log_level if "log_level" in data else None,
        log_file=config.log_file,
    )


def load_scenario(path: Path) -> Scenario:
    """
    Load a scenario file.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Scenario file not found: {path}")

    try:
        data = toml.load(path)
    except toml.TomlDecodeError as e:
        raise ConfigError(f"Failed to parse {path}: {e}")

    return parse_scenario(data, path)


def _apply_event(world: LoopbackWorld, event: ScenarioEvent, result: ScenarioResult) -> None:
    p = event.params

    if event.type == "message":
        host, dest = p["host"], p["destination"]
        message_id = p.get("id") or generate_message_id(host, dest, world.now())
        try:
            world.engine.create_message(
                host,
                message_id,
                dest,
                int(p.get("size", 0)),
                _optional(p.get("ttl"), float),
            )
            result.created[message_id] = dest
        except (BufferFull, MessageExpired) as e:
            logger.info(f"Tick {event.tick}: {e}")
            result.rejected.append(message_id)

    elif event.type == "up":
        a, b = p["hosts"]
        world.connect(a, b)

    elif event.type == "down":
        a, b = p["hosts"]
        world.disconnect(a, b)

    elif event.type == "move":
        world.move(
            p["host"],
            position=_coord(p.get("position"), "position"),
            waypoint=_coord(p.get("waypoint"), "waypoint"),
            speed=_optional(p.get("speed"), float),
            stop=bool(p.get("stop", False)),
        )


def run_scenario(scenario: Scenario) -> ScenarioResult:
    """
    Run a scenario to completion.

    Returns:
        Created, refused and delivered messages plus final host state
    """
    result = ScenarioResult(ticks=scenario.ticks)

    def evicted(host: HostId, msg: Message) -> None:
        result.evicted.append((host, msg.id))

    world = LoopbackWorld(scenario.routing, scenario.loopback, on_evict=evicted)

    for h in scenario.hosts:
        try:
            world.add_host(
                h["id"],
                position=_coord(h.get("position", (0.0, 0.0)), "position"),
                waypoint=_coord(h.get("waypoint"), "waypoint"),
                speed=float(h.get("speed", 0.0)),
                buffer_size=_optional(h.get("buffer_size"), int),
            )
        except ConfigError:
            raise
        except (TypeError, ValueError, HostEnvironmentError) as e:
            raise ConfigError(f"Invalid host {h['id']!r}: {e}", key="hosts")

    by_tick: Dict[int, List[ScenarioEvent]] = defaultdict(list)
    for event in scenario.events:
        by_tick[event.tick].append(event)

    for tick in range(scenario.ticks):
        for event in by_tick.get(tick, []):
            try:
                _apply_event(world, event, result)
            except ConfigError:
                raise
            except (KeyError, TypeError, ValueError, HostEnvironmentError) as e:
                raise ConfigError(f"Tick {tick}: invalid {event.type} event: {e}", key="events")
        world.advance()

    for message_id, dest in result.created.items():
        router = world.engine.get_router(dest)
        if router is None:
            continue
        delivered_at = router.delivered.delivered_at(message_id)
        if delivered_at is not None:
            result.delivered[message_id] = delivered_at

    result.snapshot = world.engine.snapshot()
    result.stats = {host: world.engine.router(host).get_stats() for host in world.engine.hosts}
    return result
