"""
Tests for ferry/config.py

Covers:
- RoutingConfig defaults and range validation
- Loading TOML files and required keys
- Enum parsing and unknown settings
"""

import pytest

from ferry.config import (
    Config,
    EvictionPolicy,
    QueueMode,
    RoutingConfig,
    RoutingPolicy,
)
from ferry.errors import ConfigError, FerryError


VALID_TOML = """
log_level = "debug"

[routing]
initial_copies = 8
binary_mode = false
policy = "contact_history"
direction_coefficient = 6
queue_mode = "smallest_first"
eviction_policy = "largest"
msg_ttl = 120
"""


# ============================================================================
# RoutingConfig
# ============================================================================

class TestRoutingConfig:

    def test_defaults_are_valid(self):
        config = RoutingConfig()
        assert config.initial_copies == 6
        assert config.binary_mode is True
        assert config.policy == RoutingPolicy.DIRECTION
        assert config.queue_mode == QueueMode.FIFO
        assert config.msg_ttl is None

    def test_frozen(self):
        config = RoutingConfig()
        with pytest.raises(AttributeError):
            config.initial_copies = 3

    @pytest.mark.parametrize("overrides,key", [
        ({"initial_copies": 0}, "initial_copies"),
        ({"initial_copies": 2.5}, "initial_copies"),
        ({"binary_mode": "yes"}, "binary_mode"),
        ({"direction_coefficient": 0}, "direction_coefficient"),
        ({"direction_coefficient": 9}, "direction_coefficient"),
        ({"low_buffer_factor": 1, "high_buffer_factor": 2}, "low_buffer_factor"),
        ({"buffer_size": 0}, "buffer_size"),
        ({"msg_ttl": 0}, "msg_ttl"),
        ({"msg_ttl": "soon"}, "msg_ttl"),
        ({"queue_mode": "fifo"}, "queue_mode"),
    ])
    def test_invalid_settings(self, overrides, key):
        with pytest.raises(ConfigError) as exc:
            RoutingConfig(**overrides)
        assert exc.value.key == key

    def test_direction_coefficient_bounds_inclusive(self):
        assert RoutingConfig(direction_coefficient=1).direction_coefficient == 1
        assert RoutingConfig(direction_coefficient=8).direction_coefficient == 8

    def test_equal_buffer_factors_allowed(self):
        config = RoutingConfig(low_buffer_factor=3, high_buffer_factor=3)
        assert config.low_buffer_factor == config.high_buffer_factor

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            RoutingConfig(initial_copies=-1)
        assert issubclass(ConfigError, FerryError)


# ============================================================================
# Config files
# ============================================================================

class TestConfigLoad:

    def test_load_file(self, tmp_path):
        path = tmp_path / "ferry.toml"
        path.write_text(VALID_TOML)

        config = Config.load(path)
        config.validate()

        r = config.routing
        assert config.config_path == path
        assert config.log_level == "DEBUG"
        assert r.initial_copies == 8
        assert r.binary_mode is False
        assert r.policy == RoutingPolicy.CONTACT_HISTORY
        assert r.direction_coefficient == 6
        assert r.queue_mode == QueueMode.SMALLEST_FIRST
        assert r.eviction_policy == EvictionPolicy.LARGEST
        assert r.msg_ttl == 120

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            Config.load(tmp_path / "nope.toml")

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[routing]\ninitial_copies = \n")
        with pytest.raises(ConfigError, match="Failed to parse"):
            Config.load(path)

    def test_missing_routing_table(self):
        with pytest.raises(ConfigError) as exc:
            Config.from_dict({"log_level": "INFO"})
        assert exc.value.key == "routing"

    @pytest.mark.parametrize("missing", ["initial_copies", "binary_mode"])
    def test_missing_required_key(self, missing):
        routing = {"initial_copies": 4, "binary_mode": True}
        del routing[missing]
        with pytest.raises(ConfigError) as exc:
            Config.from_dict({"routing": routing})
        assert exc.value.key == missing

    def test_unknown_routing_key(self):
        with pytest.raises(ConfigError, match="Unknown routing setting"):
            Config.from_dict({"routing": {
                "initial_copies": 4,
                "binary_mode": True,
                "alpha": 0.5,
            }})

    def test_invalid_policy_name(self):
        with pytest.raises(ConfigError) as exc:
            Config.from_dict({"routing": {
                "initial_copies": 4,
                "binary_mode": True,
                "policy": "epidemic",
            }})
        assert exc.value.key == "policy"
        assert "contact_history" in str(exc.value)

    def test_out_of_range_value_in_file(self, tmp_path):
        path = tmp_path / "ferry.toml"
        path.write_text("[routing]\ninitial_copies = 0\nbinary_mode = true\n")
        with pytest.raises(ConfigError) as exc:
            Config.load(path)
        assert exc.value.key == "initial_copies"

    def test_invalid_log_level(self):
        config = Config.from_dict({
            "log_level": "chatty",
            "routing": {"initial_copies": 4, "binary_mode": True},
        })
        with pytest.raises(ConfigError) as exc:
            config.validate()
        assert exc.value.key == "log_level"

    def test_configs_do_not_share_routing(self):
        first = Config.from_dict({"routing": {"initial_copies": 2, "binary_mode": True}})
        second = Config.from_dict({"routing": {"initial_copies": 9, "binary_mode": False}})
        assert first.routing.initial_copies == 2
        assert second.routing.initial_copies == 9
        assert RoutingConfig().initial_copies == 6
