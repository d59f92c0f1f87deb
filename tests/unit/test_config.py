"""Unit tests for configuration loading."""

import json
import pytest

import yaml

from imgcloud_manager.core.config import (
    ManagerConfig, ProviderConfig, StatsConfig, load_config
)
from imgcloud_manager.core.exceptions import ConfigurationError


ENV_VARS = [
    'IMGCLOUD_POLL_FREQUENCY_MS', 'IMGCLOUD_PROVISION_FREQUENCY_MS', 'IMGCLOUD_PROBE_TIMEOUT_MS',
    'IMGCLOUD_MIN_INSTANCES', 'IMGCLOUD_MAX_INSTANCES', 'IMGCLOUD_ALLOCATION_THRESHOLD',
    'IMGCLOUD_DEALLOCATION_THRESHOLD', 'POLL', 'IMGCLOUD_REDIS_URL', 'DIGITALOCEAN_API_TOKEN',
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestManagerConfig:
    """Test cases for ManagerConfig."""
    
    def test_defaults(self):
        config = ManagerConfig()
        
        assert config.poll_frequency_ms == 5000
        assert config.provision_frequency_ms == 30000
        assert config.history_window == 6
        assert config.min_instances == 2
        assert config.max_instances == 10
        assert config.allocation_threshold == 0.80
        assert config.deallocation_threshold == 0.50
        assert config.probe_timeout == 2.0
        assert config.polling_enabled is True
        assert config.provider.type == "local"
        assert config.stats.type == "memory"
        config.validate()
    
    def test_history_window_follows_frequencies(self):
        config = ManagerConfig(poll_frequency_ms=1000, provision_frequency_ms=10000, probe_timeout_ms=500)
        assert config.history_window == 10
    
    @pytest.mark.parametrize("overrides,message", [
        ({"poll_frequency_ms": 0}, "poll_frequency_ms"),
        ({"provision_frequency_ms": 1000}, "provision_frequency_ms"),
        ({"probe_timeout_ms": 5000}, "probe_timeout_ms"),
        ({"min_instances": 5, "max_instances": 3}, "max_instances"),
        ({"deallocation_threshold": 0.9}, "deallocation_threshold"),
        ({"initial_port": 70000}, "initial_port"),
    ])
    def test_validation_errors(self, overrides, message):
        with pytest.raises(ConfigurationError) as exc_info:
            ManagerConfig(**overrides).validate()
        
        assert message in str(exc_info.value)
        assert exc_info.value.error_code == "INVALID_CONFIG"
    
    def test_unknown_provider_type(self):
        config = ManagerConfig(provider=ProviderConfig(type="aws"))
        with pytest.raises(ConfigurationError, match="provider type"):
            config.validate()
    
    def test_unknown_stats_type(self):
        config = ManagerConfig(stats=StatsConfig(type="kafka"))
        with pytest.raises(ConfigurationError, match="stats sink type"):
            config.validate()
    
    def test_from_dict_nested(self):
        config = ManagerConfig.from_dict({
            "min_instances": 3,
            "provider": {"type": "digitalocean", "region": "ams3"},
            "stats": {"type": "redis", "redis_url": "redis://cache:6379"},
            "log": {"level": "DEBUG"},
        })
        
        assert config.min_instances == 3
        assert config.provider.region == "ams3"
        assert config.stats.redis_url == "redis://cache:6379"
        assert config.log.level == "DEBUG"
    
    def test_from_dict_unknown_key(self):
        with pytest.raises(ConfigurationError):
            ManagerConfig.from_dict({"max_droplets": 4})
    
    @pytest.mark.parametrize("section", ["provider", "stats", "log"])
    def test_from_dict_unknown_nested_key(self, section):
        with pytest.raises(ConfigurationError, match="typ"):
            ManagerConfig.from_dict({section: {"typ": "local"}})
    
    def test_to_dict_round_trip(self):
        config = ManagerConfig(min_instances=4)
        assert ManagerConfig.from_dict(config.to_dict()) == config


class TestEnvironmentOverrides:
    """Test cases for ManagerConfig.from_env."""
    
    def test_numeric_overrides(self, monkeypatch):
        monkeypatch.setenv('IMGCLOUD_MIN_INSTANCES', '3')
        monkeypatch.setenv('IMGCLOUD_ALLOCATION_THRESHOLD', '0.9')
        
        config = ManagerConfig.from_env()
        
        assert config.min_instances == 3
        assert config.allocation_threshold == 0.9
    
    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv('IMGCLOUD_MAX_INSTANCES', 'many')
        
        with pytest.raises(ConfigurationError, match="IMGCLOUD_MAX_INSTANCES"):
            ManagerConfig.from_env()
    
    @pytest.mark.parametrize("value,enabled", [("0", False), ("1", True), ("yes", True)])
    def test_poll_switch(self, monkeypatch, value, enabled):
        monkeypatch.setenv('POLL', value)
        assert ManagerConfig.from_env().polling_enabled is enabled
    
    def test_redis_url_selects_redis_sink(self, monkeypatch):
        monkeypatch.setenv('IMGCLOUD_REDIS_URL', 'redis://stats:6380/1')
        
        config = ManagerConfig.from_env()
        
        assert config.stats.type == "redis"
        assert config.stats.redis_url == 'redis://stats:6380/1'
    
    def test_digitalocean_token(self, monkeypatch):
        monkeypatch.setenv('DIGITALOCEAN_API_TOKEN', 'do-token-123')
        assert ManagerConfig.from_env().provider.api_token == 'do-token-123'
    
    def test_overrides_apply_to_base(self, monkeypatch):
        monkeypatch.setenv('IMGCLOUD_MAX_INSTANCES', '20')
        base = ManagerConfig(min_instances=4)
        
        config = ManagerConfig.from_env(base)
        
        assert config.min_instances == 4
        assert config.max_instances == 20


class TestLoadConfig:
    """Test cases for load_config."""
    
    def test_defaults_without_file(self):
        assert load_config() == ManagerConfig()
    
    def test_json_file(self, tmp_path):
        path = tmp_path / "manager.json"
        path.write_text(json.dumps({"max_instances": 6, "provider": {"command": ["app", "{port}"]}}))
        
        config = load_config(path)
        
        assert config.max_instances == 6
        assert config.provider.command == ["app", "{port}"]
    
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "manager.yaml"
        path.write_text(yaml.safe_dump({"poll_frequency_ms": 1000, "provision_frequency_ms": 3000,
                                        "probe_timeout_ms": 500}))
        
        config = load_config(str(path))
        
        assert config.history_window == 3
    
    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "manager.json"
        path.write_text(json.dumps({"polling_enabled": True}))
        monkeypatch.setenv('POLL', '0')
        
        assert load_config(path).polling_enabled is False
    
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.json")
    
    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "manager.toml"
        path.write_text("min_instances = 2")
        
        with pytest.raises(ConfigurationError, match="Unsupported"):
            load_config(path)
    
    def test_malformed_json(self, tmp_path):
        path = tmp_path / "manager.json"
        path.write_text("{not json")
        
        with pytest.raises(ConfigurationError):
            load_config(path)
    
    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "manager.yaml"
        path.write_text("- 1\n- 2\n")
        
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)
    
    def test_nested_typo_in_yaml(self, tmp_path):
        path = tmp_path / "manager.yaml"
        path.write_text("provider:\n  typ: local\n")
        
        with pytest.raises(ConfigurationError, match="typ"):
            load_config(path)
    
    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "manager.json"
        path.write_text(json.dumps({"probe_timeout_ms": 9000}))
        
        with pytest.raises(ConfigurationError):
            load_config(path)
