"""Tests for configuration loading."""

import pytest

from lector.utils.config import Config, get_config, reset_config


class TestConfig:
    """Test Config."""
    
    def test_defaults(self):
        """Test the default file supplies election and job settings."""
        config = Config(environ={})
        
        assert config.get("election.name") == "lector"
        assert config.get("election.lease_duration") == 15.0
        assert config.get("labels.retry_attempts") == 5
        assert config.get("jobs.history_retention") == 3600
        assert config.get("cluster.in_cluster") is True
    
    def test_missing_key_default(self):
        config = Config(environ={})
        
        assert config.get("nope.missing", "fallback") == "fallback"
        assert config.get("cluster.namespace", "default") == "default"
    
    def test_file_merge(self, tmp_path):
        """Test a user file is deep-merged over the defaults."""
        path = tmp_path / "lector.yaml"
        path.write_text("election:\n  name: web\n  retry_period: 1.0\n")
        
        config = Config(str(path), environ={})
        
        assert config.get("election.name") == "web"
        assert config.get("election.retry_period") == 1.0
        assert config.get("election.renew_deadline") == 10.0
    
    def test_env_overrides(self, tmp_path):
        """Test environment variables win over files."""
        path = tmp_path / "lector.yaml"
        path.write_text("cluster:\n  namespace: from-file\n")
        
        config = Config(
            str(path),
            environ={"POD_NAMESPACE": "prod", "POD_NAME": "web-3", "ELECTION_NAME": "web"},
        )
        
        assert config.get("cluster.namespace") == "prod"
        assert config.get("cluster.pod_name") == "web-3"
        assert config.get("election.name") == "web"
    
    def test_set_creates_sections(self):
        config = Config(environ={})
        config.set("extra.nested.key", 1)
        
        assert config.get("extra.nested.key") == 1
        assert config.to_dict()["extra"] == {"nested": {"key": 1}}


class TestGlobalConfig:
    """Test the process-wide configuration."""
    
    @pytest.fixture(autouse=True)
    def reset(self):
        reset_config()
        yield
        reset_config()
    
    def test_singleton(self):
        assert get_config() is get_config()
    
    def test_reset(self):
        first = get_config()
        reset_config()
        
        assert get_config() is not first
