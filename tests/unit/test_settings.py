"""
Tests for modularity/settings.py - Environment-driven host settings.
"""
from pathlib import Path

import pytest

from modularity.lifecycle import FailurePolicy
from modularity.settings import HostSettings

SETTINGS_VARIABLES = [
    "MODULARITY_ENVIRONMENT",
    "MODULARITY_FAILURE_POLICY",
    "MODULARITY_HOOK_TIMEOUT",
    "MODULARITY_CONFIG_PREFIX",
    "MODULARITY_CONFIG_FILE",
    "MODULARITY_LOG_LEVEL",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_environment(monkeypatch):
    for name in SETTINGS_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestHostSettings:

    def test_defaults(self, clean_environment):
        settings = HostSettings()

        assert settings.environment == "Production"
        assert settings.failure_policy is FailurePolicy.FAIL_FAST
        assert settings.hook_timeout is None
        assert settings.config_prefix == "MODULARITY_"
        assert settings.config_file is None
        assert settings.log_level == "INFO"

    def test_read_from_environment(self, clean_environment):
        clean_environment.setenv("MODULARITY_ENVIRONMENT", "Staging")
        clean_environment.setenv("MODULARITY_FAILURE_POLICY", "Continue")
        clean_environment.setenv("MODULARITY_HOOK_TIMEOUT", "2.5")
        clean_environment.setenv("MODULARITY_CONFIG_FILE", "appsettings.json")
        clean_environment.setenv("LOG_LEVEL", "DEBUG")

        settings = HostSettings()

        assert settings.environment == "Staging"
        assert settings.failure_policy is FailurePolicy.CONTINUE
        assert settings.hook_timeout == 2.5
        assert settings.config_file == Path("appsettings.json")
        assert settings.log_level == "DEBUG"

    def test_unknown_failure_policy(self, clean_environment):
        clean_environment.setenv("MODULARITY_FAILURE_POLICY", "retry")

        with pytest.raises(ValueError, match="Unknown failure policy"):
            HostSettings()

    def test_from_environment_reads_env_file(self, clean_environment, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MODULARITY_ENVIRONMENT=Development\nMODULARITY_HOOK_TIMEOUT=10\n")
        # load_dotenv writes into os.environ; register the keys so monkeypatch restores them
        clean_environment.setenv("MODULARITY_ENVIRONMENT", "")
        clean_environment.delenv("MODULARITY_ENVIRONMENT")
        clean_environment.setenv("MODULARITY_HOOK_TIMEOUT", "")
        clean_environment.delenv("MODULARITY_HOOK_TIMEOUT")

        settings = HostSettings.from_environment(str(env_file))

        assert settings.environment == "Development"
        assert settings.hook_timeout == 10.0

    def test_env_file_does_not_override_process_environment(self, clean_environment, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MODULARITY_ENVIRONMENT=Development\n")
        clean_environment.setenv("MODULARITY_ENVIRONMENT", "Staging")

        assert HostSettings.from_environment(str(env_file)).environment == "Staging"

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"hook_timeout": 0}, "MODULARITY_HOOK_TIMEOUT"),
            ({"environment": "  "}, "MODULARITY_ENVIRONMENT"),
        ],
    )
    def test_validate(self, clean_environment, overrides, message):
        with pytest.raises(ValueError, match=message):
            HostSettings(**overrides).validate()

    def test_to_dict(self, clean_environment):
        settings = HostSettings(
            environment="QA",
            failure_policy=FailurePolicy.CONTINUE,
            hook_timeout=1.0,
            config_file=Path("conf.json"),
        )

        assert settings.to_dict() == {
            "environment": "QA",
            "failure_policy": "continue",
            "hook_timeout": 1.0,
            "config_prefix": "MODULARITY_",
            "config_file": "conf.json",
            "log_level": "INFO",
        }
