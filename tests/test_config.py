"""
Settings validation and startup credential checks.
"""

import pytest
from pydantic import ValidationError

from kvas.api.deps import validate_auth_config
from kvas.config import Environment, Settings, require_remote_credentials, settings
from kvas.errors import ConfigurationError


@pytest.fixture
def key_pair(tmp_path):
    key = tmp_path / "id_kvas"
    key.write_text("PRIVATE")
    (tmp_path / "id_kvas.pub").write_text("ssh-ed25519 AAAA kvas")
    return key


def test_ssh_settings_read_plain_env_names(monkeypatch, key_pair):
    monkeypatch.delenv("KVAS_SSH_LOGIN", raising=False)
    monkeypatch.delenv("KVAS_SSH_KEY_FILE", raising=False)
    monkeypatch.setenv("SSH_LOGIN", "kvas")
    monkeypatch.setenv("SSH_FILE", str(key_pair))

    config = Settings(_env_file=None)

    assert config.ssh_login == "kvas"
    assert config.ssh_key_file == str(key_pair)


def test_remote_credentials_accepted(key_pair):
    config = settings.model_copy(update={"ssh_login": "kvas", "ssh_key_file": str(key_pair)})

    require_remote_credentials(config)


@pytest.mark.parametrize(
    "update, fragment",
    [
        ({"ssh_login": None, "ssh_key_file": "/tmp/key"}, "SSH_LOGIN"),
        ({"ssh_login": "kvas", "ssh_key_file": None}, "SSH_FILE"),
        ({"ssh_login": "kvas", "ssh_key_file": "/nonexistent/id_kvas"}, "/nonexistent/id_kvas"),
    ],
)
def test_remote_credentials_missing(update, fragment):
    config = settings.model_copy(update=update)

    with pytest.raises(ConfigurationError) as exc_info:
        require_remote_credentials(config)

    assert fragment in exc_info.value.message
    assert exc_info.value.code == "CONFIGURATION_ERROR"


def test_remote_credentials_require_public_key(key_pair):
    (key_pair.parent / "id_kvas.pub").unlink()
    config = settings.model_copy(update={"ssh_login": "kvas", "ssh_key_file": str(key_pair)})

    with pytest.raises(ConfigurationError) as exc_info:
        require_remote_credentials(config)

    assert exc_info.value.message.endswith(".pub` is missing or unreadable")


@pytest.mark.parametrize("field", ["port", "node_port", "ssh_port"])
def test_port_range_validated(field):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: 70000})


def test_api_key_required_in_production():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, env=Environment.PRODUCTION, api_key=None)

    config = Settings(_env_file=None, env=Environment.PRODUCTION, api_key="s3cret")
    assert config.api_key == "s3cret"


def test_api_key_optional_in_insecure_dev():
    config = Settings(
        _env_file=None, env=Environment.DEVELOPMENT, allow_insecure_dev=True, api_key=None
    )

    assert config.api_key is None


def test_auth_config_fails_closed(monkeypatch):
    monkeypatch.setattr(settings, "api_key", None)
    monkeypatch.setattr(settings, "allow_insecure_dev", False)

    with pytest.raises(RuntimeError):
        validate_auth_config()

    monkeypatch.setattr(settings, "allow_insecure_dev", True)
    validate_auth_config()
