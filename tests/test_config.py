import pytest

from pgvm import config as config_module
from pgvm.bootstrap import render_user_data
from pgvm.config import get_aws_config, load_config, resolve_region
from pgvm.errors import ConfigError

ENV_VARS = [
    "AWS_PROFILE",
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
    "PGVM_INSTANCE_NAME",
    "PGVM_KEY_PAIR_NAME",
    "PGVM_INSTANCE_TYPE",
    "PGVM_VOLUME_SIZE",
    "PGVM_INGRESS_CIDR",
    "PGVM_SECURITY_GROUP_NAME",
    "PGVM_IMAGE_PATTERN",
    "PGVM_WAIT_TIMEOUT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from the developer's shell, ~/.aws and any .env file."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / ".aws" / "config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / ".aws" / "credentials"))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "load_dotenv", lambda *a, **kw: False)
    monkeypatch.setattr(config_module, "get_my_ip", lambda: "5.6.7.8")


def test_defaults():
    config = load_config()
    assert config.instance_name == "mashoor-postgres-db"
    assert config.key_pair_name == "mashoor-database"
    assert config.instance_type == "t3.micro"
    assert config.volume_size == 30
    assert config.region == "us-east-1"
    assert config.ingress_cidr == "5.6.7.8/32"
    assert config.user_data == render_user_data()
    assert config.wait_timeout == 600


def test_environment(monkeypatch):
    monkeypatch.setenv("PGVM_INSTANCE_NAME", "db1")
    monkeypatch.setenv("PGVM_KEY_PAIR_NAME", "k1")
    monkeypatch.setenv("PGVM_VOLUME_SIZE", "50")
    monkeypatch.setenv("PGVM_INGRESS_CIDR", "10.0.0.0/8")
    monkeypatch.setenv("PGVM_SECURITY_GROUP_NAME", "db-sg")
    monkeypatch.setenv("PGVM_WAIT_TIMEOUT", "120")
    monkeypatch.setenv("AWS_REGION", "eu-west-1")

    config = load_config()

    assert config.instance_name == "db1"
    assert config.key_pair_name == "k1"
    assert config.volume_size == 50
    assert config.ingress_cidr == "10.0.0.0/8"
    assert config.security_group_name == "db-sg"
    assert config.wait_timeout == 120
    assert config.region == "eu-west-1"


def test_arguments_win_over_environment(monkeypatch):
    monkeypatch.setenv("PGVM_INSTANCE_NAME", "from-env")
    monkeypatch.setenv("PGVM_VOLUME_SIZE", "50")

    config = load_config(
        instance_name="db1",
        volume_size=20,
        region="ap-southeast-2",
        ingress_cidr="1.2.3.4/32",
        user_data="#!/bin/sh\n",
    )

    assert config.instance_name == "db1"
    assert config.volume_size == 20
    assert config.region == "ap-southeast-2"
    assert config.ingress_cidr == "1.2.3.4/32"
    assert config.user_data == "#!/bin/sh\n"


def test_ip_detection_failure(monkeypatch):
    monkeypatch.setattr(config_module, "get_my_ip", lambda: None)
    with pytest.raises(ConfigError):
        load_config()


@pytest.mark.parametrize("size", [0, -5])
def test_invalid_volume_size(size):
    with pytest.raises(ConfigError):
        load_config(volume_size=size)


def test_non_numeric_environment(monkeypatch):
    monkeypatch.setenv("PGVM_VOLUME_SIZE", "big")
    with pytest.raises(ConfigError, match="PGVM_VOLUME_SIZE"):
        load_config()


def test_region_from_default_region_variable(monkeypatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-west-2")
    assert resolve_region() == "us-west-2"


def test_region_from_profile(tmp_path):
    aws_dir = tmp_path / ".aws"
    aws_dir.mkdir()
    (aws_dir / "config").write_text("[profile work]\nregion = eu-central-1\n")
    assert resolve_region(aws_profile="work") == "eu-central-1"


def test_aws_profile_lookup(tmp_path, monkeypatch):
    aws_dir = tmp_path / ".aws"
    aws_dir.mkdir()
    (aws_dir / "credentials").write_text(
        "[default]\naws_access_key_id = a\naws_secret_access_key = b\n"
        "[work]\naws_access_key_id = c\naws_secret_access_key = d\n"
    )

    assert get_aws_config("work") == {"profile_name": "work"}
    assert get_aws_config() == {"profile_name": "default"}

    monkeypatch.setenv("AWS_PROFILE", "missing")
    assert get_aws_config() == {}
