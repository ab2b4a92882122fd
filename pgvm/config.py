"""Configuration loading from flags, environment, .env and AWS profiles."""

import configparser
import os
from pathlib import Path

import boto3
from dotenv import load_dotenv

from .bootstrap import render_user_data
from .errors import ConfigError
from .types import ProvisionConfig
from .utils import get_my_ip, log

DEFAULT_INSTANCE_NAME = "mashoor-postgres-db"
DEFAULT_KEY_PAIR_NAME = "mashoor-database"
DEFAULT_INSTANCE_TYPE = "t3.micro"
DEFAULT_VOLUME_SIZE = 30
DEFAULT_REGION = "us-east-1"

ENV_PREFIX = "PGVM_"


def get_aws_config(profile: str | None = None) -> dict:
    """Load AWS configuration for boto3 session initialization.

    Reads profile and region from config files and environment variables.
    Does not validate credentials.

    :param profile: Explicit AWS profile name (overrides AWS_PROFILE env var)
    :return: Dict with profile_name and/or region_name keys for boto3.Session()
    """
    load_dotenv()

    aws_config = {}
    available_profiles = set()
    for path in ["~/.aws/credentials", "~/.aws/config"]:
        path = os.path.expanduser(path)
        if os.path.exists(path):
            cfg = configparser.ConfigParser()
            cfg.read(path)
            for section in cfg.sections():
                if section.startswith("profile "):
                    available_profiles.add(section[8:])
                else:
                    available_profiles.add(section)

    profile_name = profile or os.getenv("AWS_PROFILE")
    if not profile_name and "default" in available_profiles:
        profile_name = "default"
    if profile_name:
        if profile_name in available_profiles:
            aws_config["profile_name"] = profile_name
        else:
            log(f"AWS profile '{profile_name}' not found, using default credential chain...")
            os.environ.pop("AWS_PROFILE", None)

    region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
    if region:
        aws_config["region_name"] = region

    return aws_config


def resolve_region(region: str | None = None, aws_profile: str | None = None) -> str:
    """Explicit region, then environment, then the profile's region, then us-east-1."""
    if region:
        return region
    aws_config = get_aws_config(aws_profile)
    if aws_config.get("region_name"):
        return aws_config["region_name"]
    session_region = boto3.Session(**aws_config).region_name
    return session_region or DEFAULT_REGION


def resolve_ingress_cidr(cidr: str | None = None) -> str:
    """Explicit CIDR, else the caller's public IP as a /32."""
    if cidr:
        return cidr
    log("Getting your public IP...")
    my_ip = get_my_ip()
    if not my_ip:
        raise ConfigError(
            "Could not detect your public IP. Pass --cidr or set PGVM_INGRESS_CIDR."
        )
    log(f"Your public IP: '{my_ip}'")
    return f"{my_ip}/32"


def default_key_path(key_pair_name: str) -> Path:
    return Path.home() / f"{key_pair_name}.pem"


def _env(name: str) -> str | None:
    return os.getenv(ENV_PREFIX + name) or None


def _env_int(name: str) -> int | None:
    value = _env(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got '{value}'") from None


def load_config(
    *,
    instance_name: str | None = None,
    key_pair_name: str | None = None,
    instance_type: str | None = None,
    volume_size: int | None = None,
    region: str | None = None,
    ingress_cidr: str | None = None,
    user_data: str | None = None,
    wait_timeout: int | None = None,
    aws_profile: str | None = None,
) -> ProvisionConfig:
    """Build a ProvisionConfig; explicit arguments win over PGVM_* variables.

    ``.env`` in the working directory is loaded first. Without an explicit
    payload the PostgreSQL bootstrap script is rendered.

    :raises ConfigError: If a value is invalid or the ingress CIDR cannot be found
    """
    load_dotenv()

    volume_size = volume_size if volume_size is not None else _env_int("VOLUME_SIZE")
    volume_size = volume_size if volume_size is not None else DEFAULT_VOLUME_SIZE
    if volume_size <= 0:
        raise ConfigError(f"Volume size must be a positive number of GiB, got {volume_size}")

    extra = {}
    wait_timeout = wait_timeout if wait_timeout is not None else _env_int("WAIT_TIMEOUT")
    if wait_timeout is not None:
        if wait_timeout <= 0:
            raise ConfigError(f"Wait timeout must be positive, got {wait_timeout}")
        extra["wait_timeout"] = wait_timeout
    if _env("SECURITY_GROUP_NAME"):
        extra["security_group_name"] = _env("SECURITY_GROUP_NAME")
    if _env("IMAGE_PATTERN"):
        extra["image_name_pattern"] = _env("IMAGE_PATTERN")

    return ProvisionConfig(
        instance_name=instance_name or _env("INSTANCE_NAME") or DEFAULT_INSTANCE_NAME,
        key_pair_name=key_pair_name or _env("KEY_PAIR_NAME") or DEFAULT_KEY_PAIR_NAME,
        instance_type=instance_type or _env("INSTANCE_TYPE") or DEFAULT_INSTANCE_TYPE,
        volume_size=volume_size,
        region=resolve_region(region, aws_profile),
        ingress_cidr=resolve_ingress_cidr(ingress_cidr or _env("INGRESS_CIDR")),
        user_data=user_data if user_data is not None else render_user_data(),
        **extra,
    )
