#!/usr/bin/env python3
"""Provision an EC2 instance that installs PostgreSQL on first boot.

Prerequisites: AWS credentials (aws configure, AWS_PROFILE or SSO) and a
default VPC in the target region.

Usage: uv run pgvm <command> [options]

Examples:
    uv run pgvm create
    uv run pgvm create db1 --key-pair k1 --volume-size 50 --region eu-west-1
    uv run pgvm user-data --db-name orders > user-data.sh
    uv run pgvm create db2 --user-data-file user-data.sh
    uv run pgvm image --region us-east-2
"""

import sys
from pathlib import Path
from typing import Annotated

import cyclopts
from rich import print

from .bootstrap import USER_DATA_LIMIT, load_user_data, render_user_data
from .config import default_key_path, load_config, resolve_region
from .errors import (
    ConfigError,
    InstanceTimeoutError,
    KeyMaterialPersistError,
    ProvisionError,
)
from .provisioner import Provisioner
from .types import ProvisionConfig, ProvisionResult
from .utils import error, log, setup_logging, warn

app = cyclopts.App(
    name="pgvm", help="Provision a PostgreSQL server on AWS EC2", sort_key=None
)

SSH_USER = "ec2-user"


@app.meta.default
def launcher(
    *tokens: Annotated[str, cyclopts.Parameter(show=False, allow_leading_hyphen=True)],
    log_level: str = "INFO",
):
    """:param log_level: Logging level (DEBUG, INFO, WARNING, ERROR)"""
    setup_logging(log_level)
    return app(tokens)


def print_summary(config: ProvisionConfig, result: ProvisionResult, key_path: Path) -> None:
    ip = result.public_ip or "<no public IP>"
    key_file = result.key_pair.key_path or str(key_path)

    print("")
    print("[green]Your PostgreSQL EC2 instance is ready![/green]")
    print(f"  Instance ID: {result.instance.instance_id}")
    print(f"  Public IP: {ip}")
    print(f"  Key file: {key_file}")
    if not result.key_pair.created:
        print(f"  [yellow]Key pair '{result.key_pair.name}' already existed; use your existing copy of its private key[/yellow]")
    print("")
    print("Next steps:")
    print("  1. Wait 2-3 minutes for the instance to fully initialize")
    print("  2. Connect via SSH:")
    print(f"     ssh -i {key_file} {SSH_USER}@{ip}")
    print("  3. Once connected, run the PostgreSQL configuration:")
    print("     ./configure-postgres.sh")
    print("  4. Test your database connection:")
    print("     psql -h localhost -U appuser -d myapp_db")
    print("")
    print(f"  Security group '{result.security_group.group_id}' allows access from: {config.ingress_cidr}")
    print(f"  Storage: {config.volume_size}GB {config.volume_type.upper()} volume")


@app.command(name="create")
def create_instance(
    name: str | None = None,
    *,
    key_pair: str | None = None,
    instance_type: str | None = None,
    volume_size: int | None = None,
    region: str | None = None,
    cidr: str | None = None,
    user_data_file: Path | None = None,
    key_path: Path | None = None,
    timeout: int | None = None,
    aws_profile: str | None = None,
):
    """Create the key pair, security group and PostgreSQL instance.

    Re-running reuses the key pair and security group but always launches a
    new instance.

    :param name: Instance Name tag (default: PGVM_INSTANCE_NAME or mashoor-postgres-db)
    :param key_pair: Key pair name (default: PGVM_KEY_PAIR_NAME or mashoor-database)
    :param instance_type: EC2 instance type (default: t3.micro)
    :param volume_size: Root volume size in GiB (default: 30)
    :param region: AWS region (default: AWS_REGION, profile region, or us-east-1)
    :param cidr: CIDR allowed to reach SSH and PostgreSQL (default: your public IP /32)
    :param user_data_file: Bootstrap script to use instead of the built-in PostgreSQL one
    :param key_path: Where a newly created private key is saved (default: ~/<key-pair>.pem)
    :param timeout: Seconds to wait for the instance to run (default: 600)
    :param aws_profile: AWS profile name from ~/.aws/config
    """
    user_data = None
    if user_data_file:
        try:
            user_data = load_user_data(user_data_file)
        except OSError as e:
            error(f"Cannot read user data file '{user_data_file}': {e}")

    try:
        config = load_config(
            instance_name=name,
            key_pair_name=key_pair,
            instance_type=instance_type,
            volume_size=volume_size,
            region=region,
            ingress_cidr=cidr,
            user_data=user_data,
            wait_timeout=timeout,
            aws_profile=aws_profile,
        )
    except ConfigError as e:
        error(str(e))

    if len(config.user_data.encode()) > USER_DATA_LIMIT:
        warn(f"User data is larger than {USER_DATA_LIMIT} bytes; EC2 will likely reject it")

    log(f"Using region: '{config.region}'")
    key_path = key_path or default_key_path(config.key_pair_name)

    p = Provisioner.from_session(config.region, aws_profile)
    try:
        result = p.run(config, key_path)
    except KeyMaterialPersistError as e:
        error(
            f"{e}\n"
            "The private key cannot be downloaded again. Delete the key pair and re-run:\n"
            f"  aws ec2 delete-key-pair --key-name {e.key_name} --region {config.region}"
        )
    except InstanceTimeoutError as e:
        error(
            f"{e}\n"
            "The instance was not terminated. Check on it with:\n"
            f"  aws ec2 describe-instances --instance-ids {e.instance_id} --region {config.region}"
        )
    except ProvisionError as e:
        error(str(e))

    print_summary(config, result, key_path)

    if result.partial_error:
        for rule, exc in result.partial_error.failed:
            warn(f"Not applied: {rule.protocol}/{rule.from_port} from '{rule.cidr}' ({exc.code})")
        error(
            f"Security group '{result.partial_error.group_id}' is missing ingress rules. Add them with:\n"
            f"  aws ec2 authorize-security-group-ingress --group-id {result.partial_error.group_id} "
            f"--protocol tcp --port <port> --cidr {config.ingress_cidr} --region {config.region}",
            code=2,
        )


@app.command(name="user-data")
def show_user_data(
    *,
    db_name: str = "myapp_db",
    db_user: str = "appuser",
    postgres_version: int = 15,
):
    """Print the built-in PostgreSQL bootstrap script.

    :param db_name: Application database created by configure-postgres.sh
    :param db_user: Application role created by configure-postgres.sh
    :param postgres_version: PostgreSQL major version to install
    """
    sys.stdout.write(
        render_user_data(db_name=db_name, db_user=db_user, postgres_version=postgres_version)
    )


@app.command(name="image")
def show_image(
    *,
    region: str | None = None,
    pattern: str = ProvisionConfig.image_name_pattern,
    aws_profile: str | None = None,
):
    """Show the AMI the next launch would use.

    :param region: AWS region
    :param pattern: AMI name pattern
    :param aws_profile: AWS profile name from ~/.aws/config
    """
    region = resolve_region(region, aws_profile)
    p = Provisioner.from_session(region, aws_profile)
    try:
        image_id = p.select_latest_image(pattern)
    except ProvisionError as e:
        error(str(e))
    print(image_id)


@app.command(name="network")
def show_network(*, region: str | None = None, aws_profile: str | None = None):
    """Show the default VPC and the subnet the instance would land in.

    :param region: AWS region
    :param aws_profile: AWS profile name from ~/.aws/config
    """
    region = resolve_region(region, aws_profile)
    p = Provisioner.from_session(region, aws_profile)
    try:
        vpc_id, subnet_id = p.resolve_default_network()
    except ProvisionError as e:
        error(str(e))
    print(f"  VPC: {vpc_id}")
    print(f"  Subnet: {subnet_id}")


def main():
    app.meta()


if __name__ == "__main__":
    main()
