"""Live provisioning against a real AWS account.

Creates a key pair, security group and t3.micro instance, checks the
result, and deletes everything on teardown. Run with:

    uv run pytest tests/test_integration.py -m integration --region us-east-1
"""

from uuid import uuid4

import boto3
import pytest
from botocore.exceptions import ClientError

from pgvm.bootstrap import render_user_data
from pgvm.config import resolve_ingress_cidr
from pgvm.provisioner import Provisioner
from pgvm.types import ProvisionConfig


@pytest.fixture(scope="module")
def live_run(region, tmp_path_factory):
    """Provision once for the module, tear down afterwards."""
    suffix = uuid4().hex[:8]
    config = ProvisionConfig(
        instance_name=f"test-pgvm-{suffix}",
        key_pair_name=f"test-pgvm-{suffix}",
        instance_type="t3.micro",
        volume_size=30,
        region=region,
        ingress_cidr=resolve_ingress_cidr(),
        user_data=render_user_data(),
        security_group_name=f"test-pgvm-{suffix}",
    )
    key_path = tmp_path_factory.mktemp("keys") / f"{config.key_pair_name}.pem"
    ec2 = boto3.client("ec2", region_name=region)
    provisioner = Provisioner(ec2)

    result = None
    try:
        result = provisioner.run(config, key_path)
        yield provisioner, config, key_path, result
    finally:
        if result:
            ec2.terminate_instances(InstanceIds=[result.instance.instance_id])
            ec2.get_waiter("instance_terminated").wait(
                InstanceIds=[result.instance.instance_id]
            )
            ec2.delete_security_group(GroupId=result.security_group.group_id)
        try:
            ec2.delete_key_pair(KeyName=config.key_pair_name)
        except ClientError:
            pass


@pytest.mark.integration
def test_instance_running_with_ip(live_run):
    _, _, key_path, result = live_run
    assert result.instance.instance_id.startswith("i-")
    assert result.public_ip
    assert result.key_pair.created
    assert key_path.read_text().startswith("-----BEGIN")


@pytest.mark.integration
def test_security_group_rules(live_run):
    result = live_run[3]
    assert result.partial_error is None
    assert result.security_group.created
    assert {r.from_port for r in result.security_group.rules} == {22, 5432}


@pytest.mark.integration
def test_lookups_reuse_resources(live_run, tmp_path):
    provisioner, config, _, result = live_run

    key_pair = provisioner.resolve_or_create_key_pair(config.key_pair_name, tmp_path / "unused.pem")
    group = provisioner.resolve_or_create_security_group(
        config.security_group_name,
        config.security_group_description,
        result.vpc_id,
        config.ingress_rules,
    )

    assert not key_pair.created
    assert not (tmp_path / "unused.pem").exists()
    assert group.group_id == result.security_group.group_id
    assert not group.created
