"""Idempotent lookup-or-create provisioning of a PostgreSQL EC2 instance."""

import math
import os
from datetime import datetime, timezone
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from .config import get_aws_config
from .errors import (
    InstanceTimeoutError,
    KeyMaterialPersistError,
    PartialConfigurationError,
    ProviderError,
)
from .types import (
    IngressRule,
    InstanceRef,
    KeyPairRef,
    ProvisionConfig,
    ProvisionResult,
    SecurityGroupRef,
)
from .utils import log, warn

MANAGED_BY = "pgvm"

# Polling delay of the boto3 instance_running waiter
WAITER_DELAY = 15


def _tags(name: str) -> list[dict]:
    return [
        {"Key": "Name", "Value": name},
        {"Key": "ManagedBy", "Value": MANAGED_BY},
        {"Key": "CreatedAt", "Value": datetime.now(timezone.utc).isoformat()},
    ]


def write_key_material(path: Path, material: str) -> None:
    """Write a private key readable and writable by the owner only."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.is_file():
        warn(f"Overwriting existing key file: '{path}'")
        os.chmod(path, 0o600)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(material)
    os.chmod(path, 0o600)


class Provisioner:
    """Resolves or creates the resources for one instance, in order.

    Every step is a blocking boto3 call. Lookups make the key pair and
    security group safe to re-run; the launch is not, so each ``run``
    starts a new instance.
    """

    def __init__(self, ec2):
        self.ec2 = ec2

    @classmethod
    def from_session(cls, region: str, aws_profile: str | None = None) -> "Provisioner":
        aws_config = get_aws_config(aws_profile)
        aws_config["region_name"] = region
        return cls(boto3.Session(**aws_config).client("ec2"))

    def _call(self, operation: str, **params) -> dict:
        """Call an EC2 client method, mapping botocore failures to ProviderError."""
        try:
            return getattr(self.ec2, operation)(**params)
        except ClientError as e:
            err = e.response.get("Error", {})
            raise ProviderError(
                operation, err.get("Code", "Unknown"), err.get("Message", str(e))
            ) from e
        except BotoCoreError as e:
            raise ProviderError(operation, type(e).__name__, str(e)) from e

    def resolve_default_network(self) -> tuple[str, str]:
        """Return (vpc_id, subnet_id) of the default VPC and its first subnet.

        The subnet is whichever AWS lists first; no other ordering applies.
        """
        vpcs = self._call(
            "describe_vpcs", Filters=[{"Name": "is-default", "Values": ["true"]}]
        )["Vpcs"]
        if not vpcs:
            raise ProviderError(
                "describe_vpcs", "DefaultVpcNotFound", "No default VPC in this region"
            )
        vpc_id = vpcs[0]["VpcId"]

        subnets = self._call(
            "describe_subnets", Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]
        )["Subnets"]
        if not subnets:
            raise ProviderError(
                "describe_subnets", "SubnetNotFound", f"No subnets in VPC '{vpc_id}'"
            )
        subnet_id = subnets[0]["SubnetId"]

        log(f"Using VPC '{vpc_id}', subnet '{subnet_id}'")
        return vpc_id, subnet_id

    def select_latest_image(
        self, name_pattern: str, owners: tuple[str, ...] = ("amazon",)
    ) -> str:
        """Return the most recently created available AMI matching ``name_pattern``.

        Images with equal creation dates keep the order AWS returned them in.
        """
        images = self._call(
            "describe_images",
            Owners=list(owners),
            Filters=[
                {"Name": "name", "Values": [name_pattern]},
                {"Name": "state", "Values": ["available"]},
            ],
        )["Images"]
        if not images:
            raise ProviderError(
                "describe_images",
                "ImageNotFound",
                f"No AMI found matching pattern: '{name_pattern}'",
            )

        images = sorted(images, key=lambda x: x["CreationDate"])
        image_id = images[-1]["ImageId"]
        log(f"Using AMI: '{image_id}'")
        return image_id

    def resolve_or_create_key_pair(self, name: str, key_path: str | Path) -> KeyPairRef:
        """Return the named key pair, creating it and saving its private key if missing.

        An existing pair is returned without key material: AWS only hands out
        the private key at creation.

        :param name: Key pair name
        :param key_path: Where a newly created private key is written (mode 0600)
        :raises KeyMaterialPersistError: If the pair was created but the key could not be saved
        """
        try:
            self._call("describe_key_pairs", KeyNames=[name])
        except ProviderError as e:
            if e.code != "InvalidKeyPair.NotFound":
                raise
        else:
            warn(
                f"Key pair '{name}' already exists; its private key must already be on this machine"
            )
            return KeyPairRef(name=name, created=False)

        log(f"Creating key pair '{name}'...")
        response = self._call(
            "create_key_pair",
            KeyName=name,
            TagSpecifications=[{"ResourceType": "key-pair", "Tags": _tags(name)}],
        )
        material = response["KeyMaterial"]

        key_path = Path(key_path).expanduser()
        try:
            write_key_material(key_path, material)
        except OSError as e:
            raise KeyMaterialPersistError(name, str(key_path)) from e

        log(f"Key pair created and saved to '{key_path}'")
        return KeyPairRef(name=name, created=True, key_material=material, key_path=str(key_path))

    def resolve_or_create_security_group(
        self,
        name: str,
        description: str,
        vpc_id: str,
        ingress_rules: tuple[IngressRule, ...] | list[IngressRule],
    ) -> SecurityGroupRef:
        """Return the named group in ``vpc_id``, creating it with ``ingress_rules`` if missing.

        An existing group is trusted as-is: its rules are reported, never
        changed. On a new group each rule is authorized separately; failures
        are collected in ``SecurityGroupRef.error`` rather than raised.
        """
        groups = self._call(
            "describe_security_groups",
            Filters=[
                {"Name": "group-name", "Values": [name]},
                {"Name": "vpc-id", "Values": [vpc_id]},
            ],
        )["SecurityGroups"]
        if groups:
            sg = groups[0]
            log(f"Using existing security group '{name}': '{sg['GroupId']}'")
            return SecurityGroupRef(
                name=name,
                group_id=sg["GroupId"],
                vpc_id=vpc_id,
                rules=IngressRule.from_permissions(sg.get("IpPermissions", [])),
            )

        response = self._call(
            "create_security_group",
            GroupName=name,
            Description=description,
            VpcId=vpc_id,
            TagSpecifications=[{"ResourceType": "security-group", "Tags": _tags(name)}],
        )
        group_id = response["GroupId"]
        log(f"Created security group '{name}': '{group_id}'")

        applied = []
        failed = []
        for rule in ingress_rules:
            try:
                self._call(
                    "authorize_security_group_ingress",
                    GroupId=group_id,
                    IpPermissions=[rule.to_permission()],
                )
            except ProviderError as e:
                warn(f"Failed to allow {rule.protocol}/{rule.from_port} from '{rule.cidr}': {e}")
                failed.append((rule, e))
            else:
                log(f"Allowed {rule.protocol}/{rule.from_port} from '{rule.cidr}'")
                applied.append(rule)

        partial = None
        if failed:
            partial = PartialConfigurationError(group_id, tuple(applied), tuple(failed))

        return SecurityGroupRef(
            name=name,
            group_id=group_id,
            vpc_id=vpc_id,
            rules=tuple(applied),
            created=True,
            error=partial,
        )

    def launch_instance(
        self,
        config: ProvisionConfig,
        image_id: str,
        key_pair_name: str,
        security_group_id: str,
        subnet_id: str,
    ) -> InstanceRef:
        """Submit a single-instance launch and return it while still pending.

        ``config.user_data`` is passed through untouched.
        """
        log(f"Launching EC2 instance '{config.instance_name}' ({config.instance_type})...")
        response = self._call(
            "run_instances",
            ImageId=image_id,
            InstanceType=config.instance_type,
            KeyName=key_pair_name,
            MinCount=1,
            MaxCount=1,
            SecurityGroupIds=[security_group_id],
            SubnetId=subnet_id,
            BlockDeviceMappings=[
                {
                    "DeviceName": config.root_device_name,
                    "Ebs": {
                        "VolumeSize": config.volume_size,
                        "VolumeType": config.volume_type,
                        "DeleteOnTermination": True,
                    },
                }
            ],
            UserData=config.user_data,
            TagSpecifications=[
                {"ResourceType": "instance", "Tags": _tags(config.instance_name)}
            ],
        )
        instance = response["Instances"][0]
        instance_id = instance["InstanceId"]
        log(f"Instance launched: '{instance_id}'")
        return InstanceRef(
            instance_id=instance_id,
            state=instance.get("State", {}).get("Name", "pending"),
        )

    def await_running(
        self, instance_id: str, timeout: float, delay: float = WAITER_DELAY
    ) -> None:
        """Block until the instance is running.

        :raises InstanceTimeoutError: If it is still not running after ``timeout`` seconds
        :raises ProviderError: If it entered a terminal state or the API failed
        """
        log("Waiting for instance to be running...")
        waiter = self.ec2.get_waiter("instance_running")
        max_attempts = max(1, math.ceil(timeout / delay)) if delay > 0 else 1
        try:
            waiter.wait(
                InstanceIds=[instance_id],
                WaiterConfig={"Delay": delay, "MaxAttempts": max_attempts},
            )
        except WaiterError as e:
            reason = e.kwargs.get("reason", "")
            if "Max attempts exceeded" in reason:
                raise InstanceTimeoutError(instance_id, timeout) from e
            err = (e.last_response or {}).get("Error", {})
            if err.get("Code"):
                raise ProviderError(
                    "describe_instances", err["Code"], err.get("Message", reason)
                ) from e
            # Terminal state such as terminated or shutting-down
            raise ProviderError("describe_instances", "WaiterFailed", reason) from e
        except BotoCoreError as e:
            raise ProviderError("describe_instances", type(e).__name__, str(e)) from e

    def fetch_public_ip(self, instance_id: str) -> str | None:
        """Current public IP, or None when the instance has none (yet)."""
        reservations = self._call("describe_instances", InstanceIds=[instance_id])[
            "Reservations"
        ]
        for reservation in reservations:
            for instance in reservation.get("Instances", []):
                return instance.get("PublicIpAddress")
        return None

    def run(self, config: ProvisionConfig, key_path: str | Path) -> ProvisionResult:
        """Provision everything for ``config``; the first failure aborts the rest.

        Already created resources are left in place on failure. A partially
        configured security group does not abort the run; it is reported via
        ``ProvisionResult.partial_error``.
        """
        vpc_id, subnet_id = self.resolve_default_network()
        image_id = self.select_latest_image(config.image_name_pattern, config.image_owners)
        key_pair = self.resolve_or_create_key_pair(config.key_pair_name, key_path)
        security_group = self.resolve_or_create_security_group(
            config.security_group_name,
            config.security_group_description,
            vpc_id,
            config.ingress_rules,
        )
        if security_group.error:
            warn(str(security_group.error))

        instance = self.launch_instance(
            config, image_id, key_pair.name, security_group.group_id, subnet_id
        )
        self.await_running(instance.instance_id, config.wait_timeout)
        instance.state = "running"
        instance.public_ip = self.fetch_public_ip(instance.instance_id)
        if not instance.public_ip:
            warn(f"Instance '{instance.instance_id}' has no public IP address")

        return ProvisionResult(
            instance=instance,
            key_pair=key_pair,
            security_group=security_group,
            image_id=image_id,
            vpc_id=vpc_id,
            subnet_id=subnet_id,
            region=config.region,
        )
