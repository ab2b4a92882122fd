"""Type definitions for pgvm."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from .errors import PartialConfigurationError

InstanceState = Literal[
    "pending", "running", "shutting-down", "terminated", "stopping", "stopped"
]


@dataclass(frozen=True)
class IngressRule:
    """Inbound firewall permission on a security group."""

    protocol: str
    from_port: int
    to_port: int
    cidr: str
    description: str | None = None

    @classmethod
    def tcp(cls, port: int, cidr: str, description: str | None = None) -> "IngressRule":
        return cls("tcp", port, port, cidr, description)

    def to_permission(self) -> dict:
        """Render as a single EC2 IpPermissions entry."""
        ip_range = {"CidrIp": self.cidr}
        if self.description:
            ip_range["Description"] = self.description
        return {
            "IpProtocol": self.protocol,
            "FromPort": self.from_port,
            "ToPort": self.to_port,
            "IpRanges": [ip_range],
        }

    @classmethod
    def from_permissions(cls, permissions: list[dict]) -> tuple["IngressRule", ...]:
        """Flatten EC2 IpPermissions into one rule per IPv4 range."""
        rules = []
        for perm in permissions:
            for ip_range in perm.get("IpRanges", []):
                rules.append(
                    cls(
                        protocol=perm["IpProtocol"],
                        from_port=perm.get("FromPort", -1),
                        to_port=perm.get("ToPort", -1),
                        cidr=ip_range["CidrIp"],
                        description=ip_range.get("Description"),
                    )
                )
        return tuple(rules)


@dataclass(frozen=True)
class ProvisionConfig:
    """Everything needed to provision one PostgreSQL instance."""

    instance_name: str
    key_pair_name: str
    instance_type: str
    volume_size: int
    region: str
    ingress_cidr: str
    user_data: str
    security_group_name: str = "postgres-db-sg"
    security_group_description: str = "Security group for PostgreSQL database server"
    image_name_pattern: str = "al2023-ami-*-x86_64"
    image_owners: tuple[str, ...] = ("amazon",)
    root_device_name: str = "/dev/xvda"
    volume_type: str = "gp3"
    ssh_port: int = 22
    postgres_port: int = 5432
    wait_timeout: int = 600

    @property
    def ingress_rules(self) -> tuple[IngressRule, ...]:
        return (
            IngressRule.tcp(self.ssh_port, self.ingress_cidr, "SSH access from my IP"),
            IngressRule.tcp(
                self.postgres_port, self.ingress_cidr, "PostgreSQL access from my IP"
            ),
        )


@dataclass
class KeyPairRef:
    """Key pair in the account.

    ``key_material`` and ``key_path`` are only set when the pair was created
    by this run. AWS never returns the private key again, so reusing an
    existing name means the caller already holds it.
    """

    name: str
    created: bool
    key_material: str | None = field(default=None, repr=False)
    key_path: str | None = None


@dataclass
class SecurityGroupRef:
    name: str
    group_id: str
    vpc_id: str
    rules: tuple[IngressRule, ...] = ()
    created: bool = False
    error: "PartialConfigurationError | None" = None


@dataclass
class InstanceRef:
    instance_id: str
    state: InstanceState | str = "pending"
    public_ip: str | None = None


@dataclass
class ProvisionResult:
    """Outcome of a complete provisioning run."""

    instance: InstanceRef
    key_pair: KeyPairRef
    security_group: SecurityGroupRef
    image_id: str
    vpc_id: str
    subnet_id: str
    region: str

    @property
    def public_ip(self) -> str | None:
        return self.instance.public_ip

    @property
    def partial_error(self) -> "PartialConfigurationError | None":
        return self.security_group.error
