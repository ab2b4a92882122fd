"""Exceptions raised while provisioning."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import IngressRule


class ProvisionError(Exception):
    """Base class for every pgvm failure."""


class ConfigError(ProvisionError):
    """Configuration is incomplete or invalid."""


class ProviderError(ProvisionError):
    """An AWS API call failed.

    :param operation: EC2 client method that failed (e.g. ``run_instances``)
    :param code: AWS error code, or a pgvm code for empty lookups
    :param message: Human-readable detail
    """

    def __init__(self, operation: str, code: str, message: str = ""):
        self.operation = operation
        self.code = code
        self.message = message
        detail = f"{operation} failed ({code})"
        super().__init__(f"{detail}: {message}" if message else detail)


class PartialConfigurationError(ProvisionError):
    """Security group was created but some ingress rules were not applied.

    Nothing is rolled back; the group must be inspected and fixed by hand.
    """

    def __init__(
        self,
        group_id: str,
        applied: tuple["IngressRule", ...],
        failed: tuple[tuple["IngressRule", ProviderError], ...],
    ):
        self.group_id = group_id
        self.applied = applied
        self.failed = failed
        ports = ", ".join(f"{rule.protocol}/{rule.from_port}" for rule, _ in failed)
        super().__init__(
            f"Security group '{group_id}' is partially configured: failed to authorize {ports}"
        )

    @property
    def failed_rules(self) -> tuple["IngressRule", ...]:
        return tuple(rule for rule, _ in self.failed)


class InstanceTimeoutError(ProvisionError, TimeoutError):
    """Instance did not reach ``running`` in time. It is not terminated."""

    def __init__(self, instance_id: str, timeout: float):
        self.instance_id = instance_id
        self.timeout = timeout
        super().__init__(
            f"Instance '{instance_id}' did not reach 'running' within {timeout}s"
        )


class KeyMaterialPersistError(ProvisionError):
    """Key pair exists in AWS but its private key could not be saved locally.

    The private key cannot be fetched again; delete the key pair in AWS and
    re-run to get a usable one.
    """

    def __init__(self, key_name: str, key_path: str):
        self.key_name = key_name
        self.key_path = key_path
        super().__init__(
            f"Key pair '{key_name}' was created but saving its private key to "
            f"'{key_path}' failed"
        )
