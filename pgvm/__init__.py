"""pgvm - provision a PostgreSQL server on AWS EC2."""

from .bootstrap import load_user_data, render_user_data
from .cli import app
from .config import load_config
from .errors import (
    ConfigError,
    InstanceTimeoutError,
    KeyMaterialPersistError,
    PartialConfigurationError,
    ProviderError,
    ProvisionError,
)
from .provisioner import Provisioner
from .types import (
    IngressRule,
    InstanceRef,
    KeyPairRef,
    ProvisionConfig,
    ProvisionResult,
    SecurityGroupRef,
)
from .utils import error, log, setup_logging, warn

__all__ = [
    "Provisioner",
    "app",
    "load_config",
    "render_user_data",
    "load_user_data",
    "log",
    "warn",
    "error",
    "setup_logging",
    "ConfigError",
    "InstanceTimeoutError",
    "KeyMaterialPersistError",
    "PartialConfigurationError",
    "ProviderError",
    "ProvisionError",
    "IngressRule",
    "InstanceRef",
    "KeyPairRef",
    "ProvisionConfig",
    "ProvisionResult",
    "SecurityGroupRef",
]
