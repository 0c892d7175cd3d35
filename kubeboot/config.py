"""Configuration management for kubeboot.

Settings are resolved with the following precedence:
1. Explicitly passed parameters (CLI options)
2. Environment variables
3. The cluster file
4. Default values
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv
from jsonschema import ValidationError as SchemaError, validate
from pydantic import BaseModel, Field, ValidationError, field_validator

from kubeboot.errors import ConfigError, MalformedAddress
from kubeboot.modules.addressing import parse_address

# Load environment variables from .env file if it exists
load_dotenv()

logger = logging.getLogger("kubeboot.config")


class Config:
    """Process-wide settings read from the environment."""

    NETWORK_PLUGIN_ENV: str = "KUBEBOOT_NETWORK_PLUGIN"

    CONFIG_PATH: str = os.getenv("KUBEBOOT_CONFIG", "kubeboot.yaml")
    REGISTRY_PATH: str = os.getenv("KUBEBOOT_REGISTRY", "~/.kube/kubeboot-clusters.json")

    # Logging
    LOG_LEVEL: str = os.getenv("KUBEBOOT_LOG_LEVEL", "INFO").upper()
    LOG_FILE: Optional[str] = os.getenv("KUBEBOOT_LOG_FILE") or None
    LOG_FORMAT: str = os.getenv(
        "KUBEBOOT_LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Security
    REDACT_KEYS: tuple = ("token", "password", "secret", "key")


CLUSTER_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "coordinator_address": {"type": "string"},
        "workers": {"type": "integer", "minimum": 0},
        "network_plugin": {"type": ["string", "null"]},
        "backend": {"type": "string"},
        "box": {"type": "string"},
        "box_version": {"type": ["string", "null"]},
        "image": {"type": "string"},
        "group": {"type": ["string", "null"]},
        "coordinator": {"type": "object"},
        "worker": {"type": "object"},
        "interface": {"type": "string"},
        "bridge": {"type": "string"},
        "package_manager": {"type": "string"},
        "kubernetes_version": {"type": "string"},
        "service_address": {"type": "string"},
        "parallel": {"type": "integer", "minimum": 1},
        "ssh": {"type": "object"},
        "logging": {"type": "object"},
    },
}

BACKENDS = ("multipass", "vagrant", "ssh")
PACKAGE_MANAGERS = ("apt", "yum")


class SSHSettings(BaseModel):
    """Trust material and connection settings."""
    user: Optional[str] = Field(default=None, description="Operating user on every machine; backend default if unset")
    private_key_path: str = Field(default="~/.ssh/id_rsa", description="Key pair staged on every machine")
    public_key_path: Optional[str] = None
    port: int = 22
    connect_timeout: int = 10
    command_timeout: int = Field(default=900, description="Timeout for a single remote command in seconds")

    @field_validator("private_key_path", "public_key_path")
    @classmethod
    def expand_key_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand the user home directory in the key path."""
        return os.path.expanduser(v) if v else v

    @property
    def public_key(self) -> str:
        return self.public_key_path or f"{self.private_key_path}.pub"


class LoggingSettings(BaseModel):
    level: str = Field(default_factory=lambda: Config.LOG_LEVEL)
    file: Optional[str] = Field(default_factory=lambda: Config.LOG_FILE)
    max_size_mb: int = 100
    backup_count: int = 5


class MachineSizing(BaseModel):
    memory: int = Field(default=1024, description="Memory in MiB")
    cpus: int = 1


class ClusterSettings(BaseModel):
    """Everything a bootstrap run needs to know about the cluster."""
    name: str = "kubeboot"
    coordinator_address: str = "192.168.205.10"
    workers: int = 2
    network_plugin: Optional[str] = None

    backend: str = "multipass"
    box: str = "ubuntu/jammy64"
    box_version: Optional[str] = None
    image: str = "22.04"
    group: Optional[str] = None
    coordinator: MachineSizing = Field(default_factory=lambda: MachineSizing(memory=2048, cpus=2))
    worker: MachineSizing = Field(default_factory=MachineSizing)

    interface: str = Field(default="eth1", description="Host-only adapter carrying cluster traffic")
    bridge: str = Field(default="kubeboot", description="Multipass network the host-only adapter attaches to")
    package_manager: str = "apt"
    kubernetes_version: str = "1.29"
    service_address: str = "10.96.0.1"
    token_ttl: str = "24h"
    join_script_path: str = "/etc/kubeboot/join.sh"
    state_dir: str = "/var/lib/kubeboot"
    kubeconfig_dir: str = "~/.kube"
    workdir: str = ".kubeboot"
    parallel: int = 1

    ssh: SSHSettings = Field(default_factory=SSHSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {"extra": "ignore"}

    @field_validator("coordinator_address", "service_address")
    @classmethod
    def check_address(cls, v: str) -> str:
        try:
            parse_address(v)
        except MalformedAddress as e:
            raise ValueError(str(e)) from e
        return v

    @field_validator("backend")
    @classmethod
    def check_backend(cls, v: str) -> str:
        if v not in BACKENDS:
            raise ValueError(f"backend must be one of {', '.join(BACKENDS)}")
        return v

    @field_validator("package_manager")
    @classmethod
    def check_package_manager(cls, v: str) -> str:
        if v not in PACKAGE_MANAGERS:
            raise ValueError(f"package_manager must be one of {', '.join(PACKAGE_MANAGERS)}")
        return v

    @field_validator("workers")
    @classmethod
    def check_workers(cls, v: int) -> int:
        if v < 0:
            raise ValueError("workers must not be negative")
        return v

    @field_validator("parallel")
    @classmethod
    def check_parallel(cls, v: int) -> int:
        if v < 1:
            raise ValueError("parallel must be at least 1")
        return v

    @property
    def display_group(self) -> str:
        return self.group or f"/{self.name}"

    @classmethod
    def load(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> 'ClusterSettings':
        """Load settings from a cluster file, the environment and overrides."""
        data: Dict[str, Any] = {}
        path = Path(config_path or Config.CONFIG_PATH).expanduser()
        if path.exists():
            data = cls._load_config_file(path)
        elif config_path:
            raise ConfigError(f"Cluster file not found: {path}")

        env_plugin = os.getenv(Config.NETWORK_PLUGIN_ENV)
        if env_plugin is not None:
            data["network_plugin"] = env_plugin

        for key, value in (overrides or {}).items():
            if value is not None:
                data[key] = value

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid cluster settings: {e}") from e

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        """Load and structurally check a YAML cluster file."""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        try:
            validate(instance=data, schema=CLUSTER_SCHEMA)
        except SchemaError as e:
            raise ConfigError(f"{path}: {e.message}") from e
        logger.debug(f"Loaded cluster settings from {path}")
        return data

    def save(self, path: Union[str, Path]) -> None:
        """Save settings to a YAML file."""
        path = Path(path).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.model_dump(exclude_none=True), f, default_flow_style=False, sort_keys=False)
