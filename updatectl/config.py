"""updatectl configuration management.

Configuration is loaded from multiple sources with the following precedence:
1. Explicitly passed parameters
2. Environment variables (``UPDATECTL_*``, a ``.env`` file is honoured)
3. Configuration files
4. Default values
"""
import logging
import os
import socket
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("updatectl.config")

# Load environment variables from .env file if it exists
load_dotenv()

# Default configuration paths
DEFAULT_CONFIG_PATHS = [
    Path("/etc/updatectl/config.yaml"),
    Path("~/.config/updatectl/config.yaml").expanduser(),
    Path("updatectl-config.yaml").absolute(),
]

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "UPDATECTL_SSH_USER": ("ssh", "user"),
    "UPDATECTL_SSH_KEY_PATH": ("ssh", "key_path"),
    "UPDATECTL_SSH_PORT": ("ssh", "port"),
    "UPDATECTL_SSH_CONNECT_TIMEOUT": ("ssh", "connect_timeout"),
    "UPDATECTL_SSH_CMD_TIMEOUT": ("ssh", "command_timeout"),
    "UPDATECTL_LOG_LEVEL": ("logging", "level"),
    "UPDATECTL_LOG_FILE": ("logging", "file"),
    "UPDATECTL_STATE_PATH": ("state", "path"),
    "UPDATECTL_MAX_LOGS": ("state", "max_logs"),
    "UPDATECTL_LOCAL_HOSTNAME": ("upgrade", "local_hostname"),
    "UPDATECTL_RESTART_GRACE": ("upgrade", "restart_grace_seconds"),
    "UPDATECTL_RELEASE_CHANNEL_URL": ("runtime", "release_channel_url"),
    "UPDATECTL_API_KEY": ("api", "key"),
    "UPDATECTL_KUBECONFIG": ("kubeconfig", None),
}


class SSHConfig(BaseModel):
    """SSH connection configuration."""
    user: Optional[str] = Field(
        default=None,
        description="SSH username (ssh client default when unset)"
    )
    key_path: Optional[str] = Field(
        default=None,
        description="Path to SSH private key"
    )
    port: int = Field(default=22, description="SSH port number")
    connect_timeout: int = Field(
        default=10,
        description="SSH connection timeout in seconds"
    )
    command_timeout: int = Field(
        default=120,
        description="Default command timeout in seconds"
    )

    @field_validator('key_path')
    @classmethod
    def expand_key_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand the user home directory in the key path."""
        return os.path.expanduser(v) if v else v


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    file: Optional[str] = Field(
        default=None,
        description="Path to log file (if None, logs to stdout only)"
    )
    max_size_mb: int = Field(default=100, description="Maximum log file size in MB")
    backup_count: int = Field(default=5, description="Number of rotated log files to keep")


class StateConfig(BaseModel):
    """Where and how the orchestrator snapshot is kept."""
    path: str = Field(default="data/update-state.json")
    max_logs: int = Field(default=500, description="Capacity of the log ring buffer")


class UpgradeConfig(BaseModel):
    """Timeouts and tunables for rollout steps (seconds)."""
    os_upgrade_timeout: int = 300
    runtime_upgrade_timeout: int = 300
    check_timeout: int = 120
    output_tail: int = Field(default=500, gt=0, description="Characters of step output kept")
    os_ready_timeout: int = 120
    server_ready_timeout: int = 180
    agent_ready_timeout: int = 120
    restart_grace_seconds: float = 10
    drain_timeout: int = 300
    poll_interval: float = 5
    local_hostname: str = Field(default_factory=socket.gethostname)


class RuntimeConfig(BaseModel):
    """How the cluster runtime is installed and where releases are published."""
    install_script_url: str = "https://get.k3s.io"
    version_env: str = "INSTALL_K3S_VERSION"
    release_channel_url: str = "https://update.k3s.io/v1-release/channels"
    channel: str = "stable"
    channel_timeout: int = 15
    agent_service: str = "k3s-agent"
    binary_path: str = "/usr/local/bin/k3s"
    binary_url: str = "https://github.com/k3s-io/k3s/releases/download/{version}/{asset}"
    assets: Dict[str, str] = Field(
        default_factory=lambda: {"amd64": "k3s", "arm64": "k3s-arm64", "arm": "k3s-armhf"}
    )


class APIConfig(BaseModel):
    """HTTP surface configuration."""
    key: str = "updatectl-secret"
    host: str = "127.0.0.1"
    port: int = 8080


class UpdaterConfig(BaseModel):
    """Top level updatectl configuration."""
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    upgrade: UpgradeConfig = Field(default_factory=UpgradeConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    kubeconfig: Optional[str] = None

    model_config = {"extra": "ignore"}

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> 'UpdaterConfig':
        """Load configuration from file and environment variables."""
        config_data: Dict[str, Any] = {}

        if config_path:
            config_path = Path(config_path).expanduser().absolute()
            if config_path.exists():
                config_data = cls._load_config_file(config_path)
            else:
                logger.warning(f"Config file {config_path} not found, using defaults")
        else:
            for path in DEFAULT_CONFIG_PATHS:
                path = path.expanduser().absolute()
                if path.exists():
                    config_data = cls._load_config_file(path)
                    break

        return cls(**cls._apply_env_overrides(config_data))

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return {}

    @staticmethod
    def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value is None:
                continue
            if key is None:
                data[section] = value
            else:
                data.setdefault(section, {})[key] = value
        return data

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration to a file."""
        path = Path(path).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.safe_dump(self.model_dump(exclude_none=True), f,
                           default_flow_style=False, sort_keys=False)


# Global configuration instance
_config: Optional[UpdaterConfig] = None


def get_config(config_path: Optional[Union[str, Path]] = None) -> UpdaterConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = UpdaterConfig.load(config_path)
    return _config


def set_config(config: Optional[UpdaterConfig]) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def config_summary(config: UpdaterConfig) -> List[str]:
    """Human readable lines describing the active configuration."""
    return [
        f"state file: {config.state.path}",
        f"local host: {config.upgrade.local_hostname}",
        f"kubeconfig: {config.kubeconfig or 'default'}",
        f"release channel: {config.runtime.release_channel_url} ({config.runtime.channel})",
    ]
