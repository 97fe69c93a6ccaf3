"""Settings for device-session"""

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict

from device_session.utils.types import UpperCase


class Config(BaseSettings):
    # The trailing `_` keeps `DEVICE_SESSION_LOG_DIR` from being read as `DEVICE_SESSIONLOG_DIR`
    model_config = SettingsConfigDict(env_prefix="DEVICE_SESSION_", env_ignore_empty=True)

    # Logging configuration
    log_dir: Path | None = None
    log_level: UpperCase = "INFO"
    log_retention_days: int = 10

    # Fallback authentication for devices without their own private key
    ssh_key_path: Path | None = None
    key_passphrase: SecretStr | None = None
    search_for_ssh_key: bool = False

    # SSH host key verification
    verify_host_keys: bool = False
    known_hosts_path: Path | None = None

    # Session establishment
    ssh_connect_timeout: int | None = None
    keepalive_interval: int = 0  # Seconds between keepalives, 0 disables them

    @property
    def effective_known_hosts_path(self) -> Path:
        """Return the known_hosts path, using default ~/.ssh/known_hosts if not configured."""
        return self.known_hosts_path or Path.home() / ".ssh" / "known_hosts"


CONFIG = Config()
