"""Records supplied to the session layer by the device inventory."""

from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import SecretStr

from device_session.utils.types import DeviceName


class Device(BaseModel):
    """A remote device and the parameters needed to open a session to it.

    Devices are immutable: a Connection built from a Device keeps using the
    exact record it was created with, and a changed device needs a new pool
    entry.
    """

    model_config = ConfigDict(frozen=True)

    name: DeviceName
    host: str = Field(description="Address or hostname of the device")
    port: int = Field(default=22, ge=1, le=65535)
    username: str | None = None
    password: SecretStr | None = None
    private_key: Path | None = Field(default=None, description="Private key file used for authentication")
    passphrase: SecretStr | None = Field(default=None, description="Passphrase for the private key")
    description: str | None = None

    @property
    def address(self) -> str:
        user_prefix = f"{self.username}@" if self.username else ""
        return f"{user_prefix}{self.host}:{self.port}"
