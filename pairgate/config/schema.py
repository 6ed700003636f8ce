"""Configuration schema using Pydantic."""

from pathlib import PurePosixPath
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CREDENTIALS_DIR = "~/.openclaw/credentials"


class PairingConfig(BaseModel):
    """Pairing store files and their ownership contract."""
    model_config = ConfigDict(frozen=True)

    pairing_file: str = f"{DEFAULT_CREDENTIALS_DIR}/telegram-pairing.json"
    allow_from_file: str = ""  # Empty = telegram-default-allowFrom.json next to pairing_file
    owner_uid: int = 1000  # Container user of the gateway
    owner_gid: int = 1000
    file_mode: int = 0o600
    backups: bool = True
    use_lock: bool = True
    lock_timeout_seconds: float = 10.0

    @property
    def allow_from_path(self) -> str:
        """AllowFrom file path, unexpanded (~ is resolved by the transport)."""
        if self.allow_from_file:
            return self.allow_from_file
        return str(PurePosixPath(self.pairing_file).parent / "telegram-default-allowFrom.json")


class ServiceConfig(BaseModel):
    """Gateway process management."""
    model_config = ConfigDict(frozen=True)

    manager: Literal["docker", "systemd"] = "docker"
    compose_dir: str = "~/openclaw/openclaw"
    compose_file: str = "docker-compose.yml"
    service_name: str = "openclaw-gateway"
    systemd_unit: str = "openclaw-gateway.service"
    systemd_user: bool = False  # systemctl --user
    port: int = 18789
    stop_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 1.0
    ready_retries: int = 12
    ready_delay_seconds: float = 5.0
    command_timeout_seconds: float = 120.0
    restart_after_failed_mutation: bool = True


class RemoteConfig(BaseModel):
    """SSH access to a remote gateway host. Empty host = local."""
    model_config = ConfigDict(frozen=True)

    host: str = ""  # host or user@host
    user: str = ""
    port: int = 22
    auth: Literal["key", "password"] = "key"
    key_file: str = ""
    password: SecretStr = SecretStr("")
    connect_timeout_seconds: int = 10
    command_timeout_seconds: float = 120.0

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    @property
    def destination(self) -> str:
        if self.user and "@" not in self.host:
            return f"{self.user}@{self.host}"
        return self.host


class WatchConfig(BaseModel):
    """Pairing event watcher."""
    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = 60.0
    poll_interval_seconds: float = 1.0
    progress_every: int = 10  # Log "still waiting" every N polls


class TelegramConfig(BaseModel):
    """Telegram bot used for identity labels and approval notices."""
    model_config = ConfigDict(frozen=True)

    token: str = ""  # Bot token from @BotFather
    api_base: str = "https://api.telegram.org"
    timeout_seconds: float = 10.0


class Config(BaseSettings):
    """Root configuration for pairgate."""
    model_config = SettingsConfigDict(env_prefix="PAIRGATE_", env_nested_delimiter="__")

    pairing: PairingConfig = Field(default_factory=PairingConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)

    @property
    def is_remote(self) -> bool:
        return self.remote.enabled

    def with_overrides(self, **sections: dict) -> "Config":
        """Return a copy with the given section fields replaced.

        ``config.with_overrides(remote={"host": "root@h"})``
        """
        update = {}
        for name, fields in sections.items():
            fields = {k: v for k, v in fields.items() if v is not None}
            if fields:
                update[name] = getattr(self, name).model_copy(update=fields)
        return self.model_copy(update=update)
