"""Process-wide configuration.

Settings are read once at startup, from ``WCF_BRIDGE_*`` environment
variables and CLI overrides, and are immutable afterwards.

Environment variables:
    WCF_BRIDGE_SDK_HOST        SDK host (default 127.0.0.1)
    WCF_BRIDGE_SDK_PORT        SDK command port (default 10086)
    WCF_BRIDGE_EVENT_PORT      SDK event port (default SDK_PORT + 1)
    WCF_BRIDGE_HOST            HTTP listen host (default 127.0.0.1)
    WCF_BRIDGE_PORT            HTTP listen port (default 10010)
    WCF_BRIDGE_WEBHOOK_URLS    comma separated webhook URLs
    WCF_BRIDGE_PUSH_URL        WebSocket push-channel URL
    WCF_BRIDGE_COMMAND_TIMEOUT command timeout in seconds (default 5)
    WCF_BRIDGE_IMAGE_DIR       where downloaded/decoded images are stored
    WCF_BRIDGE_RECEIVE_PYQ     also receive moments (pyq) events
    WCF_BRIDGE_REQUIRE_SDK     fail startup if the SDK is unreachable
    WCF_BRIDGE_LOG_LEVEL       root log level (default INFO)

Every other field can be set the same way (``WCF_BRIDGE_<FIELD>``).
Booleans accept 1/0, true/false, yes/no and on/off; anything else is an
error rather than false.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ENV_PREFIX = "WCF_BRIDGE_"


def _default_image_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "wcf-bridge" / "images")


class BridgeConfig(BaseSettings):
    """Bridge settings. Frozen: never mutated after startup."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        env_ignore_empty=True,
        frozen=True,
    )

    # SDK endpoints
    sdk_host: str = "127.0.0.1"
    sdk_port: int = 10086
    event_port: int | None = None

    # HTTP facade
    host: str = "127.0.0.1"
    port: int = 10010

    # Sinks
    webhook_urls: Annotated[tuple[str, ...], NoDecode] = ()
    push_url: str | None = None
    sink_backlog: int = 1000
    push_backlog: int = 16

    # Commands
    command_timeout: float = 5.0
    connect_timeout: float = 3.0

    # Reconnection (SDK session)
    reconnect_initial_delay: float = 0.5
    reconnect_max_delay: float = 5.0
    reconnect_backoff: float = 2.0

    # Webhook retry
    webhook_max_attempts: int = 3
    webhook_initial_delay: float = 0.5
    webhook_max_delay: float = 4.0
    webhook_timeout: float = 10.0

    image_dir: str = Field(default_factory=_default_image_dir)
    receive_pyq: bool = False
    require_sdk: bool = False
    log_level: str = "INFO"

    @field_validator("webhook_urls", mode="before")
    @classmethod
    def split_urls(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return value

    @property
    def resolved_event_port(self) -> int:
        """Event port, defaulting to the port after the command port."""
        return self.event_port if self.event_port is not None else self.sdk_port + 1

    def with_overrides(self, **overrides: Any) -> BridgeConfig:
        """Return a copy with the non-None overrides applied."""
        values = {key: value for key, value in overrides.items() if value is not None}
        return self.model_copy(update=values)

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Build a config from ``WCF_BRIDGE_*`` environment variables.

        Raises:
            ValueError: If a variable cannot be converted to its field type
        """
        try:
            return cls()
        except ValidationError as e:
            problems = "; ".join(
                f"{ENV_PREFIX}{str(error['loc'][0]).upper()}: {error['msg']}"
                for error in e.errors()
            )
            raise ValueError(f"Invalid configuration: {problems}") from e
