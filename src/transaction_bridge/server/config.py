"""Configuration for the HTTP/WebSocket server."""

from __future__ import annotations

import hmac

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the REST API and the real-time channel.

    The dispatcher itself is configured by
    :class:`transaction_bridge.dispatcher.config.DispatcherSettings`.
    """

    token: str = Field(
        default="",
        validation_alias="BRIDGE_TOKEN",
        description="Bearer token required on every API call and WebSocket; empty disables the check.",
    )

    cors_origins: str = Field(
        default="*",
        validation_alias="BRIDGE_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def accepts_token(self, authorization: str | None) -> bool:
        if not self.token:
            return True
        scheme, _, value = (authorization or "").partition(" ")
        if scheme.lower() != "bearer":
            return False
        return hmac.compare_digest(value.strip().encode(), self.token.encode())
