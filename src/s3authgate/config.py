"""Configuration loading and Pydantic models for s3authgate."""

from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from s3authgate.models import Credential


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 9000
    shutdown_timeout: int = 30


class CredentialConfig(BaseModel):
    """One accepted access key, bound to a region and service."""

    access_key_id: str
    secret_key: str
    region: str = "us-east-1"
    service: str = "s3"


class AuthConfig(BaseModel):
    """Authentication and credential configuration."""

    enabled: bool = True
    header_name: str = "Authorization"
    max_skew_seconds: int = 900
    skip_paths: list[str] = Field(default_factory=lambda: ["/health", "/healthz", "/metrics"])
    credentials: list[CredentialConfig] = Field(default_factory=list)

    @property
    def max_skew(self) -> timedelta:
        return timedelta(seconds=self.max_skew_seconds)

    def to_credentials(self) -> tuple[Credential, ...]:
        """Return the configured credentials as immutable ``Credential`` values."""
        return tuple(
            Credential(
                access_key_id=c.access_key_id,
                secret_key=c.secret_key,
                region=c.region,
                service=c.service,
            )
            for c in self.credentials
        )


class LoggingConfig(BaseModel):
    """Log level and output format."""

    level: str = "INFO"
    format: str = "text"


class ObservabilityConfig(BaseModel):
    """Metrics exposure."""

    metrics: bool = True


class GateConfig(BaseModel):
    """Top-level s3authgate configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "host": data.get("host", "0.0.0.0"),
        "port": data.get("port", 9000),
        "shutdown_timeout": data.get("shutdown_timeout", 30),
    }


def _parse_auth(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the auth section from YAML data.

    Accepts the credential list under ``credentials``; each entry may spell
    the key id as ``access_key_id`` or ``access_key``.
    """
    if data is None:
        return {}
    result: dict[str, Any] = {
        "enabled": data.get("enabled", True),
        "header_name": data.get("header_name", "Authorization"),
        "max_skew_seconds": data.get("max_skew_seconds", 900),
    }
    if "skip_paths" in data:
        result["skip_paths"] = data["skip_paths"] or []

    credentials = []
    for entry in data.get("credentials") or []:
        if not isinstance(entry, dict):
            raise ValueError(f"auth.credentials entries must be mappings, got {entry!r}")
        credentials.append(
            {
                "access_key_id": entry.get("access_key_id", entry.get("access_key")),
                "secret_key": entry.get("secret_key"),
                "region": entry.get("region", "us-east-1"),
                "service": entry.get("service", "s3"),
            }
        )
    result["credentials"] = credentials
    return result


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {"metrics": data.get("metrics", True)}


def load_config(path: Path) -> GateConfig:
    """Load a GateConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated GateConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a value has the wrong type or a
            credential is missing its key id or secret.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return GateConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        auth=AuthConfig(**_parse_auth(raw.get("auth"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
