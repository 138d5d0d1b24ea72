from __future__ import annotations

"""Google Secret Manager helpers and credential resolution."""

from lyrifind.backend.config import ConfigError, Settings


def _build_secret_resource(
    settings: Settings, secret_name: str, version: str
) -> str:
    """Build a Secret Manager resource path for a secret/version."""
    if "/" in secret_name:
        return secret_name
    if not settings.project_id:
        raise ConfigError("PROJECT_ID is required to fetch secrets in non-dev mode.")
    return f"projects/{settings.project_id}/secrets/{secret_name}/versions/{version}"


def read_secret(settings: Settings, secret_name: str, version: str = "latest") -> str:
    """Read a secret value from Google Secret Manager."""
    from google.cloud import secretmanager

    client = secretmanager.SecretManagerServiceClient()
    resource = _build_secret_resource(settings, secret_name, version)
    response = client.access_secret_version(name=resource)
    return response.payload.data.decode("utf-8").strip()


def resolve_genius_token(settings: Settings) -> str:
    """Return the Genius bearer token, or raise ConfigError when none is configured.

    The environment value wins. Outside dev the token may instead live in
    Secret Manager under ``GENIUS_ACCESS_TOKEN_SECRET``.
    """
    if settings.genius_access_token:
        return settings.genius_access_token
    if not settings.is_dev:
        token = read_secret(
            settings,
            settings.genius_access_token_secret,
            settings.genius_access_token_secret_version,
        )
        if token:
            return token
    raise ConfigError("GENIUS_ACCESS_TOKEN is required")
