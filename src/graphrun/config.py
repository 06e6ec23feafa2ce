"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass, field

from graphrun.services.anthropic_chat import DEFAULT_MODEL
from graphrun.services.platform import DEFAULT_TIMEOUT


def _env(name: str) -> str | None:
    return os.environ.get(name) or None


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass
class Settings:
    """Defaults for the CLI and for contexts built from the environment.

    ``GRAPHRUN_BASE_URL``, ``GRAPHRUN_ACCESS_TOKEN``, ``GRAPHRUN_MODEL`` and
    ``GRAPHRUN_HTTP_TIMEOUT`` (seconds) fill the matching fields.
    """

    base_url: str | None = field(default_factory=lambda: _env("GRAPHRUN_BASE_URL"))
    access_token: str | None = field(default_factory=lambda: _env("GRAPHRUN_ACCESS_TOKEN"))
    model: str = field(default_factory=lambda: _env("GRAPHRUN_MODEL") or DEFAULT_MODEL)
    http_timeout: float = field(
        default_factory=lambda: _env_float("GRAPHRUN_HTTP_TIMEOUT", DEFAULT_TIMEOUT)
    )
