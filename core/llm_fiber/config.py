"""Engine configuration.

Reads ~/.llm-fiber/configuration.json, then lets environment variables
override it, so the CLI and library callers share one implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FIBER_CONFIG_FILE = Path.home() / ".llm-fiber" / "configuration.json"

BASE_URL_ENV_VAR = "LLM_FIBER_BASE_URL"
MODEL_ENV_VAR = "LLM_FIBER_MODEL"

DEFAULT_TIMEOUT = 60.0


def get_fiber_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from *path* (defaults to ~/.llm-fiber/configuration.json)."""
    config_file = path or FIBER_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Connection settings for the builtin engine."""

    base_url: str
    default_model: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url is required")

    @classmethod
    def from_env(cls, path: Path | None = None, **overrides: Any) -> "EngineConfig":
        """
        Build a config from the config file and environment.

        Precedence: explicit non-None overrides, then LLM_FIBER_* environment
        variables, then the config file.
        """
        file_config = get_fiber_config(path)

        headers = {str(k): str(v) for k, v in (file_config.get("headers") or {}).items()}
        api_key_env_var = file_config.get("api_key_env_var")
        if api_key_env_var and os.environ.get(api_key_env_var):
            headers.setdefault("authorization", f"Bearer {os.environ[api_key_env_var]}")

        values: dict[str, Any] = {
            "base_url": os.environ.get(BASE_URL_ENV_VAR) or file_config.get("base_url"),
            "default_model": os.environ.get(MODEL_ENV_VAR) or file_config.get("model"),
            "headers": headers,
            "timeout": file_config.get("timeout", DEFAULT_TIMEOUT),
        }
        for key, value in overrides.items():
            if key == "headers" and value:
                values["headers"] = {**values["headers"], **value}
            elif value is not None:
                values[key] = value

        if not values["base_url"]:
            raise ValueError(
                f"No base URL configured. Set {BASE_URL_ENV_VAR} or add "
                f'"base_url" to {path or FIBER_CONFIG_FILE}.'
            )
        return cls(**values)
