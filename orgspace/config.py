# orgspace/config.py
# Environment-aware configuration for the orgspace service

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration (identity source)
SECRET_KEY = os.environ.get("SECRET_KEY", "orgspace-dev-secret")
ALGORITHM = "HS256"

# Config file location; a missing file means "all defaults"
CONFIG_PATH = os.environ.get("ORGSPACE_CONFIG", f"config/{ENV}.json")

# Logs directory override (takes precedence over log.dir in the config file)
LOG_DIR = os.environ.get("LOG_DIR", "").strip()

# Seed file for the in-memory store (users/orgs/projects)
SEED_PATH = os.environ.get("ORGSPACE_SEED", "").strip()

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(extra_origins.split(","))


# ============================================================================
# Nested configuration tree
# ============================================================================

class UserAPIConfig(BaseModel):
    """
    server.api.userAPI - per-method switches for the user API.

    A method flag explicitly set to false disables that method on every
    user endpoint. patchPassword disables only the password update.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    get: bool = True
    post: bool = True
    put: bool = True
    patch: bool = True
    delete: bool = True
    patch_password: bool = Field(default=True, alias="patchPassword")


class APIConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_api: UserAPIConfig = Field(default_factory=UserAPIConfig, alias="userAPI")


class PluginsConfig(BaseModel):
    enabled: bool = False
    module: str = "plugins.routes"


class ServerConfig(BaseModel):
    api: APIConfig = Field(default_factory=APIConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)


class LogConfig(BaseModel):
    level: Literal["error", "warn", "info", "verbose", "debug"] = "info"
    dir: str = "logs"
    security_file: str = "security.log"


class Settings(BaseModel):
    """Root of the configuration tree (server.*, log.*)."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    def user_api_enabled(self, method: str) -> bool:
        """
        Look up server.api.userAPI.<method>.

        Args:
            method: HTTP method in any case (e.g. "PATCH")

        Returns:
            False only when the flag is explicitly false; unknown methods are enabled.
        """
        # model_dump includes extra (non-declared) method flags
        flags = self.server.api.user_api.model_dump()
        return flags.get(method.lower(), True) is not False

    @property
    def plugins_enabled(self) -> bool:
        return self.server.plugins.enabled

    @property
    def security_log_path(self) -> Path:
        log_dir = LOG_DIR or self.log.dir
        return Path(log_dir) / self.log.security_file


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load the configuration tree from a JSON file.

    Args:
        path: Config file path (defaults to CONFIG_PATH)

    Returns:
        Validated Settings. A missing file yields the defaults.

    Raises:
        ValueError: If the file is not valid JSON
        pydantic.ValidationError: If a value has the wrong type
    """
    config_file = Path(path or CONFIG_PATH)
    if not config_file.exists():
        return Settings()

    try:
        raw = json.loads(config_file.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file {config_file}: {e}") from e

    return Settings.model_validate(raw)
