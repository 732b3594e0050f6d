# config.py
"""
Configuration Management.

Settings are read from, highest priority first:
1. Constructor arguments (tests, create_app overrides)
2. Environment Variables
3. config.yaml (Local/Mounts)
4. .env
5. Defaults

Also owns the Telegram token helpers shared by the bot service and the
dashboard routes (format validation, demo-mode detection, masking).
"""

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Tuple, Type, Union

import yaml
from fastapi import Request
from pydantic import field_validator
from pydantic.types import SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = logging.getLogger(__name__)

CONFIG_FILE = Path.cwd() / "config.yaml"

# Telegram bot tokens look like 123456789:ABCdefGhIJKlmNoPQRsTUVwxyZ
TOKEN_PATTERN = re.compile(r"^\d+:[A-Za-z0-9_-]+$")

# Example token shown in docs and the dashboard hint; never a real bot.
PLACEHOLDER_TOKENS = frozenset({
    "123456789:ABCdefGhIJKlmNoPQRsTUVwxyZ",
})


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Reads top-level keys of config.yaml in the working directory, if present."""

    def __init__(self, settings_cls: Type[BaseSettings], path: Path = CONFIG_FILE):
        super().__init__(settings_cls)
        self.path = path

    def get_field_value(self, field: Any, field_name: str) -> Tuple[Any, str, bool]:
        # Values come from __call__ as a whole mapping
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        if not self.path.is_file():
            return {}

        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Ignoring unreadable {self.path.name}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"{self.path.name} is not a mapping; ignoring it")
            return {}
        return data


class Settings(BaseSettings):
    """
    Application Settings Schema.
    Validates all inputs on startup.
    """

    # --- General ---
    PROJECT_NAME: str = "Account Shop Dashboard"
    ENV: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # --- Storage ---
    # In-memory by default: restart resets everything to seeded defaults.
    DATABASE_URL: str = "sqlite+aiosqlite:///:memory:"
    DB_ECHO: bool = False

    @field_validator("DATABASE_URL", mode="before")
    def fix_sqlite_scheme(cls, v: str) -> str:
        """Plain 'sqlite://' URLs are upgraded to the async driver."""
        if v and v.startswith("sqlite://"):
            return v.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return v

    # --- Security ---
    # Signs dashboard access tokens (auth.py uses .get_secret_value()).
    SESSION_SECRET: SecretStr = SecretStr("bot-shop-secret")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: Union[SecretStr, None] = None

    # --- CORS ---
    ALLOWED_ORIGINS: List[str] = ["*"]

    @field_validator("ALLOWED_ORIGINS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parses a comma-separated string (common in Env Vars) into a list."""
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # --- Telegram ---
    TELEGRAM_BOT_TOKEN: str = ""

    # Credential delivery retry policy
    DELIVERY_MAX_ATTEMPTS: int = 3
    DELIVERY_RETRY_DELAY_SECONDS: float = 2.0

    # --- Seeding ---
    SEED_DEMO_DATA: bool = True

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """
        Priority (High to Low):
        1. Constructor arguments (init_settings)
        2. Environment Variables (env_settings)
        3. YAML Config File (YamlConfigSettingsSource)
        4. .env file (dotenv_settings)
        5. Defaults
        """
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls),
            dotenv_settings,
            file_secret_settings,
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, loaded once."""
    try:
        settings = Settings()
    except Exception as e:
        logger.critical(f"🔥 FATAL: Configuration Validation Failed.\n{e}")
        raise

    logger.info(f"Configuration loaded for ENV: {settings.ENV}")
    return settings


# ==============================================================================
# TOKEN HELPERS
# ==============================================================================

def is_valid_token_format(token: str) -> bool:
    """True if the token matches the Telegram 'digits:alnum/_-' shape."""
    return bool(token) and TOKEN_PATTERN.match(token) is not None


def is_usable_token(token: str) -> bool:
    """
    A token the bot may actually start with. Empty, placeholder and
    masked tokens (as echoed by the dashboard) put the bot in demo mode.
    """
    if not token or "..." in token:
        return False
    if token in PLACEHOLDER_TOKENS:
        return False
    return is_valid_token_format(token)


def mask_token(token: str) -> str:
    """Returns 'first5...last5' so the dashboard never sees the full token."""
    if not token:
        return ""
    return f"{token[:5]}...{token[-5:]}"


def get_app_settings(request: Request) -> Settings:
    """FastAPI dependency: the Settings the running app was built with."""
    return request.app.state.settings
