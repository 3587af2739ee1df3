"""
# Configuration Management Module

Settings for the Document Vault service, built on **Pydantic Settings**.

## Loading Hierarchy

Higher layers override lower layers:

1. Environment variables
2. File named by `DOCUMENT_VAULT_CONFIG_PATH`
3. `.vault` file in the project root
4. `.env` file in the project root
5. Defaults declared on `Settings`

If no configuration file is found the service runs in environment-only mode.

## Configuration Groups

| Group | Purpose |
|-------|---------|
| **Server** | Host, port, debug mode, public base URL |
| **Storage** | `STORAGE_URI` (`mongodb://...` or `memory://`), database name, timeouts |
| **Redis** | Rate-limit and lockout counters |
| **Identity** | `IDENTITY_VERIFIER_CONFIG` JSON for bearer-token verification |
| **Family** | Invitation TTL, member caps, fallback reconciliation interval |
| **Documents** | Upload limits, page sizes |
| **Rate Limiting** | Per-principal window, failed-authentication lockout |
| **Notifications** | Optional invitation webhook |

## Usage

```python
from document_vault.config import settings

if settings.storage_is_memory:
    ...
```
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
VAULT_FILENAME: str = ".vault"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "DOCUMENT_VAULT_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent

# Hard ceiling on family size regardless of configuration
ABSOLUTE_MAX_GROUP_MEMBERS: int = 50
MIN_GROUP_MEMBERS: int = 2


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determine the configuration file path.

    Checks, in order, the `DOCUMENT_VAULT_CONFIG_PATH` environment variable, a `.vault` file in
    the project root and a `.env` file in the project root.

    Returns:
        Optional[str]: Path to the configuration file, or `None` for environment-only mode.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    vault_path: Path = PROJECT_ROOT / VAULT_FILENAME
    if vault_path.exists():
        return str(vault_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    # Environment variables already set take precedence over the file
    load_dotenv(dotenv_path=CONFIG_PATH, override=False)


class Settings(BaseSettings):
    """
    Application configuration settings model.

    **Configuration Groups:**
    *   **Server**: Host, port, debug mode.
    *   **Storage**: MongoDB connection details or the in-memory backend.
    *   **Identity**: Verifier configuration for bearer credentials.
    *   **Limits**: Rate limits, family caps, upload limits.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # Server configuration
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    DEBUG: bool = True
    BASE_URL: str = "http://localhost:8000"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: Optional[str] = None

    # Storage configuration
    STORAGE_URI: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "document_vault"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None

    # Redis configuration
    # REDIS_URL is the effective URL; it is constructed from host/port/credentials when unset.
    REDIS_URL: Optional[str] = None
    REDIS_HOST: str = "127.0.0.1"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_USERNAME: Optional[str] = None
    REDIS_PASSWORD: Optional[SecretStr] = None

    # Identity verification (JSON: algorithm, secret | public_key, audience, issuer, leeway)
    IDENTITY_VERIFIER_CONFIG: Optional[str] = None

    # Family management
    INVITATION_TTL_DAYS: int = 7
    MAX_GROUP_MEMBERS_CAP: int = ABSOLUTE_MAX_GROUP_MEMBERS
    DEFAULT_MAX_MEMBERS_PER_FAMILY: int = 10
    FALLBACK_RECONCILE_INTERVAL_SECONDS: int = 60
    CAS_MAX_RETRIES: int = 5

    # Documents
    MAX_UPLOAD_SIZE_BYTES: int = 10 * 1024 * 1024
    ALLOWED_UPLOAD_MIME_TYPES: List[str] = ["application/pdf", "image/jpeg", "image/png"]
    DOCUMENT_PAGE_SIZE_CAP: int = 100
    DEFAULT_PAGE_SIZE: int = 50

    # Rate limiting and lockout
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 30
    RATE_LIMIT_PERIOD_SECONDS: int = 60
    FAILED_AUTH_THRESHOLD: int = 5
    FAILED_AUTH_WINDOW_SECONDS: int = 300
    AUTH_LOCKOUT_SECONDS: int = 900

    # Notifications
    INVITATION_WEBHOOK_URL: Optional[str] = None
    NOTIFIER_TIMEOUT_SECONDS: float = 5.0

    @field_validator("STORAGE_URI", mode="before")
    @classmethod
    def no_empty_urls(cls, v: Any, info: Any) -> Any:
        """
        Validates that the storage URI is set and uses a supported scheme.

        Raises:
            ValueError: If the URI is empty or its scheme is unsupported.
        """
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .vault and not empty!")
        value = str(v).strip()
        if not value.startswith(("mongodb://", "mongodb+srv://", "memory://")):
            raise ValueError(f"{info.field_name} must be a mongodb:// or memory:// URI")
        return value

    @field_validator(
        "INVITATION_TTL_DAYS",
        "DEFAULT_MAX_MEMBERS_PER_FAMILY",
        "FALLBACK_RECONCILE_INTERVAL_SECONDS",
        "CAS_MAX_RETRIES",
        "MAX_UPLOAD_SIZE_BYTES",
        "DOCUMENT_PAGE_SIZE_CAP",
        "DEFAULT_PAGE_SIZE",
        "RATE_LIMIT_REQUESTS",
        "RATE_LIMIT_PERIOD_SECONDS",
        "FAILED_AUTH_THRESHOLD",
        "FAILED_AUTH_WINDOW_SECONDS",
        "AUTH_LOCKOUT_SECONDS",
        mode="before",
    )
    @classmethod
    def validate_positive_integers(cls, v: Any, info: Any) -> int:
        """
        Validates that numeric settings are positive integers.

        Raises:
            ValueError: If the value is not a positive integer.
        """
        value = int(v)
        if value <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer")
        return value

    @field_validator("MAX_GROUP_MEMBERS_CAP", mode="before")
    @classmethod
    def validate_member_cap(cls, v: Any) -> int:
        value = int(v)
        if value < MIN_GROUP_MEMBERS or value > ABSOLUTE_MAX_GROUP_MEMBERS:
            raise ValueError(
                f"MAX_GROUP_MEMBERS_CAP must be between {MIN_GROUP_MEMBERS} and {ABSOLUTE_MAX_GROUP_MEMBERS}"
            )
        return value

    @field_validator("IDENTITY_VERIFIER_CONFIG", mode="before")
    @classmethod
    def validate_verifier_config(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if isinstance(v, dict):
            return json.dumps(v)
        try:
            parsed = json.loads(v)
        except (TypeError, ValueError) as exc:
            raise ValueError("IDENTITY_VERIFIER_CONFIG must be a JSON object") from exc
        if not isinstance(parsed, dict):
            raise ValueError("IDENTITY_VERIFIER_CONFIG must be a JSON object")
        return v

    @property
    def is_production(self) -> bool:
        """Production mode is `DEBUG=False`."""
        return not self.DEBUG

    @property
    def storage_is_memory(self) -> bool:
        """True when every repository should use the process-local in-memory backend."""
        return self.STORAGE_URI.startswith("memory://")

    @property
    def identity_verifier_options(self) -> Optional[Dict[str, Any]]:
        """Parsed `IDENTITY_VERIFIER_CONFIG`, or `None` when verification is not configured."""
        if not self.IDENTITY_VERIFIER_CONFIG:
            return None
        return json.loads(self.IDENTITY_VERIFIER_CONFIG)

    @property
    def cors_origins_list(self) -> list:
        if not self.CORS_ORIGINS:
            return []
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings: Settings = Settings()

# Compute effective REDIS_URL if not explicitly provided.
if not settings.REDIS_URL:
    creds = ""
    if settings.REDIS_USERNAME or settings.REDIS_PASSWORD:
        username = settings.REDIS_USERNAME or ""
        password = settings.REDIS_PASSWORD.get_secret_value() if settings.REDIS_PASSWORD else ""
        if username and password:
            creds = f"{username}:{password}@"
        elif password and not username:
            creds = f":{password}@"

    settings.REDIS_URL = f"redis://{creds}{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
