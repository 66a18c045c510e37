"""
core/config.py -- authgate settings, read once from the environment.

The API lifespan and the CLI both build their components from get_settings();
nothing else in the tree reads os.environ.

How values resolve:
  Each Settings field maps to the upper-cased environment variable of the
  same name (bcrypt_rounds -> BCRYPT_ROUNDS), falling back to a .env file in
  the working directory and then to the default below. pydantic validates
  ranges (bcrypt cost 4..31, positive token lifetime) at load time, so a bad
  value stops startup instead of surfacing on the first request.

  get_settings() is lru_cached: one Settings object per process. Tests that
  change the environment call get_settings.cache_clear().

Security notes:
  A configured SECRET_KEY shorter than 32 chars is rejected outright. An empty
  SECRET_KEY is allowed: the TokenService falls back to a random per-process
  key and logs a warning on every token it issues, so the insecure deployment
  cannot go unnoticed.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Every tunable of the service. All fields default, so Settings() works with an empty environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured" -- see TokenService.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = Field(default=24 * 3600, gt=0)
    token_issuer: str = "authgate"

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    # bcrypt cost factor. 10 is ~tens of ms per hash on commodity hardware.
    # Raise it as hardware gets faster; existing hashes keep their own cost.
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = f"sqlite:///{_PROJECT_ROOT / 'data' / 'users.db'}"
    db_timeout_seconds: float = Field(default=10.0, gt=0)
    auth_config_path: Path = _PROJECT_ROOT / "config" / "auth-config.json"
    # Upper bound on how stale the in-memory enforcement flag may be.
    enforcement_cache_seconds: float = Field(default=5.0, ge=0)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Reject configured keys shorter than 32 characters.

        Short keys have insufficient entropy for HS256 signing. An unset key
        stays empty; the TokenService owns the fallback.
        """
        if self.secret_key and len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call."""
    return Settings()
