"""Pydantic models for project profiles and import settings."""

from pydantic import BaseModel, Field

from schema_porter.adapters.cma import DEFAULT_BASE_URL


# ============================================================================
# Configuration Models
# ============================================================================


class ProjectProfile(BaseModel):
    """Project connection profile from porter.toml."""

    api_token: str | None = None
    api_token_env: str | None = None  # Name of the env var holding the token
    environment: str | None = None  # Sandbox environment, primary when unset
    base_url: str = DEFAULT_BASE_URL
    description: str = ""


class ImportSettings(BaseModel):
    """Worker counts for the import phases and for schema reads."""

    plugin_concurrency: int = Field(default=4, ge=1)
    item_type_concurrency: int = Field(default=3, ge=1)
    field_concurrency: int = Field(default=6, ge=1)
    item_types_in_parallel: int = Field(default=2, ge=1)
    finalize_concurrency: int = Field(default=3, ge=1)
    reorder_concurrency: int = Field(default=2, ge=1)
    read_concurrency: int = Field(default=2, ge=1)


class PorterConfig(BaseModel):
    """Complete configuration from porter.toml."""

    profiles: dict[str, ProjectProfile]
    import_settings: ImportSettings = Field(default_factory=ImportSettings)


# ============================================================================
# Connection Result
# ============================================================================


class ConnectionResult(BaseModel):
    """Result of connect_and_validate()."""

    success: bool
    profile_name: str | None = None
    site_name: str | None = None
    locales: list[str] = Field(default_factory=list)
    error: str | None = None
