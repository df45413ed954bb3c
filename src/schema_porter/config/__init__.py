"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from schema_porter.config import load_porter_config, ProjectProfile, PorterConfig
"""

from schema_porter.config.loader import load_porter_config
from schema_porter.config.models import (
    ConnectionResult,
    ImportSettings,
    PorterConfig,
    ProjectProfile,
)

__all__ = [
    "load_porter_config",
    "ConnectionResult",
    "ImportSettings",
    "PorterConfig",
    "ProjectProfile",
]
