"""TOML configuration loader."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from schema_porter.config.models import ImportSettings, PorterConfig, ProjectProfile

DEFAULT_CONFIG_NAME = "porter.toml"


def load_porter_config(config_path: Path | None = None) -> PorterConfig:
    """Load project profiles and import settings from a TOML file.

    Args:
        config_path: Path to porter.toml (default: ``porter.toml`` in the
            current working directory, resolved at call time)

    Returns:
        PorterConfig with all profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid

    Example:
        >>> config = load_porter_config(Path("porter.toml"))
        >>> config.profiles["staging"].environment
        'main'
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_NAME

    if not config_path.exists():
        raise FileNotFoundError(
            f"Porter config not found: {config_path}\n"
            f"Create {DEFAULT_CONFIG_NAME} with a [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        profiles = {
            name: ProjectProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }
        import_settings = ImportSettings(**data.get("import", {}))
    except (TypeError, ValidationError) as e:
        raise ValueError(f"Invalid config in {config_path}: {e}") from e

    return PorterConfig(profiles=profiles, import_settings=import_settings)
