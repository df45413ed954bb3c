"""Project client factory.

Profiles live in ``porter.toml``; the active one is chosen by an explicit
name, the ``<PREFIX>PORTER_PROFILE`` env var, or the ``.porter-profile``
lock file written by a successful ``connect``.

Usage:
    from schema_porter.factory import connect_and_validate, get_client

    result = await connect_and_validate("staging")
    client = await get_client()
"""

import logging
import os
from pathlib import Path

from schema_porter.adapters.cma import AsyncCmaAdapter
from schema_porter.config.loader import load_porter_config
from schema_porter.config.models import ConnectionResult, PorterConfig, ProjectProfile
from schema_porter.errors import ProfileNotFoundError, SchemaPorterError
from schema_porter.schema.models import Site

logger = logging.getLogger(__name__)

# Profile lock file path (resolved against the working directory at import)
_PROFILE_LOCK_FILE = Path.cwd() / ".porter-profile"


# ============================================================================
# Profile Lock File Operations
# ============================================================================


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip() or None
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Only call this after the profile's project answered successfully.
    """
    _PROFILE_LOCK_FILE.write_text(profile_name)


def clear_profile_lock() -> None:
    """Remove profile lock file."""
    if _PROFILE_LOCK_FILE.exists():
        _PROFILE_LOCK_FILE.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. ``{env_prefix}PORTER_PROFILE`` env var
    2. .porter-profile file (profile from a previous connect)
    3. Raise ProfileNotFoundError

    Args:
        env_prefix: Prefix for the env var name, e.g. ``"CI_"`` reads
            ``CI_PORTER_PROFILE``.

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_var = f"{env_prefix}PORTER_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No project profile configured.\n"
        f"Run: {env_var}=<name> schema-porter connect\n"
        "or: schema-porter connect --profile <name>",
        env_var=env_var,
    )


def get_active_profile(
    profile_name: str | None = None,
    config: PorterConfig | None = None,
    env_prefix: str = "",
) -> tuple[str, ProjectProfile]:
    """Get active profile name and configuration.

    Raises:
        ProfileNotFoundError: If no profile is configured, or the named
            profile is not in porter.toml
        FileNotFoundError: If porter.toml doesn't exist
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix=env_prefix)
    if config is None:
        config = load_porter_config()

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in porter.toml.\n"
            f"Available profiles: {available}",
            profile_name=profile_name,
        )

    return profile_name, config.profiles[profile_name]


def resolve_token(profile: ProjectProfile) -> str:
    """Return the profile's API token, reading ``api_token_env`` when set.

    Raises:
        ProfileNotFoundError: If neither source yields a token
    """
    if profile.api_token_env:
        token = os.environ.get(profile.api_token_env)
        if token:
            return token
        if not profile.api_token:
            raise ProfileNotFoundError(
                f"Environment variable {profile.api_token_env} is not set",
                env_var=profile.api_token_env,
            )
    if not profile.api_token:
        raise ProfileNotFoundError("Profile has no api_token or api_token_env")
    return profile.api_token


# ============================================================================
# Client Factory
# ============================================================================


async def get_client(
    profile_name: str | None = None,
    api_token: str | None = None,
    env_prefix: str = "",
) -> AsyncCmaAdapter:
    """Create a project adapter.

    Each call returns a new, unconnected adapter; the caller closes it.

    Args:
        profile_name: Profile from porter.toml.  Defaults to the active
            profile.
        api_token: Use this token directly; no config is read.
        env_prefix: Prefix for the profile env var.

    Raises:
        ProfileNotFoundError: If no usable profile is configured

    Example:
        >>> client = await get_client(api_token="abc123")
        >>> item_types = await client.list_item_types()
        >>> await client.close()
    """
    if api_token:
        return AsyncCmaAdapter(api_token=api_token)

    _, profile = get_active_profile(profile_name, env_prefix=env_prefix)
    return AsyncCmaAdapter(
        api_token=resolve_token(profile),
        base_url=profile.base_url,
        environment=profile.environment,
    )


async def connect_and_validate(
    profile_name: str | None = None,
    validate_only: bool = False,
    config_path: Path | None = None,
    env_prefix: str = "",
) -> ConnectionResult:
    """Check that a profile reaches its project, then remember it.

    Reads the project's site settings with the profile's token.  On
    success the profile name is written to the lock file (unless
    ``validate_only``), so later commands can omit ``--profile``.

    Args:
        profile_name: Profile name from porter.toml. If None, uses the
            env var or existing .porter-profile lock file.
        validate_only: Only check the profile; don't write the lock file.
        config_path: Alternative porter.toml.
        env_prefix: Prefix for the profile env var.

    Returns:
        ConnectionResult with success status, site name and locales

    Example:
        >>> result = await connect_and_validate("staging")
        >>> if result.success:
        ...     print(f"Connected to {result.site_name}")
        ... else:
        ...     print(f"Failed: {result.error}")
    """
    try:
        config = load_porter_config(config_path)
        profile_name, profile = get_active_profile(profile_name, config, env_prefix)
        token = resolve_token(profile)
    except (FileNotFoundError, ValueError, ProfileNotFoundError) as e:
        return ConnectionResult(success=False, profile_name=profile_name, error=str(e))

    adapter = AsyncCmaAdapter(
        api_token=token,
        base_url=profile.base_url,
        environment=profile.environment,
    )
    try:
        site = Site.from_resource(await adapter.get_site())
    except SchemaPorterError as e:
        logger.warning("Profile %s failed to connect: %s", profile_name, e)
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Failed to connect to project: {e}",
        )
    finally:
        await adapter.close()

    if not validate_only:
        write_profile_lock(profile_name)

    return ConnectionResult(
        success=True,
        profile_name=profile_name,
        site_name=site.name,
        locales=site.locales,
    )
