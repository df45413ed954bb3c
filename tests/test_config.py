"""Tests for porter.toml loading and the project client factory."""

import os
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from schema_porter.adapters.cma import DEFAULT_BASE_URL, AsyncCmaAdapter
from schema_porter.config import ImportSettings, ProjectProfile, load_porter_config
from schema_porter.errors import AuthenticationError, ProfileNotFoundError
from schema_porter.factory import (
    clear_profile_lock,
    connect_and_validate,
    get_active_profile,
    get_active_profile_name,
    get_client,
    read_profile_lock,
    resolve_token,
    write_profile_lock,
)

CONFIG_TOML = """
[profiles.staging]
api_token = "staging-token"
environment = "sandbox-1"
description = "Staging sandbox"

[profiles.prod]
api_token_env = "PROD_TOKEN"

[import]
field_concurrency = 2
"""


def _write_config(tmp_path: Path, content: str = CONFIG_TOML) -> Path:
    path = tmp_path / "porter.toml"
    path.write_text(content)
    return path


def _env_without_profile() -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if not k.endswith("PORTER_PROFILE")}


# ============================================================================
# Test: load_porter_config
# ============================================================================


class TestLoadPorterConfig:
    """Parsing of profiles and import settings."""

    def test_loads_profiles_and_settings(self, tmp_path: Path) -> None:
        config = load_porter_config(_write_config(tmp_path))

        assert set(config.profiles) == {"staging", "prod"}
        staging = config.profiles["staging"]
        assert staging.environment == "sandbox-1"
        assert staging.base_url == DEFAULT_BASE_URL
        assert config.profiles["prod"].api_token_env == "PROD_TOKEN"
        assert config.import_settings.field_concurrency == 2
        assert config.import_settings.plugin_concurrency == 4

    def test_defaults_to_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_config(tmp_path)
        monkeypatch.chdir(tmp_path)

        assert "staging" in load_porter_config().profiles

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="porter.toml"):
            load_porter_config(tmp_path / "porter.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = _write_config(tmp_path, "[profiles.staging\n")

        with pytest.raises(ValueError, match="Invalid TOML"):
            load_porter_config(path)

    def test_invalid_profile_value(self, tmp_path: Path) -> None:
        path = _write_config(tmp_path, "[profiles.x]\napi_token = 1\n")

        with pytest.raises(ValueError, match="Invalid config"):
            load_porter_config(path)

    def test_concurrency_must_be_positive(self, tmp_path: Path) -> None:
        path = _write_config(tmp_path, "[profiles.x]\n\n[import]\nfield_concurrency = 0\n")

        with pytest.raises(ValueError):
            load_porter_config(path)


# ============================================================================
# Test: profile resolution
# ============================================================================


class TestProfileLock:
    def test_write_read_clear(self, tmp_path: Path) -> None:
        lock_file = tmp_path / ".porter-profile"

        with patch("schema_porter.factory._PROFILE_LOCK_FILE", lock_file):
            assert read_profile_lock() is None
            write_profile_lock("staging")
            assert read_profile_lock() == "staging"
            clear_profile_lock()
            assert not lock_file.exists()
            clear_profile_lock()


class TestGetActiveProfileName:
    """Env var first, then the lock file."""

    def test_env_var(self) -> None:
        with patch.dict(os.environ, {"PORTER_PROFILE": "staging"}, clear=False):
            assert get_active_profile_name() == "staging"

    def test_env_prefix(self) -> None:
        with patch.dict(os.environ, {"CI_PORTER_PROFILE": "prod"}, clear=False):
            assert get_active_profile_name(env_prefix="CI_") == "prod"

    def test_lock_file_fallback(self, tmp_path: Path) -> None:
        lock_file = tmp_path / ".porter-profile"
        lock_file.write_text("staging\n")

        with patch.dict(os.environ, _env_without_profile(), clear=True), \
             patch("schema_porter.factory._PROFILE_LOCK_FILE", lock_file):
            assert get_active_profile_name() == "staging"

    def test_raises_when_no_profile(self, tmp_path: Path) -> None:
        with patch.dict(os.environ, _env_without_profile(), clear=True), \
             patch("schema_porter.factory._PROFILE_LOCK_FILE", tmp_path / ".porter-profile"):
            with pytest.raises(ProfileNotFoundError, match="PORTER_PROFILE"):
                get_active_profile_name()


class TestGetActiveProfile:
    def test_named_profile(self, tmp_path: Path) -> None:
        config = load_porter_config(_write_config(tmp_path))

        name, profile = get_active_profile("staging", config)

        assert name == "staging"
        assert profile.api_token == "staging-token"

    def test_unknown_profile_lists_available(self, tmp_path: Path) -> None:
        config = load_porter_config(_write_config(tmp_path))

        with pytest.raises(ProfileNotFoundError, match="Available profiles: staging, prod"):
            get_active_profile("missing", config)


class TestResolveToken:
    """Token from the named env var, else the literal token."""

    def test_literal_token(self) -> None:
        assert resolve_token(ProjectProfile(api_token="abc")) == "abc"

    def test_env_token_wins(self) -> None:
        profile = ProjectProfile(api_token="abc", api_token_env="MY_TOKEN")

        with patch.dict(os.environ, {"MY_TOKEN": "from-env"}, clear=False):
            assert resolve_token(profile) == "from-env"

    def test_env_missing_falls_back_to_literal(self) -> None:
        profile = ProjectProfile(api_token="abc", api_token_env="UNSET_TOKEN_VAR")

        with patch.dict(os.environ, {}, clear=True):
            assert resolve_token(profile) == "abc"

    def test_env_missing_without_literal(self) -> None:
        profile = ProjectProfile(api_token_env="UNSET_TOKEN_VAR")

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ProfileNotFoundError, match="UNSET_TOKEN_VAR"):
                resolve_token(profile)

    def test_no_token(self) -> None:
        with pytest.raises(ProfileNotFoundError):
            resolve_token(ProjectProfile())


# ============================================================================
# Test: client factory
# ============================================================================


class TestGetClient:
    @pytest.mark.asyncio
    async def test_direct_token_skips_config(self) -> None:
        with patch("schema_porter.factory.load_porter_config") as mock_load:
            client = await get_client(api_token="direct")

        assert isinstance(client, AsyncCmaAdapter)
        mock_load.assert_not_called()

    @pytest.mark.asyncio
    async def test_profile_settings_used(self, tmp_path: Path) -> None:
        config = load_porter_config(_write_config(tmp_path))

        with patch("schema_porter.factory.load_porter_config", return_value=config), \
             patch.object(AsyncCmaAdapter, "__init__", return_value=None) as mock_init:
            await get_client("staging")

        mock_init.assert_called_once_with(
            api_token="staging-token",
            base_url=DEFAULT_BASE_URL,
            environment="sandbox-1",
        )

    @pytest.mark.asyncio
    async def test_raises_profile_not_found(self, tmp_path: Path) -> None:
        with patch.dict(os.environ, _env_without_profile(), clear=True), \
             patch("schema_porter.factory._PROFILE_LOCK_FILE", tmp_path / ".porter-profile"):
            with pytest.raises(ProfileNotFoundError):
                await get_client()


class TestConnectAndValidate:
    """Connection check and lock-file bookkeeping."""

    @pytest.mark.asyncio
    async def test_success_writes_lock(self, tmp_path: Path) -> None:
        config_path = _write_config(tmp_path)
        lock_file = tmp_path / ".porter-profile"
        site = {"id": "1", "attributes": {"name": "Blog", "locales": ["en", "it"]}}

        with patch("schema_porter.factory._PROFILE_LOCK_FILE", lock_file), \
             patch.object(AsyncCmaAdapter, "get_site", AsyncMock(return_value=site)):
            result = await connect_and_validate("staging", config_path=config_path)

        assert result.success
        assert result.site_name == "Blog"
        assert result.locales == ["en", "it"]
        assert lock_file.read_text() == "staging"

    @pytest.mark.asyncio
    async def test_validate_only_leaves_lock(self, tmp_path: Path) -> None:
        config_path = _write_config(tmp_path)
        lock_file = tmp_path / ".porter-profile"
        site = {"id": "1", "attributes": {"name": "Blog"}}

        with patch("schema_porter.factory._PROFILE_LOCK_FILE", lock_file), \
             patch.object(AsyncCmaAdapter, "get_site", AsyncMock(return_value=site)):
            result = await connect_and_validate(
                "staging", validate_only=True, config_path=config_path
            )

        assert result.success
        assert not lock_file.exists()

    @pytest.mark.asyncio
    async def test_remote_failure(self, tmp_path: Path) -> None:
        config_path = _write_config(tmp_path)
        lock_file = tmp_path / ".porter-profile"
        error = AuthenticationError("bad token", status_code=401)

        with patch("schema_porter.factory._PROFILE_LOCK_FILE", lock_file), \
             patch.object(AsyncCmaAdapter, "get_site", AsyncMock(side_effect=error)):
            result = await connect_and_validate("staging", config_path=config_path)

        assert not result.success
        assert "bad token" in result.error
        assert not lock_file.exists()

    @pytest.mark.asyncio
    async def test_missing_config(self, tmp_path: Path) -> None:
        result = await connect_and_validate("staging", config_path=tmp_path / "porter.toml")

        assert not result.success
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_missing_token(self, tmp_path: Path) -> None:
        config_path = _write_config(tmp_path)

        with patch.dict(os.environ, {}, clear=True):
            result = await connect_and_validate("prod", config_path=config_path)

        assert not result.success
        assert "PROD_TOKEN" in result.error


def test_import_settings_defaults() -> None:
    settings = ImportSettings()

    assert settings.item_type_concurrency == 3
    assert settings.read_concurrency == 2
