"""Tests for the schema-porter command line."""

import json
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from schema_porter.cli import build_parser, cmd_import, main

DOCUMENT = {
    "version": "2",
    "rootItemTypeId": "post",
    "entities": [
        {
            "id": "post",
            "type": "item_type",
            "attributes": {"name": "Post", "api_key": "post", "modular_block": False},
            "relationships": {"fields": {"data": [{"type": "field", "id": "title"}]}},
        },
        {
            "id": "title",
            "type": "field",
            "attributes": {"api_key": "title", "label": "Title", "field_type": "string"},
            "relationships": {"item_type": {"data": {"type": "item_type", "id": "post"}}},
        },
    ],
}


def _write_document(tmp_path: Path) -> Path:
    path = tmp_path / "blog.json"
    path.write_text(json.dumps(DOCUMENT))
    return path


def _make_mock_client(existing_item_types: list[dict] | None = None) -> AsyncMock:
    client = AsyncMock()
    client.list_item_types.return_value = existing_item_types or []
    client.list_plugins.return_value = []
    client.get_site.return_value = {"id": "site", "attributes": {"locales": ["en"]}}
    client.generate_id = MagicMock(side_effect=["new-post", "new-title"])
    client.create_item_type.return_value = {}
    client.create_field.return_value = {}
    return client


EXISTING_POST = {
    "id": "target-post",
    "type": "item_type",
    "attributes": {"name": "Post", "api_key": "post", "modular_block": False},
    "relationships": {},
}


# ============================================================================
# Test: parser
# ============================================================================


class TestBuildParser:
    """Argument parsing for every subcommand."""

    def test_import_options(self) -> None:
        args = build_parser().parse_args(
            ["--profile", "staging", "import", "blog.json", "--item-types", "rename", "--dry-run"]
        )

        assert args.profile == "staging"
        assert args.file == "blog.json"
        assert args.item_types == "rename"
        assert args.plugins is None
        assert args.dry_run and not args.confirm
        assert args.func is cmd_import

    def test_invalid_strategy_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["import", "blog.json", "--plugins", "rename"])

    def test_export_options(self) -> None:
        args = build_parser().parse_args(
            ["export", "--root", "post", "--select", "author", "--with-dependencies", "-o", "out.json"]
        )

        assert args.root == "post"
        assert args.select == ["author"]
        assert args.with_dependencies
        assert args.output == "out.json"
        assert not args.all

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


# ============================================================================
# Test: local commands
# ============================================================================


class TestLocalCommands:
    """status and profiles read only local files."""

    def test_profiles(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "porter.toml").write_text('[profiles.staging]\napi_token = "x"\n')
        monkeypatch.chdir(tmp_path)

        with patch("schema_porter.cli.read_profile_lock", return_value="staging"):
            assert main(["profiles"]) == 0

    def test_profiles_without_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)

        assert main(["profiles"]) == 1

    def test_status_without_profile(self, tmp_path: Path) -> None:
        env = {k: v for k, v in os.environ.items() if not k.endswith("PORTER_PROFILE")}

        with patch.dict(os.environ, env, clear=True), \
             patch("schema_porter.factory._PROFILE_LOCK_FILE", tmp_path / ".porter-profile"):
            assert main(["status"]) == 0

    def test_status_with_profile(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "porter.toml").write_text('[profiles.staging]\napi_token = "x"\n')
        monkeypatch.chdir(tmp_path)

        with patch.dict(os.environ, {"PORTER_PROFILE": "staging"}, clear=False):
            assert main(["status"]) == 0


# ============================================================================
# Test: import
# ============================================================================


class TestImportCommand:
    """Import requires an explicit mode and resolved conflicts."""

    def test_requires_dry_run_or_confirm(self, tmp_path: Path) -> None:
        with patch("schema_porter.cli.get_client") as mock_get_client:
            assert main(["import", str(_write_document(tmp_path))]) == 1

        mock_get_client.assert_not_called()

    def test_requires_document(self) -> None:
        assert main(["import", "--dry-run"]) == 1

    def test_unresolved_conflict(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        client = _make_mock_client([EXISTING_POST])

        with patch("schema_porter.cli.get_client", AsyncMock(return_value=client)):
            code = main(["import", str(_write_document(tmp_path)), "--dry-run"])

        assert code == 1
        client.create_item_type.assert_not_awaited()

    def test_dry_run_writes_nothing(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        client = _make_mock_client([EXISTING_POST])

        with patch("schema_porter.cli.get_client", AsyncMock(return_value=client)):
            code = main(
                ["import", str(_write_document(tmp_path)), "--item-types", "rename", "--dry-run"]
            )

        assert code == 0
        client.create_item_type.assert_not_awaited()
        client.close.assert_awaited_once()

    def test_confirmed_import(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        client = _make_mock_client([EXISTING_POST])

        with patch("schema_porter.cli.get_client", AsyncMock(return_value=client)):
            code = main(
                ["import", str(_write_document(tmp_path)), "--item-types", "rename", "--confirm"]
            )

        assert code == 0
        payload = client.create_item_type.await_args.args[0]
        assert payload["id"] == "new-post"
        assert payload["attributes"]["api_key"] == "post_import"
        client.create_field.assert_awaited_once()

    def test_conflicts_command(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        client = _make_mock_client([EXISTING_POST])

        with patch("schema_porter.cli.get_client", AsyncMock(return_value=client)):
            assert main(["conflicts", str(_write_document(tmp_path))]) == 0

    def test_unreachable_conflict_does_not_block(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        page = {
            "id": "page",
            "type": "item_type",
            "attributes": {"name": "Page", "api_key": "page", "modular_block": False},
            "relationships": {"fields": {"data": []}},
        }
        path = tmp_path / "blog.json"
        path.write_text(json.dumps({**DOCUMENT, "entities": [*DOCUMENT["entities"], page]}))
        existing_page = {**page, "id": "target-page", "relationships": {}}
        client = _make_mock_client([existing_page])

        with patch("schema_porter.cli.get_client", AsyncMock(return_value=client)):
            code = main(["import", str(path), "--dry-run"])

        assert code == 0
        client.create_item_type.assert_not_awaited()
