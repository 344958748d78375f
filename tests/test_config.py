"""Tests for settings loading."""

from __future__ import annotations

import pytest

from familytree_import.config import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings()

        assert settings.duplicate_threshold == 70
        assert settings.default_page_size == 50
        assert settings.max_upload_size == 10 * 1024 * 1024
        assert settings.export_version == "5.5.1"

    @pytest.mark.parametrize("overrides", [
        {"duplicate_threshold": 101},
        {"duplicate_threshold": -1},
        {"max_upload_size": 0},
        {"default_page_size": 0},
        {"export_version": "5.5"},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            Settings(**overrides)

    def test_from_env(self):
        settings = Settings.from_env({
            "FAMILYTREE_DATABASE_PATH": "/srv/tree.db",
            "FAMILYTREE_DUPLICATE_THRESHOLD": "85",
            "FAMILYTREE_EXPORT_VERSION": "7.0",
            "UNRELATED": "x",
        })

        assert settings.database_path == "/srv/tree.db"
        assert settings.duplicate_threshold == 85
        assert settings.export_version == "7.0"
        assert settings.default_user_id == 1

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "upload_dir: /var/uploads\n"
            "default_page_size: 25\n"
            "submitter_name: Smith Family\n"
            "unknown_key: ignored\n"
        )

        settings = Settings.from_yaml(path)

        assert settings.upload_dir == "/var/uploads"
        assert settings.default_page_size == 25
        assert settings.submitter_name == "Smith Family"

    def test_from_empty_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("")

        assert Settings.from_yaml(path) == Settings()

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError):
            Settings.from_yaml(path)

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml(tmp_path / "nope.yaml")
