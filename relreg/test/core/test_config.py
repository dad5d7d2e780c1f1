"""Tests for relreg.core.config module."""

from __future__ import annotations

from pathlib import Path

import pytest

from relreg.core.config import (
    DEFAULT_PLATFORMS,
    DEFAULT_URL_TEMPLATE,
    Config,
    ReleaseConfig,
    TimeoutsConfig,
    load_config,
    load_config_or_default,
)
from relreg.core.result import Err, Ok


class TestDefaults:
    def test_release_defaults(self) -> None:
        config = ReleaseConfig()
        assert config.platforms == DEFAULT_PLATFORMS
        assert config.branch_name("0.7.0") == "release-0.7.0"
        assert config.tag_name("0.7.0") == "0.7.0"
        assert config.promotion_attempts == 5

    def test_config_defaults(self) -> None:
        config = Config()
        assert config.manifest_path == "manifest.json"
        assert config.artifacts.url_template == DEFAULT_URL_TEMPLATE
        assert config.timeouts == TimeoutsConfig()

    def test_frozen(self) -> None:
        config = ReleaseConfig()
        with pytest.raises(AttributeError):
            config.remote = "upstream"  # type: ignore[misc]


class TestFromDict:
    def test_empty_dict_gives_defaults(self) -> None:
        assert Config.from_dict({}) == Config()

    def test_custom_values(self) -> None:
        config = Config.from_dict(
            {
                "manifest": {"path": "site/manifest.json"},
                "release": {
                    "platforms": ["aarch64-linux"],
                    "tag_prefix": "v",
                    "promotion_attempts": 3,
                    "promotion_retry_delay_seconds": 0,
                },
                "commands": {"build": ["make", "dist", "PLATFORM={platform}"]},
                "timeouts": {"validate": 60},
            }
        )
        assert config.manifest_path == "site/manifest.json"
        assert config.release.platforms == ("aarch64-linux",)
        assert config.release.tag_name("1.0.0") == "v1.0.0"
        assert config.release.promotion_attempts == 3
        assert config.release.promotion_retry_delay_seconds == 0
        assert config.commands.build == ("make", "dist", "PLATFORM={platform}")
        assert config.timeouts.validate == 60
        assert config.timeouts.build == TimeoutsConfig().build

    def test_empty_branch_prefix_is_kept(self) -> None:
        config = Config.from_dict({"release": {"branch_prefix": ""}})
        assert config.release.branch_name("1.0.0") == "1.0.0"

    def test_empty_platforms_rejected(self) -> None:
        with pytest.raises(ValueError, match="platforms"):
            Config.from_dict({"release": {"platforms": []}})

    def test_template_needs_placeholders(self) -> None:
        with pytest.raises(ValueError, match="url_template"):
            Config.from_dict({"artifacts": {"url_template": "https://x/{version}.tgz"}})

    @pytest.mark.parametrize(
        "template",
        [
            "https://h/{version}/{platform}/{name}.tgz",
            "https://h/{version}/{platform}/{.tgz",
            "https://h/{version}/{platform}/{}.tgz",
            "https://h/{version.major}/{platform}.tgz",
        ],
    )
    def test_template_rejects_unknown_or_malformed_fields(self, template: str) -> None:
        with pytest.raises(ValueError, match="url_template"):
            Config.from_dict({"artifacts": {"url_template": template}})

    def test_template_allows_escaped_braces(self) -> None:
        template = "https://h/{{raw}}/{version}/{platform}.tgz"
        config = Config.from_dict({"artifacts": {"url_template": template}})
        assert config.artifacts.url_template == template

    def test_command_placeholders_are_checked(self) -> None:
        with pytest.raises(ValueError, match="commands.build"):
            Config.from_dict({"commands": {"build": ["make", "OUT={artifact}"]}})

        config = Config.from_dict({"commands": {"validate": ["check", "{artifact}"]}})
        assert config.commands.validate == ("check", "{artifact}")

    def test_build_output_placeholders_are_checked(self) -> None:
        with pytest.raises(ValueError, match="build_output"):
            Config.from_dict({"artifacts": {"build_output": "out/{target}.tgz"}})

    @pytest.mark.parametrize("value", [0, -5])
    def test_non_positive_timeout_rejected(self, value: int) -> None:
        with pytest.raises(ValueError, match="timeouts.publish"):
            Config.from_dict({"timeouts": {"publish": value}})


class TestLoadConfig:
    def test_load_valid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "relreg.toml"
        path.write_text(
            '[release]\nplatforms = ["x86_64-linux"]\nremote = "upstream"\n',
            encoding="utf-8",
        )

        result = load_config(path)

        assert isinstance(result, Ok)
        assert result.value.release.platforms == ("x86_64-linux",)
        assert result.value.release.remote == "upstream"

    def test_missing_file(self, tmp_path: Path) -> None:
        result = load_config(tmp_path / "missing.toml")

        assert isinstance(result, Err)
        assert "not found" in result.error.message

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "relreg.toml"
        path.write_text("[release\n", encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "Invalid TOML" in result.error.message
        assert result.error.path == path

    def test_invalid_structure(self, tmp_path: Path) -> None:
        path = tmp_path / "relreg.toml"
        path.write_text("[release]\npromotion_attempts = 0\n", encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "promotion_attempts" in result.error.message

    def test_or_default_without_file(self, tmp_path: Path) -> None:
        result = load_config_or_default(tmp_path / "relreg.toml")

        assert result == Ok(Config())
