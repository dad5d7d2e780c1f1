"""Typed configuration loading and access.

This module provides dataclasses for the ``relreg.toml`` structure. Every key
is optional; missing or mistyped values fall back to the defaults below.
"""

from __future__ import annotations

import string
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_float, get_int, get_str, get_str_list, get_table

__all__ = [
    "Config",
    "ReleaseConfig",
    "ArtifactsConfig",
    "CommandsConfig",
    "TimeoutsConfig",
    "ConfigError",
    "load_config",
    "load_config_or_default",
    "DEFAULT_PLATFORMS",
    "DEFAULT_URL_TEMPLATE",
]

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------

DEFAULT_PLATFORMS = ("x86_64-linux", "x86_64-darwin")

# Changing this template changes every published download URL; bump
# MANIFEST_SCHEMA alongside it.
DEFAULT_URL_TEMPLATE = "https://releases.example.org/{version}/relreg-{version}-{platform}.tar.gz"

DEFAULT_BUILD_OUTPUT = "build/{platform}/relreg-{version}-{platform}.tar.gz"

URL_FIELDS = frozenset({"version", "platform"})
BUILD_FIELDS = frozenset({"version", "platform"})
VALIDATE_FIELDS = frozenset({"version", "platform", "artifact"})


@dataclass(frozen=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    """Release process settings."""

    platforms: tuple[str, ...] = DEFAULT_PLATFORMS
    branch_prefix: str = "release-"
    tag_prefix: str = ""
    remote: str = "origin"
    promotion_attempts: int = 5
    promotion_retry_delay_seconds: float = 0.2

    def branch_name(self, version: str) -> str:
        return f"{self.branch_prefix}{version}"

    def tag_name(self, version: str) -> str:
        return f"{self.tag_prefix}{version}"


@dataclass(frozen=True, slots=True)
class ArtifactsConfig:
    """Where artifacts come from and where they are served."""

    url_template: str = DEFAULT_URL_TEMPLATE
    build_output: str = DEFAULT_BUILD_OUTPUT
    publish_dir: str = "dist/public"


@dataclass(frozen=True, slots=True)
class CommandsConfig:
    """External build/validate commands.

    Arguments may contain ``{version}``, ``{platform}`` and (validate only)
    ``{artifact}`` placeholders.
    """

    build: tuple[str, ...] = ()
    validate: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TimeoutsConfig:
    """Timeouts (seconds) for long-running external calls."""

    build: float = 60 * 60.0
    validate: float = 30 * 60.0
    publish: float = 10 * 60.0
    git: float = 30.0
    git_network: float = 3 * 60.0


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    manifest_path: str = "manifest.json"
    changelog_path: str = "CHANGELOG.md"
    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    artifacts: ArtifactsConfig = field(default_factory=ArtifactsConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML)."""
        manifest: StrDict = get_table(data, "manifest") or {}
        changelog: StrDict = get_table(data, "changelog") or {}
        release: StrDict = get_table(data, "release") or {}
        artifacts: StrDict = get_table(data, "artifacts") or {}
        commands: StrDict = get_table(data, "commands") or {}
        timeouts: StrDict = get_table(data, "timeouts") or {}

        platforms = get_str_list(release, "platforms")
        if platforms is not None and not platforms:
            raise ValueError("release.platforms must not be empty")

        attempts = get_int(release, "promotion_attempts")
        if attempts is not None and attempts < 1:
            raise ValueError("release.promotion_attempts must be >= 1")

        retry_delay = get_float(release, "promotion_retry_delay_seconds")
        if retry_delay is not None and retry_delay < 0:
            raise ValueError("release.promotion_retry_delay_seconds must be >= 0")

        template = get_str(artifacts, "url_template") or DEFAULT_URL_TEMPLATE
        if _template_fields("artifacts.url_template", template, URL_FIELDS) != URL_FIELDS:
            raise ValueError("artifacts.url_template needs {version} and {platform}")

        build_output = get_str(artifacts, "build_output") or DEFAULT_BUILD_OUTPUT
        _template_fields("artifacts.build_output", build_output, BUILD_FIELDS)

        build_cmd = tuple(get_str_list(commands, "build") or ())
        validate_cmd = tuple(get_str_list(commands, "validate") or ())
        _check_args("commands.build", build_cmd, BUILD_FIELDS)
        _check_args("commands.validate", validate_cmd, VALIDATE_FIELDS)

        d_release = ReleaseConfig()
        d_timeouts = TimeoutsConfig()
        return cls(
            manifest_path=get_str(manifest, "path") or "manifest.json",
            changelog_path=get_str(changelog, "path") or "CHANGELOG.md",
            release=ReleaseConfig(
                platforms=tuple(platforms) if platforms else DEFAULT_PLATFORMS,
                # Empty prefixes are meaningful, so only a missing key falls back.
                branch_prefix=_raw_str(release, "branch_prefix", d_release.branch_prefix),
                tag_prefix=_raw_str(release, "tag_prefix", d_release.tag_prefix),
                remote=get_str(release, "remote") or d_release.remote,
                promotion_attempts=attempts or d_release.promotion_attempts,
                promotion_retry_delay_seconds=(
                    retry_delay
                    if retry_delay is not None
                    else d_release.promotion_retry_delay_seconds
                ),
            ),
            artifacts=ArtifactsConfig(
                url_template=template,
                build_output=build_output,
                publish_dir=get_str(artifacts, "publish_dir") or "dist/public",
            ),
            commands=CommandsConfig(build=build_cmd, validate=validate_cmd),
            timeouts=TimeoutsConfig(
                build=_timeout(timeouts, "build", d_timeouts.build),
                validate=_timeout(timeouts, "validate", d_timeouts.validate),
                publish=_timeout(timeouts, "publish", d_timeouts.publish),
                git=_timeout(timeouts, "git", d_timeouts.git),
                git_network=_timeout(timeouts, "git_network", d_timeouts.git_network),
            ),
        )


def _template_fields(name: str, template: str, allowed: frozenset[str]) -> frozenset[str]:
    """Placeholders used by ``template``; anything outside ``allowed`` is rejected."""
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError as e:
        raise ValueError(f"{name}: malformed template {template!r} ({e})") from e

    used: set[str] = set()
    for _, field_name, format_spec, _ in parsed:
        if field_name is None:
            continue
        if field_name not in allowed or "{" in (format_spec or ""):
            names = ", ".join("{" + f + "}" for f in sorted(allowed))
            raise ValueError(f"{name}: unknown placeholder {{{field_name}}} (allowed: {names})")
        used.add(field_name)
    return frozenset(used)


def _check_args(name: str, args: Iterable[str], allowed: frozenset[str]) -> None:
    for arg in args:
        _template_fields(name, arg, allowed)


def _timeout(table: Mapping[str, object], key: str, default: float) -> float:
    value = get_float(table, key)
    if value is None:
        return default
    if value <= 0:
        raise ValueError(f"timeouts.{key} must be > 0")
    return value


def _raw_str(table: Mapping[str, object], key: str, default: str) -> str:
    value = table.get(key)
    return value.strip() if isinstance(value, str) else default


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling import and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to relreg.toml

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> Result[Config, ConfigError]:
    """Load config, or the default config when the file does not exist.

    A file that exists but is invalid is still an error.
    """
    if not path.exists():
        return Ok(Config())
    return load_config(path)
