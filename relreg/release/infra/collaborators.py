"""External collaborators of the release state machine.

The state machine only sees the protocols below. The concrete classes run the
commands configured in ``relreg.toml`` (build, validate), copy archives into a
publish directory, read changelog sections and print notifications.
"""

from __future__ import annotations

import hashlib
import re
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

from relreg.core.result import Err, Ok, Result
from relreg.output.console import ConsoleProtocol, Style
from relreg.platform.process import run as run_process
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.version import VersionIdentifier

# -- protocols -------------------------------------------------------------------


class VersionControl(Protocol):
    def create_branch(self, name: str) -> Result[None, ReleaseError]: ...

    def tag_exists(self, tag: str) -> Result[bool, ReleaseError]: ...

    def create_tag(
        self, tag: str, message: str, *, target: str | None = None
    ) -> Result[None, ReleaseError]: ...

    def push(self, ref: str) -> Result[None, ReleaseError]: ...


class BuildSystem(Protocol):
    def build(
        self, version: VersionIdentifier, platform: str, *, timeout: float | None
    ) -> Result[Path, ReleaseError]:
        """Build one platform archive and return its local path."""
        ...


class Validator(Protocol):
    def validate(
        self, version: VersionIdentifier, platform: str, artifact: Path, *, timeout: float | None
    ) -> Result[None, ReleaseError]: ...


@dataclass(frozen=True, slots=True)
class PublishReceipt:
    platform: str
    url: str
    sha256: str


class ArtifactStore(Protocol):
    def publish(
        self, version: VersionIdentifier, platform: str, source: Path, url: str
    ) -> Result[PublishReceipt, ReleaseError]: ...

    def is_published(self, url: str) -> bool: ...


class ChangelogSource(Protocol):
    def changelog_for(self, version: VersionIdentifier) -> Result[str, ReleaseError]: ...


class Notifier(Protocol):
    def notify(self, subject: str, body: str) -> None:
        """Fire-and-forget; implementations must not raise."""
        ...


# -- command-driven implementations ------------------------------------------------


def _render_args(args: Sequence[str], **values: str) -> list[str]:
    return [a.format(**values) for a in args]


class CommandBuildSystem:
    """Runs the configured build command, then expects the archive on disk."""

    def __init__(self, *, root: Path, command: Sequence[str], output_pattern: str) -> None:
        self.root = root
        self.command = tuple(command)
        self.output_pattern = output_pattern

    def build(
        self, version: VersionIdentifier, platform: str, *, timeout: float | None
    ) -> Result[Path, ReleaseError]:
        if not self.command:
            return Err(
                ReleaseError(
                    kind="build_failed",
                    message="no build command configured",
                    stage="branched",
                    hint="set [commands] build in relreg.toml",
                    platforms=(platform,),
                )
            )

        cmd = _render_args(self.command, version=str(version), platform=platform)
        result = run_process(cmd, cwd=self.root, timeout=timeout)
        if isinstance(result, Err):
            e = result.error
            return Err(
                ReleaseError(
                    kind="build_failed",
                    message=f"build for {platform}: {e}",
                    stage="branched",
                    hint=e.stderr.strip()[-400:] or None,
                    platforms=(platform,),
                )
            )

        artifact = self.root / self.output_pattern.format(version=version, platform=platform)
        if not artifact.is_file():
            return Err(
                ReleaseError(
                    kind="build_failed",
                    message=f"build for {platform} produced no archive",
                    stage="branched",
                    hint=str(artifact),
                    platforms=(platform,),
                )
            )
        return Ok(artifact)


class CommandValidator:
    """Runs the configured validation command once per platform."""

    def __init__(self, *, root: Path, command: Sequence[str]) -> None:
        self.root = root
        self.command = tuple(command)

    def validate(
        self, version: VersionIdentifier, platform: str, artifact: Path, *, timeout: float | None
    ) -> Result[None, ReleaseError]:
        if not self.command:
            return Err(
                ReleaseError(
                    kind="validation_failed",
                    message="no validate command configured",
                    stage="candidate_built",
                    hint="set [commands] validate in relreg.toml",
                    platforms=(platform,),
                )
            )

        cmd = _render_args(
            self.command, version=str(version), platform=platform, artifact=str(artifact)
        )
        result = run_process(cmd, cwd=self.root, timeout=timeout)
        if isinstance(result, Err):
            e = result.error
            return Err(
                ReleaseError(
                    kind="validation_failed",
                    message=f"validation for {platform}: {e}",
                    stage="candidate_built",
                    hint=e.stderr.strip()[-400:] or None,
                    platforms=(platform,),
                )
            )
        return Ok(None)


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class DirectoryArtifactStore:
    """Publishes archives into a directory that mirrors the URL paths.

    ``https://host/a/b.tar.gz`` is stored at ``<root>/a/b.tar.gz``; whatever
    serves ``root`` at ``host`` makes the URL downloadable.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def path_for(self, url: str) -> Path:
        rel = urlparse(url).path.lstrip("/")
        return self.root / rel

    def publish(
        self, version: VersionIdentifier, platform: str, source: Path, url: str
    ) -> Result[PublishReceipt, ReleaseError]:
        dest = self.path_for(url)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
            digest = _sha256_file(dest)
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="publish_incomplete",
                    message=f"failed to publish {platform} archive for {version}: {e}",
                    stage="tagged",
                    hint=str(dest),
                    platforms=(platform,),
                )
            )
        return Ok(PublishReceipt(platform=platform, url=url, sha256=digest))

    def is_published(self, url: str) -> bool:
        return self.path_for(url).is_file()


class ChangelogFile:
    """Reads the section for one version out of a Markdown changelog.

    Sections start with a level-2 heading naming the version, e.g.
    ``## 0.7.0`` or ``## [0.7.0] - 2024-05-01``. A missing file or section
    yields an empty fragment.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def changelog_for(self, version: VersionIdentifier) -> Result[str, ReleaseError]:
        if not self.path.exists():
            return Ok("")
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message=f"failed to read changelog: {e}",
                    hint=str(self.path),
                )
            )
        return Ok(extract_section(text, str(version)))


def extract_section(text: str, version: str) -> str:
    heading = re.compile(rf"^##\s+\[?v?{re.escape(version)}\]?(?:\s|$)")
    lines = text.splitlines()
    out: list[str] = []
    inside = False
    for line in lines:
        if line.startswith("## "):
            if inside:
                break
            inside = heading.match(line) is not None
            continue
        if inside:
            out.append(line)
    return "\n".join(out).strip()


class ConsoleNotifier:
    def __init__(self, console: ConsoleProtocol) -> None:
        self.console = console

    def notify(self, subject: str, body: str) -> None:
        self.console.print(f"notify: {subject}", Style.INFO)
        if body:
            self.console.print(body, Style.DIM)
