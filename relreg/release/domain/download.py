from __future__ import annotations

from dataclasses import dataclass

from relreg.release.domain.version import VersionIdentifier


@dataclass(frozen=True, slots=True)
class DownloadDescriptor:
    """Where an installer fetches each platform archive of one version."""

    version: VersionIdentifier
    urls: tuple[tuple[str, str], ...]  # (platform, url)

    def url_for(self, platform: str) -> str | None:
        for p, url in self.urls:
            if p == platform:
                return url
        return None
