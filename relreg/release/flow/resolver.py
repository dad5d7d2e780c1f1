from __future__ import annotations

from relreg.core.result import Err, Ok, Result
from relreg.release.domain.download import DownloadDescriptor
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.manifest import LATEST_ALIAS
from relreg.release.domain.version import VersionIdentifier, parse_version
from relreg.release.infra.store import ManifestStore


class ArtifactResolver:
    """Read-only view of the manifest for installers.

    ``latest`` is looked up in the store on every call; nothing is cached, so
    a rollback is visible to the very next resolution.
    """

    def __init__(
        self, store: ManifestStore, *, platforms: tuple[str, ...], url_template: str
    ) -> None:
        self.store = store
        self.platforms = platforms
        self.url_template = url_template

    def url_for(self, version: VersionIdentifier, platform: str) -> str:
        return self.url_template.format(version=str(version), platform=platform)

    def descriptor_for(self, version: VersionIdentifier) -> DownloadDescriptor:
        return DownloadDescriptor(
            version=version,
            urls=tuple((p, self.url_for(version, p)) for p in self.platforms),
        )

    def resolve(self, version_or_alias: str) -> Result[DownloadDescriptor, ReleaseError]:
        manifest = self.store.read()
        if isinstance(manifest, Err):
            return manifest
        m = manifest.value

        if version_or_alias.strip() == LATEST_ALIAS:
            if m.latest is None:
                return Err(
                    ReleaseError(
                        kind="unknown_version",
                        message="no latest version has been promoted yet",
                        stage="resolve",
                    )
                )
            return Ok(self.descriptor_for(m.latest))

        parsed = parse_version(version_or_alias)
        if isinstance(parsed, Err):
            return Err(parsed.error.at("resolve"))
        version = parsed.value

        if not m.contains(version):
            return Err(
                ReleaseError(
                    kind="unknown_version",
                    message=f"version not in manifest: {version}",
                    stage="resolve",
                )
            )
        if m.is_deprecated(version):
            return Err(
                ReleaseError(
                    kind="unknown_version",
                    message=f"version {version} is deprecated and no longer downloadable",
                    stage="resolve",
                    hint=f"use '{LATEST_ALIAS}' or a supported version",
                )
            )
        return Ok(self.descriptor_for(version))
