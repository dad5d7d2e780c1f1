"""Manifest value and its pure mutations.

A ``Manifest`` is an immutable snapshot. Every mutation returns a new snapshot
or a ``ReleaseError``; stores only ever swap whole snapshots, so a snapshot
that exists always satisfies the invariants checked in ``check_invariants``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from relreg.core.result import Err, Ok, Result
from relreg.core.structured import as_str_dict, as_str_list, get_int, get_str, get_table
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.version import VersionIdentifier, parse_version

MANIFEST_SCHEMA = 1
LATEST_ALIAS = "latest"


def changelog_digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    version: VersionIdentifier
    created_at: str
    changelog_sha256: str

    @classmethod
    def create(cls, version: VersionIdentifier, changelog: str) -> ManifestEntry:
        return cls(
            version=version,
            created_at=datetime.now(tz=UTC).isoformat(timespec="seconds"),
            changelog_sha256=changelog_digest(changelog),
        )


@dataclass(frozen=True, slots=True)
class Manifest:
    entries: tuple[ManifestEntry, ...] = ()
    latest: VersionIdentifier | None = None
    deprecated: tuple[VersionIdentifier, ...] = ()

    @property
    def versions(self) -> tuple[VersionIdentifier, ...]:
        """All versions in release order, deprecated ones included."""
        return tuple(e.version for e in self.entries)

    @property
    def supported(self) -> tuple[VersionIdentifier, ...]:
        """Downloadable versions: history minus deprecated entries."""
        return tuple(v for v in self.versions if v not in self.deprecated)

    def contains(self, version: VersionIdentifier) -> bool:
        return any(e.version == version for e in self.entries)

    def entry(self, version: VersionIdentifier) -> ManifestEntry | None:
        for e in self.entries:
            if e.version == version:
                return e
        return None

    def is_deprecated(self, version: VersionIdentifier) -> bool:
        return version in self.deprecated

    def latest_stable(self) -> VersionIdentifier | None:
        stable = [v for v in self.versions if not v.is_prerelease()]
        return max(stable) if stable else None

    # -- mutations ----------------------------------------------------------

    def with_entry(self, entry: ManifestEntry) -> Result[Manifest, ReleaseError]:
        version = entry.version
        if self.contains(version):
            return Err(
                ReleaseError(
                    kind="duplicate_version",
                    message=f"version already in manifest: {version}",
                    stage="append",
                )
            )

        if not version.is_prerelease():
            newest = self.latest_stable()
            if newest is not None and version < newest:
                return Err(
                    ReleaseError(
                        kind="version_out_of_order",
                        message=f"stable version {version} is older than {newest}",
                        stage="append",
                        hint="stable versions must be appended in increasing order",
                    )
                )

        return Ok(replace(self, entries=(*self.entries, entry)))

    def with_latest(self, version: VersionIdentifier) -> Result[Manifest, ReleaseError]:
        if not self.contains(version):
            return Err(
                ReleaseError(
                    kind="unknown_version",
                    message=f"version not in manifest: {version}",
                    stage="set_latest",
                )
            )
        if version.is_prerelease():
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message=f"latest cannot point at pre-release {version}",
                    stage="set_latest",
                )
            )
        if self.is_deprecated(version):
            return Err(
                ReleaseError(
                    kind="deprecate_invalid",
                    message=f"latest cannot point at deprecated version {version}",
                    stage="set_latest",
                )
            )
        return Ok(replace(self, latest=version))

    def with_deprecated(self, version: VersionIdentifier) -> Result[Manifest, ReleaseError]:
        if not self.contains(version):
            return Err(
                ReleaseError(
                    kind="unknown_version",
                    message=f"version not in manifest: {version}",
                    stage="deprecate",
                )
            )
        if self.latest == version:
            return Err(
                ReleaseError(
                    kind="deprecate_invalid",
                    message=f"cannot deprecate the current latest ({version})",
                    stage="deprecate",
                    hint="roll back or promote another version first",
                )
            )
        if self.is_deprecated(version):
            return Ok(self)
        return Ok(replace(self, deprecated=(*self.deprecated, version)))


def check_invariants(manifest: Manifest) -> Result[None, ReleaseError]:
    """Validate a snapshot loaded from outside (file, hand edit)."""
    versions = manifest.versions
    if len(set(versions)) != len(versions):
        return Err(ReleaseError(kind="store_failed", message="manifest has duplicate versions"))

    if manifest.latest is not None and manifest.latest not in versions:
        return Err(
            ReleaseError(
                kind="store_failed",
                message=f"latest points at missing version {manifest.latest}",
            )
        )

    newest: VersionIdentifier | None = None
    for v in versions:
        if v.is_prerelease():
            continue
        if newest is not None and v < newest:
            return Err(
                ReleaseError(
                    kind="store_failed",
                    message=f"stable version {v} listed after {newest}",
                )
            )
        newest = v

    for d in manifest.deprecated:
        if d not in versions:
            return Err(
                ReleaseError(kind="store_failed", message=f"deprecated version {d} not in manifest")
            )

    return Ok(None)


# -- persisted form -----------------------------------------------------------


def manifest_to_json(manifest: Manifest) -> str:
    payload: dict[str, object] = {
        "schema": MANIFEST_SCHEMA,
        "tags": {LATEST_ALIAS: str(manifest.latest)} if manifest.latest is not None else {},
        "versions": [str(v) for v in manifest.versions],
        "entries": {
            str(e.version): {
                "created_at": e.created_at,
                "changelog_sha256": e.changelog_sha256,
            }
            for e in manifest.entries
        },
        "deprecated": [str(v) for v in manifest.deprecated],
    }
    return json.dumps(payload, indent=2) + "\n"


def _corrupt(message: str) -> Err[ReleaseError]:
    return Err(ReleaseError(kind="store_failed", message=f"invalid manifest: {message}"))


def manifest_from_json(text: str) -> Result[Manifest, ReleaseError]:
    try:
        obj: object = json.loads(text)
    except json.JSONDecodeError as e:
        return _corrupt(f"bad JSON ({e})")

    data = as_str_dict(obj)
    if data is None:
        return _corrupt("root must be an object")

    schema = get_int(data, "schema")
    if schema is not None and schema != MANIFEST_SCHEMA:
        return _corrupt(f"unsupported schema {schema}")

    raw_versions = as_str_list(data.get("versions", []))
    if raw_versions is None:
        return _corrupt("versions must be a list of strings")

    details = get_table(data, "entries") or {}
    entries: list[ManifestEntry] = []
    for raw in raw_versions:
        parsed = parse_version(raw)
        if isinstance(parsed, Err):
            return _corrupt(parsed.error.message)
        meta = get_table(details, raw) or {}
        entries.append(
            ManifestEntry(
                version=parsed.value,
                created_at=get_str(meta, "created_at") or "",
                changelog_sha256=get_str(meta, "changelog_sha256") or "",
            )
        )

    tags = get_table(data, "tags") or {}
    latest: VersionIdentifier | None = None
    latest_raw = get_str(tags, LATEST_ALIAS)
    if latest_raw is not None:
        parsed = parse_version(latest_raw)
        if isinstance(parsed, Err):
            return _corrupt(parsed.error.message)
        latest = parsed.value

    raw_deprecated = as_str_list(data.get("deprecated", []))
    if raw_deprecated is None:
        return _corrupt("deprecated must be a list of strings")
    deprecated: list[VersionIdentifier] = []
    for raw in raw_deprecated:
        parsed = parse_version(raw)
        if isinstance(parsed, Err):
            return _corrupt(parsed.error.message)
        deprecated.append(parsed.value)

    manifest = Manifest(entries=tuple(entries), latest=latest, deprecated=tuple(deprecated))
    ok = check_invariants(manifest)
    if isinstance(ok, Err):
        return ok
    return Ok(manifest)
