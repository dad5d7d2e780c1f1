"""Promotion Coordinator: manifest updates with compare-and-swap retries.

Every operation is read snapshot -> compute mutation -> ``compare_and_swap``.
When another writer got there first the store answers
``concurrent_modification`` and the whole mutation is recomputed against a
fresh snapshot, like rebasing a rejected patch. Mutations are written so that
re-applying one that already landed is a no-op.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from relreg.core.result import Err, Ok, Result
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.manifest import Manifest, ManifestEntry
from relreg.release.domain.version import VersionIdentifier
from relreg.release.infra.audit import AuditAction, AuditSink, NullAuditLog
from relreg.release.infra.store import ManifestStore, Mutation


def _append_idempotent(m: Manifest, entry: ManifestEntry) -> Result[Manifest, ReleaseError]:
    existing = m.entry(entry.version)
    if existing is None:
        return m.with_entry(entry)
    if existing.changelog_sha256 == entry.changelog_sha256:
        return Ok(m)
    return Err(
        ReleaseError(
            kind="duplicate_version",
            message=f"{entry.version} already in manifest with different content",
            stage="append",
            hint="corrections are released as a new version",
        )
    )


def promotion_mutation(entry: ManifestEntry) -> Mutation:
    """Append ``entry`` (idempotently) and move latest forward to it when stable."""

    def mutate(m: Manifest) -> Result[Manifest, ReleaseError]:
        appended = _append_idempotent(m, entry)
        if isinstance(appended, Err):
            return appended
        m = appended.value

        v = entry.version
        if v.is_prerelease() or m.is_deprecated(v):
            return Ok(m)
        if m.latest is not None and v <= m.latest:
            # Moving latest backwards is a rollback, never a side effect.
            return Ok(m)
        return m.with_latest(v)

    return mutate


def rollback_mutation(target: VersionIdentifier) -> Mutation:
    def mutate(m: Manifest) -> Result[Manifest, ReleaseError]:
        if not m.contains(target):
            return Err(
                ReleaseError(
                    kind="unknown_version",
                    message=f"version not in manifest: {target}",
                    stage="rollback",
                )
            )
        if m.latest == target:
            return Ok(m)
        if m.latest is None or target > m.latest:
            return Err(
                ReleaseError(
                    kind="rollback_invalid",
                    message=f"rollback target {target} is not older than latest ({m.latest})",
                    stage="rollback",
                )
            )
        if target.is_prerelease():
            return Err(
                ReleaseError(
                    kind="rollback_invalid",
                    message=f"cannot roll back to pre-release {target}",
                    stage="rollback",
                )
            )
        if m.is_deprecated(target):
            return Err(
                ReleaseError(
                    kind="rollback_invalid",
                    message=f"cannot roll back to deprecated version {target}",
                    stage="rollback",
                )
            )
        return m.with_latest(target)

    return mutate


class PromotionCoordinator:
    def __init__(
        self,
        store: ManifestStore,
        *,
        attempts: int = 5,
        retry_delay: float = 0.2,
        audit: AuditSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.attempts = max(1, attempts)
        self.retry_delay = retry_delay
        self.audit: AuditSink = audit or NullAuditLog()
        self._sleep = sleep

    def update(self, mutation: Mutation, *, stage: str) -> Result[Manifest, ReleaseError]:
        """Apply ``mutation`` with CAS, retrying on concurrent modification."""
        for attempt in range(self.attempts):
            snapshot = self.store.read()
            if isinstance(snapshot, Err):
                return snapshot

            result = self.store.compare_and_swap(snapshot.value, mutation)
            if isinstance(result, Ok):
                return result
            if result.error.kind != "concurrent_modification":
                return Err(result.error.at(stage))

            if attempt < self.attempts - 1:
                self._sleep(self.retry_delay * (attempt + 1))

        return Err(
            ReleaseError(
                kind="concurrent_modification",
                message=f"manifest kept changing; gave up after {self.attempts} attempts",
                stage=stage,
                hint="re-run the command; another release is updating the manifest",
            )
        )

    def _audited(
        self,
        result: Result[Manifest, ReleaseError],
        action: AuditAction,
        version: VersionIdentifier,
        **details: str,
    ) -> Result[Manifest, ReleaseError]:
        if isinstance(result, Err):
            return result
        latest = result.value.latest
        logged = self.audit.record(
            action, str(version), latest=str(latest) if latest else "", **details
        )
        if isinstance(logged, Err):
            return logged
        return result

    def append(self, entry: ManifestEntry) -> Result[Manifest, ReleaseError]:
        result = self.update(lambda m: _append_idempotent(m, entry), stage="append")
        return self._audited(result, "manifest_append", entry.version)

    def set_latest(self, version: VersionIdentifier) -> Result[Manifest, ReleaseError]:
        result = self.update(lambda m: m.with_latest(version), stage="set_latest")
        return self._audited(result, "manifest_set_latest", version)

    def promote(self, entry: ManifestEntry) -> Result[Manifest, ReleaseError]:
        result = self.update(promotion_mutation(entry), stage="promote")
        return self._audited(
            result, "manifest_append", entry.version, changelog_sha256=entry.changelog_sha256
        )

    def rollback(self, target: VersionIdentifier) -> Result[Manifest, ReleaseError]:
        before = self.store.read()
        previous = before.value.latest if isinstance(before, Ok) else None
        result = self.update(rollback_mutation(target), stage="rollback")
        return self._audited(
            result, "manifest_rollback", target, previous=str(previous) if previous else ""
        )

    def deprecate(
        self, version: VersionIdentifier, *, reason: str
    ) -> Result[Manifest, ReleaseError]:
        result = self.update(lambda m: m.with_deprecated(version), stage="deprecate")
        return self._audited(result, "manifest_deprecate", version, reason=reason)
