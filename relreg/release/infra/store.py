"""Manifest stores.

Every write is a compare-and-swap of a whole snapshot: the caller passes the
snapshot it read and a mutation; the store applies the mutation only if the
stored manifest still equals that snapshot. ``append`` and ``set_latest`` are
single CAS attempts; retrying on conflict is the Promotion Coordinator's job.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from relreg.core.result import Err, Ok, Result
from relreg.platform.files import LockHeld, atomic_write_text, exclusive_lock
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.manifest import (
    Manifest,
    ManifestEntry,
    check_invariants,
    manifest_from_json,
    manifest_to_json,
)
from relreg.release.domain.version import VersionIdentifier

Mutation = Callable[[Manifest], Result[Manifest, ReleaseError]]


class ManifestStore(Protocol):
    def read(self) -> Result[Manifest, ReleaseError]: ...

    def compare_and_swap(
        self, expected: Manifest, mutation: Mutation
    ) -> Result[Manifest, ReleaseError]: ...

    def append(self, entry: ManifestEntry) -> Result[Manifest, ReleaseError]: ...

    def set_latest(self, version: VersionIdentifier) -> Result[Manifest, ReleaseError]: ...


def _conflict(hint: str | None = None) -> Err[ReleaseError]:
    return Err(
        ReleaseError(
            kind="concurrent_modification",
            message="manifest changed since it was read",
            stage="compare_and_swap",
            hint=hint,
        )
    )


def _apply_checked(current: Manifest, mutation: Mutation) -> Result[Manifest, ReleaseError]:
    updated = mutation(current)
    if isinstance(updated, Err):
        return updated
    ok = check_invariants(updated.value)
    if isinstance(ok, Err):
        return ok
    return updated


class _SingleShotOps(ABC):
    """``append``/``set_latest`` as one read + one CAS."""

    @abstractmethod
    def read(self) -> Result[Manifest, ReleaseError]: ...

    @abstractmethod
    def compare_and_swap(
        self, expected: Manifest, mutation: Mutation
    ) -> Result[Manifest, ReleaseError]: ...

    def append(self, entry: ManifestEntry) -> Result[Manifest, ReleaseError]:
        snapshot = self.read()
        if isinstance(snapshot, Err):
            return snapshot
        return self.compare_and_swap(snapshot.value, lambda m: m.with_entry(entry))

    def set_latest(self, version: VersionIdentifier) -> Result[Manifest, ReleaseError]:
        snapshot = self.read()
        if isinstance(snapshot, Err):
            return snapshot
        return self.compare_and_swap(snapshot.value, lambda m: m.with_latest(version))


class InMemoryManifestStore(_SingleShotOps):
    """Process-local store; the CAS itself is atomic under an internal lock."""

    def __init__(self, initial: Manifest | None = None) -> None:
        self._manifest = initial or Manifest()
        self._lock = threading.Lock()

    def read(self) -> Result[Manifest, ReleaseError]:
        return Ok(self._manifest)

    def compare_and_swap(
        self, expected: Manifest, mutation: Mutation
    ) -> Result[Manifest, ReleaseError]:
        with self._lock:
            if self._manifest != expected:
                return _conflict()
            updated = _apply_checked(self._manifest, mutation)
            if isinstance(updated, Err):
                return updated
            self._manifest = updated.value
            return updated


class FileManifestStore(_SingleShotOps):
    """JSON manifest on disk.

    Readers never lock: the file is replaced atomically. Writers hold a lock
    file only for the compare-and-replace window; a held lock is reported as
    ``concurrent_modification`` rather than waited on.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.lock_path = path.with_name(f".{path.name}.lock")

    def read(self) -> Result[Manifest, ReleaseError]:
        if not self.path.exists():
            return Ok(Manifest())
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="store_failed",
                    message=f"failed to read manifest: {e}",
                    stage="read",
                    hint=str(self.path),
                )
            )
        return manifest_from_json(text).map_err(lambda e: e.at("read"))

    def compare_and_swap(
        self, expected: Manifest, mutation: Mutation
    ) -> Result[Manifest, ReleaseError]:
        try:
            with exclusive_lock(self.lock_path):
                current = self.read()
                if isinstance(current, Err):
                    return current
                if current.value != expected:
                    return _conflict()

                updated = _apply_checked(current.value, mutation)
                if isinstance(updated, Err):
                    return updated
                if updated.value == current.value:
                    return updated

                try:
                    atomic_write_text(self.path, manifest_to_json(updated.value))
                except OSError as e:
                    return Err(
                        ReleaseError(
                            kind="store_failed",
                            message=f"failed to write manifest: {e}",
                            stage="compare_and_swap",
                            hint=str(self.path),
                        )
                    )
                return updated
        except LockHeld as e:
            return _conflict(hint=f"lock held by another writer: {e.path}")
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="store_failed",
                    message=f"failed to lock manifest: {e}",
                    stage="compare_and_swap",
                    hint=str(self.lock_path),
                )
            )
