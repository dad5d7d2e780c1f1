from __future__ import annotations

import threading
from pathlib import Path

from relreg.core.result import Err, Ok, Result
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.manifest import Manifest, ManifestEntry
from relreg.release.flow.promotion import PromotionCoordinator
from relreg.release.infra.audit import JsonlAuditLog
from relreg.release.infra.store import InMemoryManifestStore, Mutation

from ._helpers import entry, manifest_of, v


class _RacingStore(InMemoryManifestStore):
    """Lets another writer land ``intruder`` just before the first CAS."""

    def __init__(self, initial: Manifest, intruder: ManifestEntry | None) -> None:
        super().__init__(initial)
        self.intruder: ManifestEntry | None = intruder
        self.cas_calls = 0

    def compare_and_swap(
        self, expected: Manifest, mutation: Mutation
    ) -> Result[Manifest, ReleaseError]:
        self.cas_calls += 1
        if self.intruder is not None:
            sneaky, self.intruder = self.intruder, None
            snapshot = self.read()
            assert isinstance(snapshot, Ok)
            super().compare_and_swap(snapshot.value, lambda m: m.with_entry(sneaky))
        return super().compare_and_swap(expected, mutation)


class _AlwaysConflicting(InMemoryManifestStore):
    def compare_and_swap(
        self, expected: Manifest, mutation: Mutation
    ) -> Result[Manifest, ReleaseError]:
        return Err(
            ReleaseError(
                kind="concurrent_modification", message="changed", stage="compare_and_swap"
            )
        )


class _LockstepStore(InMemoryManifestStore):
    """Holds the first ``parties`` reads until all of them have happened."""

    def __init__(self, initial: Manifest, parties: int) -> None:
        super().__init__(initial)
        self._parties = parties
        self._held = 0
        self._barrier = threading.Barrier(parties)
        self._record = threading.Lock()
        self.cas_kinds: list[str] = []

    def read(self) -> Result[Manifest, ReleaseError]:
        snapshot = super().read()
        with self._record:
            hold = self._held < self._parties
            self._held += 1
        if hold:
            self._barrier.wait(timeout=5)
        return snapshot

    def compare_and_swap(
        self, expected: Manifest, mutation: Mutation
    ) -> Result[Manifest, ReleaseError]:
        result = super().compare_and_swap(expected, mutation)
        with self._record:
            self.cas_kinds.append("ok" if isinstance(result, Ok) else result.error.kind)
        return result


def _coordinator(store: InMemoryManifestStore, **kwargs: object) -> PromotionCoordinator:
    return PromotionCoordinator(store, sleep=lambda _s: None, **kwargs)  # type: ignore[arg-type]


class TestPromote:
    def test_stable_moves_latest(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.6.0", latest="0.6.0"))

        result = _coordinator(store).promote(entry("0.7.0"))

        assert isinstance(result, Ok)
        assert result.value.latest == v("0.7.0")

    def test_prerelease_is_appended_without_moving_latest(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.6.0", latest="0.6.0"))

        result = _coordinator(store).promote(entry("0.7.0-beta.1"))

        assert isinstance(result, Ok)
        assert v("0.7.0-beta.1") in result.value.versions
        assert result.value.latest == v("0.6.0")

    def test_replay_is_idempotent(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.6.0", latest="0.6.0"))
        coordinator = _coordinator(store)
        e = entry("0.7.0")

        first = coordinator.promote(e)
        second = coordinator.promote(e)

        assert first == second
        assert isinstance(second, Ok)
        assert second.value.versions.count(v("0.7.0")) == 1

    def test_same_version_different_content_is_duplicate(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.6.0", latest="0.6.0"))
        coordinator = _coordinator(store)
        coordinator.promote(entry("0.7.0", "first notes"))

        result = coordinator.promote(entry("0.7.0", "other notes"))

        assert isinstance(result, Err)
        assert result.error.kind == "duplicate_version"

    def test_older_prerelease_keeps_latest(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.6.0", latest="0.6.0"))

        result = _coordinator(store).promote(entry("0.5.0-beta.2"))

        assert isinstance(result, Ok)
        assert result.value.latest == v("0.6.0")


class TestRetries:
    def test_conflict_is_retried_against_fresh_snapshot(self) -> None:
        store = _RacingStore(manifest_of("0.6.0", latest="0.6.0"), intruder=entry("0.7.0-beta.1"))
        sleeps: list[float] = []
        coordinator = PromotionCoordinator(store, retry_delay=0.2, sleep=sleeps.append)

        result = coordinator.promote(entry("0.7.0"))

        assert isinstance(result, Ok)
        assert result.value.versions == (v("0.6.0"), v("0.7.0-beta.1"), v("0.7.0"))
        assert result.value.latest == v("0.7.0")
        assert store.cas_calls == 2
        assert sleeps == [0.2]

    def test_gives_up_after_attempts(self) -> None:
        store = _AlwaysConflicting()
        sleeps: list[float] = []
        coordinator = PromotionCoordinator(store, attempts=3, retry_delay=0.1, sleep=sleeps.append)

        result = coordinator.append(entry("0.1.0"))

        assert isinstance(result, Err)
        assert result.error.kind == "concurrent_modification"
        assert result.error.stage == "append"
        assert len(sleeps) == 2

    def test_guard_failures_are_not_retried(self) -> None:
        store = _RacingStore(manifest_of("0.6.0"), intruder=None)
        coordinator = _coordinator(store)

        result = coordinator.set_latest(v("0.9.0"))

        assert isinstance(result, Err)
        assert result.error.kind == "unknown_version"
        assert result.error.stage == "set_latest"
        assert store.cas_calls == 1

    def test_concurrent_promotions_both_land(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.6.0", latest="0.6.0"))
        coordinator = PromotionCoordinator(store, attempts=10, sleep=lambda _s: None)
        barrier = threading.Barrier(2)
        results: list[object] = []

        def promote(e: ManifestEntry) -> None:
            barrier.wait()
            results.append(coordinator.promote(e))

        threads = [
            threading.Thread(target=promote, args=(entry("0.7.0"),)),
            threading.Thread(target=promote, args=(entry("0.8.0-beta.1"),)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(isinstance(r, Ok) for r in results)
        final = store.read()
        assert isinstance(final, Ok)
        assert set(final.value.versions) == {v("0.6.0"), v("0.7.0"), v("0.8.0-beta.1")}
        assert final.value.latest == v("0.7.0")

    def test_same_snapshot_writers_conflict_exactly_once(self) -> None:
        store = _LockstepStore(manifest_of("0.6.0", latest="0.6.0"), parties=2)
        coordinator = PromotionCoordinator(store, attempts=3, sleep=lambda _s: None)
        results: list[object] = []

        def promote(e: ManifestEntry) -> None:
            results.append(coordinator.promote(e))

        threads = [
            threading.Thread(target=promote, args=(e,))
            for e in (entry("0.7.0"), entry("0.8.0-beta.1"))
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(isinstance(r, Ok) for r in results)
        assert sorted(store.cas_kinds) == ["concurrent_modification", "ok", "ok"]
        final = store.read()
        assert isinstance(final, Ok)
        assert set(final.value.versions) == {v("0.6.0"), v("0.7.0"), v("0.8.0-beta.1")}

    def test_older_stable_loses_race_with_newer(self) -> None:
        store = _RacingStore(manifest_of("0.6.0", latest="0.6.0"), intruder=entry("0.8.0"))

        result = _coordinator(store).promote(entry("0.7.0"))

        assert isinstance(result, Err)
        assert result.error.kind == "version_out_of_order"
        assert store.cas_calls == 2


class TestRollback:
    def test_rollback_moves_latest_only(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.5.0", "0.6.0", "0.7.0", latest="0.7.0"))

        result = _coordinator(store).rollback(v("0.6.0"))

        assert isinstance(result, Ok)
        assert result.value.latest == v("0.6.0")
        assert result.value.versions == (v("0.5.0"), v("0.6.0"), v("0.7.0"))

    def test_rollback_to_current_latest_is_noop(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.6.0", latest="0.6.0"))

        result = _coordinator(store).rollback(v("0.6.0"))

        assert isinstance(result, Ok)
        assert result.value.latest == v("0.6.0")

    def test_rollback_forward_rejected(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.6.0", "0.7.0", latest="0.6.0"))

        result = _coordinator(store).rollback(v("0.7.0"))

        assert isinstance(result, Err)
        assert result.error.kind == "rollback_invalid"

    def test_rollback_unknown(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.6.0", latest="0.6.0"))

        result = _coordinator(store).rollback(v("0.4.0"))

        assert isinstance(result, Err)
        assert result.error.kind == "unknown_version"

    def test_rollback_to_prerelease_rejected(self) -> None:
        store = InMemoryManifestStore(
            manifest_of("0.6.0", "0.7.0-beta.1", "0.7.0", latest="0.7.0")
        )

        result = _coordinator(store).rollback(v("0.7.0-beta.1"))

        assert isinstance(result, Err)
        assert result.error.kind == "rollback_invalid"

    def test_rollback_to_deprecated_rejected(self) -> None:
        store = InMemoryManifestStore(manifest_of("0.5.0", "0.6.0", latest="0.6.0"))
        coordinator = _coordinator(store)
        coordinator.deprecate(v("0.5.0"), reason="security")

        result = coordinator.rollback(v("0.5.0"))

        assert isinstance(result, Err)
        assert result.error.kind == "rollback_invalid"


class TestAudit:
    def test_mutations_are_recorded(self, tmp_path: Path) -> None:
        log = JsonlAuditLog(tmp_path / "audit.jsonl")
        store = InMemoryManifestStore(manifest_of("0.5.0", "0.6.0", latest="0.6.0"))
        coordinator = PromotionCoordinator(store, audit=log, sleep=lambda _s: None)

        coordinator.promote(entry("0.7.0"))
        coordinator.rollback(v("0.6.0"))
        coordinator.deprecate(v("0.5.0"), reason="broken installer")

        records = log.read()
        assert isinstance(records, Ok)
        assert [r.action for r in records.value] == [
            "manifest_append",
            "manifest_rollback",
            "manifest_deprecate",
        ]
        rollback = records.value[1]
        assert rollback.version == "0.6.0"
        assert rollback.details["previous"] == "0.7.0"
        assert rollback.details["latest"] == "0.6.0"
        assert records.value[2].details["reason"] == "broken installer"

    def test_failed_mutation_is_not_recorded(self, tmp_path: Path) -> None:
        log = JsonlAuditLog(tmp_path / "audit.jsonl")
        store = InMemoryManifestStore(manifest_of("0.6.0", latest="0.6.0"))
        coordinator = PromotionCoordinator(store, audit=log, sleep=lambda _s: None)

        result = coordinator.deprecate(v("0.6.0"), reason="oops")

        assert isinstance(result, Err)
        assert result.error.kind == "deprecate_invalid"
        assert log.read() == Ok([])
