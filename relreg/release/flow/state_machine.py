"""Release State Machine driver.

Each public method performs one transition of the candidate table in
``relreg.release.domain.candidate``: it loads the candidate, checks the guard
(calling external collaborators where the guard needs them), applies the
event and persists the result before returning. Build and validation failures
are terminal: the candidate is saved as ``aborted`` and the failure is
returned. Guard failures that leave nothing half-done (tag already exists,
publish incomplete, manifest conflict) keep the candidate where it was.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, TypeVar

from relreg.core.config import ReleaseConfig
from relreg.core.result import Err, Ok, Result
from relreg.release.domain.candidate import (
    PlatformArtifact,
    ReleaseCandidate,
    ReleaseEvent,
    ValidationResult,
    apply_event,
    build_gate,
    new_candidate,
    publish_gate,
    require_state,
    validation_gate,
)
from relreg.release.domain.errors import ReleaseError, ReleaseErrorKind
from relreg.release.domain.manifest import ManifestEntry
from relreg.release.domain.version import VersionIdentifier
from relreg.release.flow.promotion import PromotionCoordinator
from relreg.release.flow.resolver import ArtifactResolver
from relreg.release.infra.audit import AuditSink, NullAuditLog
from relreg.release.infra.candidate_file import CandidateRepository
from relreg.release.infra.collaborators import (
    ArtifactStore,
    BuildSystem,
    ChangelogSource,
    Notifier,
    PublishReceipt,
    Validator,
    VersionControl,
)
from relreg.release.infra.store import ManifestStore

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Collaborators:
    vcs: VersionControl
    builder: BuildSystem
    validator: Validator
    artifacts: ArtifactStore
    changelog: ChangelogSource
    notifier: Notifier


@dataclass(frozen=True, slots=True)
class StepTimeouts:
    """Caller-supplied limits (seconds) for external work; None waits forever."""

    build: float | None = None
    validate: float | None = None
    publish: float | None = None


def run_per_platform(
    platforms: Sequence[str],
    fn: Callable[[str], Result[T, ReleaseError]],
    *,
    timeout: float | None,
    kind: ReleaseErrorKind,
    stage: str,
) -> dict[str, Result[T, ReleaseError]]:
    """Run ``fn`` for every platform in parallel and join on all of them.

    Platforms still running when ``timeout`` expires report a ``kind`` error.
    Their work is not cancelled: the pool is released without waiting.
    """
    if not platforms:
        return {}

    pool = ThreadPoolExecutor(max_workers=len(platforms), thread_name_prefix="relreg")
    try:
        futures = {p: pool.submit(fn, p) for p in platforms}
        done, _ = wait(futures.values(), timeout=timeout)
    finally:
        pool.shutdown(wait=False)

    results: dict[str, Result[T, ReleaseError]] = {}
    for platform, future in futures.items():
        if future in done:
            results[platform] = future.result()
            continue
        results[platform] = Err(
            ReleaseError(
                kind=kind,
                message=f"{platform}: timed out after {timeout}s",
                stage=stage,
                platforms=(platform,),
            )
        )
    return results


class ReleaseStateMachine:
    def __init__(
        self,
        *,
        store: ManifestStore,
        candidates: CandidateRepository,
        collaborators: Collaborators,
        coordinator: PromotionCoordinator,
        resolver: ArtifactResolver,
        release: ReleaseConfig,
        timeouts: StepTimeouts | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.store = store
        self.candidates = candidates
        self.collab = collaborators
        self.coordinator = coordinator
        self.resolver = resolver
        self.release = release
        self.timeouts = timeouts or StepTimeouts()
        self.audit: AuditSink = audit or NullAuditLog()

    # -- persistence helpers ---------------------------------------------------

    def load(self, version: VersionIdentifier) -> Result[ReleaseCandidate, ReleaseError]:
        found = self.candidates.load(version)
        if isinstance(found, Err):
            return found
        if found.value is None:
            return Err(
                ReleaseError(
                    kind="candidate_missing",
                    message=f"no release candidate for {version}",
                    hint=f"start one with: relreg release start {version}",
                )
            )
        return Ok(found.value)

    def _commit(self, candidate: ReleaseCandidate) -> Result[ReleaseCandidate, ReleaseError]:
        saved = self.candidates.save(candidate)
        if isinstance(saved, Err):
            return saved
        if candidate.history:
            last = candidate.history[-1]
            logged = self.audit.record(
                "candidate_transition",
                str(candidate.version),
                attempt=candidate.attempt_id,
                event=last.event,
                from_state=last.from_state,
                to_state=last.to_state,
            )
            if isinstance(logged, Err):
                return logged
        return Ok(candidate)

    def _transition(
        self,
        candidate: ReleaseCandidate,
        event: ReleaseEvent,
        *,
        note: str | None = None,
        **changes: Any,
    ) -> Result[ReleaseCandidate, ReleaseError]:
        moved = apply_event(candidate, event, note=note, **changes)
        if isinstance(moved, Err):
            return moved
        return self._commit(moved.value)

    def _abort_with(
        self,
        candidate: ReleaseCandidate,
        event: ReleaseEvent,
        error: ReleaseError,
        **changes: Any,
    ) -> Err[ReleaseError]:
        aborted = self._transition(
            candidate, event, note=error.pretty(), failure=error.pretty(), **changes
        )
        if isinstance(aborted, Err):
            return aborted
        self.collab.notifier.notify(
            f"release {candidate.version} aborted",
            error.pretty(),
        )
        return Err(error)

    def _check_releasable(self, version: VersionIdentifier) -> Result[None, ReleaseError]:
        """The version must be new and, when stable, not older than the newest stable entry."""
        manifest = self.store.read()
        if isinstance(manifest, Err):
            return manifest
        m = manifest.value
        if m.contains(version):
            return Err(
                ReleaseError(
                    kind="version_exists",
                    message=f"{version} is already in the manifest",
                    stage="drafted",
                    hint="pick a new version; published versions are immutable",
                )
            )
        newest = m.latest_stable()
        if not version.is_prerelease() and newest is not None and version < newest:
            return Err(
                ReleaseError(
                    kind="version_out_of_order",
                    message=f"stable version {version} is older than {newest}",
                    stage="drafted",
                    hint="stable versions must be released in increasing order",
                )
            )
        return Ok(None)

    # -- transitions -------------------------------------------------------------

    def draft(self, version: VersionIdentifier) -> Result[ReleaseCandidate, ReleaseError]:
        releasable = self._check_releasable(version)
        if isinstance(releasable, Err):
            return releasable

        existing = self.candidates.load(version)
        if isinstance(existing, Err):
            return existing
        if existing.value is not None and not existing.value.is_terminal:
            return Err(
                ReleaseError(
                    kind="candidate_exists",
                    message=(
                        f"a release of {version} is already in progress "
                        f"(state {existing.value.state})"
                    ),
                    stage="drafted",
                    hint=f"continue it, or abort it with: relreg release abort {version}",
                )
            )

        candidate = new_candidate(version, required_platforms=self.release.platforms)
        return self._commit(candidate)

    def branch(self, version: VersionIdentifier) -> Result[ReleaseCandidate, ReleaseError]:
        loaded = self.load(version)
        if isinstance(loaded, Err):
            return loaded
        c = loaded.value
        ok = require_state(c, "drafted", action="branch")
        if isinstance(ok, Err):
            return ok

        releasable = self._check_releasable(version)
        if isinstance(releasable, Err):
            return releasable

        name = self.release.branch_name(str(version))
        created = self.collab.vcs.create_branch(name)
        if isinstance(created, Err):
            return Err(created.error.at("drafted"))
        return self._transition(c, "branch_created", branch=name)

    def start(self, version: VersionIdentifier) -> Result[ReleaseCandidate, ReleaseError]:
        """Draft a fresh candidate and create its release branch."""
        drafted = self.draft(version)
        if isinstance(drafted, Err):
            return drafted
        return self.branch(version)

    def build(self, version: VersionIdentifier) -> Result[ReleaseCandidate, ReleaseError]:
        loaded = self.load(version)
        if isinstance(loaded, Err):
            return loaded
        c = loaded.value
        ok = require_state(c, "branched", action="build")
        if isinstance(ok, Err):
            return ok

        builds: list[PlatformArtifact] = []
        for platform in c.required_platforms:
            built = self.collab.builder.build(version, platform, timeout=self.timeouts.build)
            if isinstance(built, Err):
                return self._abort_with(c, "build_failed", built.error.at("branched"))
            builds.append(PlatformArtifact(platform=platform, location=str(built.value)))

        gate = build_gate(c.required_platforms, builds)
        if isinstance(gate, Err):
            return self._abort_with(c, "build_failed", gate.error)
        return self._transition(c, "build_succeeded", builds=tuple(builds))

    def validate(self, version: VersionIdentifier) -> Result[ReleaseCandidate, ReleaseError]:
        loaded = self.load(version)
        if isinstance(loaded, Err):
            return loaded
        c = loaded.value
        ok = require_state(c, "candidate_built", action="validate")
        if isinstance(ok, Err):
            return ok

        timeout = self.timeouts.validate

        def validate_one(platform: str) -> Result[None, ReleaseError]:
            build = c.build_for(platform)
            if build is None:
                return Err(
                    ReleaseError(
                        kind="validation_failed",
                        message=f"{platform}: no build artifact to validate",
                        platforms=(platform,),
                    )
                )
            return self.collab.validator.validate(
                version,
                platform,
                Path(build.location),
                timeout=timeout,
            )

        outcomes = run_per_platform(
            c.required_platforms,
            validate_one,
            timeout=timeout,
            kind="validation_failed",
            stage="candidate_built",
        )
        results = tuple(
            ValidationResult(platform=p, passed=True)
            if isinstance(r, Ok)
            else ValidationResult(platform=p, passed=False, detail=r.error.message)
            for p, r in outcomes.items()
        )

        gate = validation_gate(c.required_platforms, results)
        if isinstance(gate, Err):
            return self._abort_with(c, "validation_failed", gate.error, validations=results)
        return self._transition(c, "validations_passed", validations=results)

    def tag(self, version: VersionIdentifier) -> Result[ReleaseCandidate, ReleaseError]:
        loaded = self.load(version)
        if isinstance(loaded, Err):
            return loaded
        c = loaded.value
        ok = require_state(c, "validated", action="tag")
        if isinstance(ok, Err):
            return ok

        tag = self.release.tag_name(str(version))
        exists = self.collab.vcs.tag_exists(tag)
        if isinstance(exists, Err):
            return Err(exists.error.at("validated"))
        if exists.value:
            return Err(
                ReleaseError(
                    kind="tag_exists",
                    message=f"tag {tag} already exists in version control",
                    stage="validated",
                    hint="a tag is never moved; release a new version instead",
                )
            )

        changelog = self.collab.changelog.changelog_for(version)
        if isinstance(changelog, Err):
            return Err(changelog.error.at("validated"))

        created = self.collab.vcs.create_tag(tag, f"Release {version}", target=c.branch)
        if isinstance(created, Err):
            return Err(created.error.at("validated"))
        for ref in (c.branch, tag):
            if ref is None:
                continue
            pushed = self.collab.vcs.push(ref)
            if isinstance(pushed, Err):
                return Err(pushed.error.at("validated"))

        entry = ManifestEntry.create(version, changelog.value)
        return self._transition(c, "tag_pushed", tag=tag, changelog=changelog.value, entry=entry)

    def publish(self, version: VersionIdentifier) -> Result[ReleaseCandidate, ReleaseError]:
        """Publish the archives still missing; a partial run keeps its progress."""
        loaded = self.load(version)
        if isinstance(loaded, Err):
            return loaded
        c = loaded.value
        ok = require_state(c, "tagged", action="publish")
        if isinstance(ok, Err):
            return ok

        already = {a.platform for a in c.published}
        pending = [p for p in c.required_platforms if p not in already]

        def publish_one(platform: str) -> Result[PublishReceipt, ReleaseError]:
            build = c.build_for(platform)
            if build is None:
                return Err(
                    ReleaseError(
                        kind="publish_incomplete",
                        message=f"{platform}: no build artifact to publish",
                        platforms=(platform,),
                    )
                )
            url = self.resolver.url_for(version, platform)
            return self.collab.artifacts.publish(version, platform, Path(build.location), url)

        outcomes = run_per_platform(
            pending,
            publish_one,
            timeout=self.timeouts.publish,
            kind="publish_incomplete",
            stage="tagged",
        )

        published = list(c.published)
        errors: list[str] = []
        for platform, outcome in outcomes.items():
            if isinstance(outcome, Ok):
                published.append(PlatformArtifact(platform=platform, location=outcome.value.url))
            else:
                errors.append(outcome.error.message)

        # Only count what is actually downloadable now.
        downloadable = tuple(a for a in published if self.collab.artifacts.is_published(a.location))

        gate = publish_gate(c.required_platforms, downloadable)
        if isinstance(gate, Err):
            progress = self.candidates.save(replace(c, published=downloadable))
            if isinstance(progress, Err):
                return progress
            e = gate.error
            return Err(
                ReleaseError(
                    kind=e.kind,
                    message=e.message,
                    stage=e.stage,
                    hint="; ".join(errors) or e.hint,
                    platforms=e.platforms,
                )
            )

        return self._transition(c, "artifacts_published", published=downloadable)

    def promote(
        self, version: VersionIdentifier, *, approved_by: str
    ) -> Result[ReleaseCandidate, ReleaseError]:
        """Apply the ``promotion_approved`` event; the manifest CAS is the guard."""
        loaded = self.load(version)
        if isinstance(loaded, Err):
            return loaded
        c = loaded.value
        ok = require_state(c, "published", action="promote")
        if isinstance(ok, Err):
            return ok
        if c.entry is None:
            return Err(
                ReleaseError(
                    kind="invalid_transition",
                    message=f"candidate {version} has no manifest entry",
                    stage="published",
                )
            )

        manifest = self.coordinator.promote(c.entry)
        if isinstance(manifest, Err):
            return Err(manifest.error.within("published"))

        promoted = self._transition(c, "promotion_approved", approved_by=approved_by)
        if isinstance(promoted, Ok):
            latest = manifest.value.latest
            self.collab.notifier.notify(
                f"release {version} promoted",
                f"latest is now {latest}" if latest is not None else "",
            )
        return promoted

    def abort(
        self, version: VersionIdentifier, *, reason: str
    ) -> Result[ReleaseCandidate, ReleaseError]:
        """Stop the candidate; external work already running is left alone."""
        loaded = self.load(version)
        if isinstance(loaded, Err):
            return loaded
        return self._transition(loaded.value, "manual_abort", note=reason, failure=reason)
