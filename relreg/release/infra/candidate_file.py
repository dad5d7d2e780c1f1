"""On-disk persistence of release candidates.

Each version has one file, ``<candidates_dir>/<version>.json``, rewritten
atomically after every transition so that ``relreg release <step>`` invocations
in separate processes advance the same candidate. Terminal candidates stay on
disk as a record until a fresh attempt for the same version replaces them.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol

from relreg.core.result import Err, Ok, Result
from relreg.core.structured import StrDict, as_obj_list, as_str_dict, get_int, get_str, get_table
from relreg.platform.files import atomic_write_text
from relreg.release.domain.candidate import (
    STATES,
    PlatformArtifact,
    ReleaseCandidate,
    ReleaseEvent,
    ReleaseState,
    TransitionRecord,
    ValidationResult,
)
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.manifest import ManifestEntry
from relreg.release.domain.version import VersionIdentifier, parse_version

CANDIDATE_SCHEMA = 1

_EVENTS: tuple[ReleaseEvent, ...] = (
    "branch_created",
    "build_succeeded",
    "build_failed",
    "validations_passed",
    "validation_failed",
    "tag_pushed",
    "artifacts_published",
    "promotion_approved",
    "manual_abort",
)


def candidate_path(candidates_dir: Path, version: VersionIdentifier) -> Path:
    return candidates_dir / f"{version}.json"


def _artifacts_payload(items: tuple[PlatformArtifact, ...]) -> list[dict[str, str]]:
    return [{"platform": a.platform, "location": a.location} for a in items]


def candidate_to_json(c: ReleaseCandidate) -> str:
    payload: dict[str, object] = {
        "schema": CANDIDATE_SCHEMA,
        "version": str(c.version),
        "attempt_id": c.attempt_id,
        "created_at": c.created_at,
        "state": c.state,
        "required_platforms": list(c.required_platforms),
        "branch": c.branch,
        "tag": c.tag,
        "builds": _artifacts_payload(c.builds),
        "validations": [
            {"platform": v.platform, "passed": v.passed, "detail": v.detail} for v in c.validations
        ],
        "changelog": c.changelog,
        "entry": (
            {"created_at": c.entry.created_at, "changelog_sha256": c.entry.changelog_sha256}
            if c.entry is not None
            else None
        ),
        "published": _artifacts_payload(c.published),
        "approved_by": c.approved_by,
        "failure": c.failure,
        "history": [
            {
                "from": h.from_state,
                "event": h.event,
                "to": h.to_state,
                "at": h.at,
                "note": h.note,
            }
            for h in c.history
        ],
    }
    return json.dumps(payload, indent=2) + "\n"


def save_candidate(
    *, candidates_dir: Path, candidate: ReleaseCandidate
) -> Result[None, ReleaseError]:
    path = candidate_path(candidates_dir, candidate.version)
    try:
        atomic_write_text(path, candidate_to_json(candidate), encoding="utf-8")
    except OSError as e:
        return Err(
            ReleaseError(
                kind="store_failed",
                message=f"failed to write release candidate: {e}",
                hint=str(path),
            )
        )
    return Ok(None)


def load_candidate(
    *, candidates_dir: Path, version: VersionIdentifier
) -> Result[ReleaseCandidate | None, ReleaseError]:
    path = candidate_path(candidates_dir, version)
    if not path.exists():
        return Ok(None)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return Err(
            ReleaseError(
                kind="store_failed",
                message=f"failed to read release candidate: {e}",
                hint=str(path),
            )
        )
    return candidate_from_json(text).map_err(
        lambda e: ReleaseError(kind=e.kind, message=e.message, hint=str(path))
    )


def list_candidates(*, candidates_dir: Path) -> Result[list[ReleaseCandidate], ReleaseError]:
    if not candidates_dir.is_dir():
        return Ok([])
    out: list[ReleaseCandidate] = []
    for path in sorted(candidates_dir.glob("*.json")):
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            return Err(ReleaseError(kind="store_failed", message=str(e), hint=str(path)))
        parsed = candidate_from_json(text)
        if isinstance(parsed, Err):
            e = parsed.error
            return Err(ReleaseError(kind=e.kind, message=e.message, hint=str(path)))
        out.append(parsed.value)
    out.sort(key=lambda c: c.version)
    return Ok(out)


def _invalid(message: str) -> Err[ReleaseError]:
    return Err(ReleaseError(kind="invalid_input", message=f"invalid candidate file: {message}"))


def _state(raw: str | None) -> ReleaseState | None:
    for s in STATES:
        if s == raw:
            return s
    return None


def _event(raw: str | None) -> ReleaseEvent | None:
    for e in _EVENTS:
        if e == raw:
            return e
    return None


def _artifacts(d: StrDict, key: str) -> tuple[PlatformArtifact, ...] | None:
    items = as_obj_list(d.get(key, []))
    if items is None:
        return None
    out: list[PlatformArtifact] = []
    for item in items:
        row = as_str_dict(item)
        if row is None:
            return None
        platform = get_str(row, "platform")
        location = get_str(row, "location")
        if platform is None or location is None:
            return None
        out.append(PlatformArtifact(platform=platform, location=location))
    return tuple(out)


def candidate_from_json(text: str) -> Result[ReleaseCandidate, ReleaseError]:
    try:
        obj: object = json.loads(text)
    except json.JSONDecodeError as e:
        return _invalid(f"bad JSON ({e})")

    d = as_str_dict(obj)
    if d is None:
        return _invalid("root must be an object")

    schema = get_int(d, "schema")
    if schema != CANDIDATE_SCHEMA:
        return _invalid(f"unsupported schema {schema}")

    version_raw = get_str(d, "version")
    if version_raw is None:
        return _invalid("missing version")
    version = parse_version(version_raw)
    if isinstance(version, Err):
        return version

    attempt_id = get_str(d, "attempt_id")
    created_at = get_str(d, "created_at")
    state = _state(get_str(d, "state"))
    platforms_obj = as_obj_list(d.get("required_platforms"))
    if attempt_id is None or created_at is None or state is None or platforms_obj is None:
        return _invalid("missing required fields")
    platforms = tuple(p for p in platforms_obj if isinstance(p, str))

    builds = _artifacts(d, "builds")
    published = _artifacts(d, "published")
    if builds is None or published is None:
        return _invalid("bad artifact list")

    validations: list[ValidationResult] = []
    for item in as_obj_list(d.get("validations", [])) or []:
        row = as_str_dict(item)
        platform = get_str(row, "platform") if row is not None else None
        if row is None or platform is None or not isinstance(row.get("passed"), bool):
            return _invalid("bad validation entry")
        validations.append(
            ValidationResult(
                platform=platform,
                passed=row["passed"] is True,
                detail=get_str(row, "detail") or "",
            )
        )

    entry: ManifestEntry | None = None
    entry_d = get_table(d, "entry")
    if entry_d is not None:
        entry = ManifestEntry(
            version=version.value,
            created_at=get_str(entry_d, "created_at") or "",
            changelog_sha256=get_str(entry_d, "changelog_sha256") or "",
        )

    history: list[TransitionRecord] = []
    for item in as_obj_list(d.get("history", [])) or []:
        row = as_str_dict(item)
        if row is None:
            return _invalid("bad history entry")
        from_state = _state(get_str(row, "from"))
        to_state = _state(get_str(row, "to"))
        event = _event(get_str(row, "event"))
        if from_state is None or to_state is None or event is None:
            return _invalid("bad history entry")
        history.append(
            TransitionRecord(
                from_state=from_state,
                event=event,
                to_state=to_state,
                at=get_str(row, "at") or "",
                note=get_str(row, "note"),
            )
        )

    changelog = d.get("changelog")
    return Ok(
        ReleaseCandidate(
            version=version.value,
            attempt_id=attempt_id,
            created_at=created_at,
            state=state,
            required_platforms=platforms,
            branch=get_str(d, "branch"),
            tag=get_str(d, "tag"),
            builds=builds,
            validations=tuple(validations),
            changelog=changelog if isinstance(changelog, str) else None,
            entry=entry,
            published=published,
            approved_by=get_str(d, "approved_by"),
            failure=get_str(d, "failure"),
            history=tuple(history),
        )
    )


class CandidateRepository(Protocol):
    def load(self, version: VersionIdentifier) -> Result[ReleaseCandidate | None, ReleaseError]: ...

    def save(self, candidate: ReleaseCandidate) -> Result[None, ReleaseError]: ...

    def list_all(self) -> Result[list[ReleaseCandidate], ReleaseError]: ...


class FileCandidateRepository:
    def __init__(self, candidates_dir: Path) -> None:
        self.candidates_dir = candidates_dir

    def load(self, version: VersionIdentifier) -> Result[ReleaseCandidate | None, ReleaseError]:
        return load_candidate(candidates_dir=self.candidates_dir, version=version)

    def save(self, candidate: ReleaseCandidate) -> Result[None, ReleaseError]:
        return save_candidate(candidates_dir=self.candidates_dir, candidate=candidate)

    def list_all(self) -> Result[list[ReleaseCandidate], ReleaseError]:
        return list_candidates(candidates_dir=self.candidates_dir)


class InMemoryCandidateRepository:
    def __init__(self) -> None:
        self._items: dict[VersionIdentifier, ReleaseCandidate] = {}

    def load(self, version: VersionIdentifier) -> Result[ReleaseCandidate | None, ReleaseError]:
        return Ok(self._items.get(version))

    def save(self, candidate: ReleaseCandidate) -> Result[None, ReleaseError]:
        self._items[candidate.version] = candidate
        return Ok(None)

    def list_all(self) -> Result[list[ReleaseCandidate], ReleaseError]:
        return Ok(sorted(self._items.values(), key=lambda c: c.version))
