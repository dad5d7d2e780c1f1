from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

from relreg.core.result import Err, Ok
from relreg.release.domain.candidate import (
    PlatformArtifact,
    ReleaseCandidate,
    ValidationResult,
    apply_event,
    new_candidate,
)
from relreg.release.domain.manifest import ManifestEntry
from relreg.release.infra.candidate_file import (
    FileCandidateRepository,
    candidate_from_json,
    candidate_path,
    candidate_to_json,
)

from ._helpers import v


def _published_candidate() -> ReleaseCandidate:
    c = new_candidate(v("0.7.0-beta.1"), required_platforms=("x86_64-linux",))
    for event, changes in (
        ("branch_created", {"branch": "release-0.7.0-beta.1"}),
        ("build_succeeded", {"builds": (PlatformArtifact("x86_64-linux", "/b/a.tar.gz"),)}),
        ("validations_passed", {"validations": (ValidationResult("x86_64-linux", True),)}),
        (
            "tag_pushed",
            {
                "tag": "0.7.0-beta.1",
                "changelog": "- fixed things",
                "entry": ManifestEntry.create(v("0.7.0-beta.1"), "- fixed things"),
            },
        ),
        ("artifacts_published", {"published": (PlatformArtifact("x86_64-linux", "https://x/a"),)}),
    ):
        moved = apply_event(c, event, **changes)  # type: ignore[arg-type]
        assert isinstance(moved, Ok)
        c = moved.value
    return c


def test_json_roundtrip_keeps_every_field() -> None:
    c = _published_candidate()

    assert candidate_from_json(candidate_to_json(c)) == Ok(c)


def test_document_is_readable_json() -> None:
    doc = json.loads(candidate_to_json(_published_candidate()))

    assert doc["schema"] == 1
    assert doc["state"] == "published"
    assert doc["history"][0] == {
        "from": "drafted",
        "event": "branch_created",
        "to": "branched",
        "at": doc["history"][0]["at"],
        "note": None,
    }


def test_unknown_state_is_rejected() -> None:
    doc = json.loads(candidate_to_json(_published_candidate()))
    doc["state"] = "shipped"

    result = candidate_from_json(json.dumps(doc))

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_input"


class TestFileRepository:
    def test_missing_candidate_is_none(self, tmp_path: Path) -> None:
        repo = FileCandidateRepository(tmp_path / "candidates")

        assert repo.load(v("0.7.0")) == Ok(None)
        assert repo.list_all() == Ok([])

    def test_save_then_load(self, tmp_path: Path) -> None:
        repo = FileCandidateRepository(tmp_path)
        c = _published_candidate()

        assert repo.save(c) == Ok(None)

        assert candidate_path(tmp_path, c.version).name == "0.7.0-beta.1.json"
        assert repo.load(c.version) == Ok(c)

    def test_list_is_version_ordered(self, tmp_path: Path) -> None:
        repo = FileCandidateRepository(tmp_path)
        for text in ("0.10.0", "0.9.0", "0.9.0-beta.1"):
            repo.save(new_candidate(v(text), required_platforms=("x86_64-linux",)))

        listed = repo.list_all()

        assert isinstance(listed, Ok)
        assert [str(c.version) for c in listed.value] == ["0.9.0-beta.1", "0.9.0", "0.10.0"]

    def test_corrupt_file_names_path(self, tmp_path: Path) -> None:
        repo = FileCandidateRepository(tmp_path)
        candidate_path(tmp_path, v("0.7.0")).write_text("{", encoding="utf-8")

        result = repo.load(v("0.7.0"))

        assert isinstance(result, Err)
        assert result.error.hint == str(tmp_path / "0.7.0.json")

    def test_overwrite_replaces_previous_attempt(self, tmp_path: Path) -> None:
        repo = FileCandidateRepository(tmp_path)
        first = new_candidate(v("0.7.0"), required_platforms=("x86_64-linux",))
        repo.save(replace(first, state="aborted", failure="boom"))

        second = new_candidate(v("0.7.0"), required_platforms=("x86_64-linux",))
        repo.save(second)

        loaded = repo.load(v("0.7.0"))
        assert isinstance(loaded, Ok)
        assert loaded.value == second
