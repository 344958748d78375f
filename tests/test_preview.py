"""Tests for the preview store."""

from __future__ import annotations

import pytest

from familytree_import.core.errors import (
    ImportInProgressError,
    InvalidResolutionError,
    PreviewNotFoundError,
)
from familytree_import.core.models import ResolutionDecision, StoredPerson
from familytree_import.importer import map_sex_to_gender
from familytree_import.matching import find_duplicates
from familytree_import.preview import PreviewStore


@pytest.fixture
def existing() -> list[StoredPerson]:
    return [
        StoredPerson(
            id=42,
            first_name="John",
            last_name="Smith",
            gender="male",
            birth_date="1950-01-15",
            birth_place="Boston, Massachusetts",
        ),
    ]


@pytest.fixture
def store(previews: PreviewStore, parsed_sample, existing) -> PreviewStore:
    duplicates = find_duplicates(parsed_sample.individuals, existing)
    previews.store_preview_data("u1", 1, parsed_sample, duplicates, existing_people=existing)
    return previews


class TestStorePreview:
    """Tests for storing and reading sessions."""

    def test_status_and_summary(self, store: PreviewStore):
        session = store.get_preview_data("u1", 1)
        statuses = {i.gedcom_id: i.status for i in session.individuals}

        assert statuses == {"@I1@": "duplicate", "@I2@": "new", "@I3@": "new"}
        john = session.individuals[0]
        assert john.duplicate_match.existing_person_id == 42
        assert john.duplicate_match.confidence == 100

        summary = store.get_preview_summary("u1", 1)
        assert summary.total_individuals == 3
        assert summary.new_count == 2
        assert summary.duplicate_count == 1
        assert summary.existing_count == 0

    def test_sessions_are_scoped_by_user(self, store: PreviewStore):
        """Another user can't see the preview of the same upload."""
        assert store.has_preview("u1", 1)
        assert not store.has_preview("u1", 2)
        with pytest.raises(PreviewNotFoundError):
            store.get_preview_data("u1", 2)

    def test_clear(self, store: PreviewStore):
        store.clear_preview_data("u1", 1)
        with pytest.raises(PreviewNotFoundError):
            store.get_preview_summary("u1", 1)

    def test_committed_import_keeps_reads(self, store: PreviewStore):
        session = store.begin_import("u1", 1)
        store.finish_import(session, committed=True)

        assert store.get_preview_data("u1", 1).consumed
        assert store.get_preview_summary("u1", 1).total_individuals == 3

    def test_errors_default_to_parse_issues(self, previews, gedcom_text):
        from familytree_import.core.gedcom import parse_gedcom

        parsed = parse_gedcom(gedcom_text("0 @I1@ INDI", "1 BIRT", "2 DATE Spring 1850"))
        session = previews.store_preview_data("u2", 1, parsed, [])
        assert len(session.errors) == 1


class TestPreviewIndividuals:
    """Tests for paging, sorting and search."""

    def test_default_sort_by_name(self, store: PreviewStore):
        result = store.get_preview_individuals("u1", 1)

        names = [i["name"] for i in result["individuals"]]
        assert names == ["Alice Smith", "Jane Doe", "John Smith"]
        assert result["pagination"] == {"page": 1, "limit": 50, "total": 3, "totalPages": 1}

    def test_sort_by_birth_date_desc(self, store: PreviewStore):
        result = store.get_preview_individuals("u1", 1, sort_by="birthDate", sort_order="desc")
        assert [i["gedcomId"] for i in result["individuals"]] == ["@I3@", "@I2@", "@I1@"]

    def test_paging(self, store: PreviewStore):
        result = store.get_preview_individuals("u1", 1, page=2, limit=2)

        assert len(result["individuals"]) == 1
        assert result["pagination"]["totalPages"] == 2

    def test_search_is_case_insensitive(self, store: PreviewStore):
        result = store.get_preview_individuals("u1", 1, search="SMITH")

        assert {i["gedcomId"] for i in result["individuals"]} == {"@I1@", "@I3@"}
        assert result["pagination"]["total"] == 2

    def test_search_no_match(self, store: PreviewStore):
        result = store.get_preview_individuals("u1", 1, search="nobody")
        assert result["individuals"] == []
        assert result["pagination"]["totalPages"] == 0


class TestPreviewTreeAndPerson:
    """Tests for tree reconstruction and person detail."""

    def test_tree(self, store: PreviewStore):
        tree = store.get_preview_tree("u1", 1)

        assert len(tree["individuals"]) == 3
        assert {"type": "spouse", "person1": "@I1@", "person2": "@I2@"} in tree["relationships"]
        assert {
            "type": "parentOf", "parent": "@I1@", "child": "@I3@", "parentRole": "father",
        } in tree["relationships"]
        assert {
            "type": "parentOf", "parent": "@I2@", "child": "@I3@", "parentRole": "mother",
        } in tree["relationships"]
        assert len(tree["relationships"]) == 3
        assert tree["roots"] == ["@I1@", "@I2@"]

    def test_person_with_relationships(self, store: PreviewStore):
        detail = store.get_preview_person("u1", 1, "@I3@")

        assert detail["person"]["gedcomId"] == "@I3@"
        parents = detail["relationships"]["parents"]
        assert [(p["gedcomId"], p["relationshipType"]) for p in parents] == [
            ("@I1@", "father"),
            ("@I2@", "mother"),
        ]
        assert detail["relationships"]["spouses"] == []
        assert detail["relationships"]["children"] == []

    def test_person_spouse_and_children(self, store: PreviewStore):
        detail = store.get_preview_person("u1", 1, "@I1@")

        assert [s["gedcomId"] for s in detail["relationships"]["spouses"]] == ["@I2@"]
        assert [c["gedcomId"] for c in detail["relationships"]["children"]] == ["@I3@"]

    def test_unknown_person(self, store: PreviewStore):
        with pytest.raises(PreviewNotFoundError):
            store.get_preview_person("u1", 1, "@I404@")

    def test_duplicates_side_by_side(self, store: PreviewStore):
        duplicates = store.get_duplicates("u1", 1)

        assert len(duplicates) == 1
        comparison = duplicates[0]
        assert comparison["gedcomPerson"]["gedcomId"] == "@I1@"
        assert comparison["gedcomPerson"]["gender"] == "male"
        assert comparison["existingPerson"]["id"] == 42
        assert comparison["existingPerson"]["birthPlace"] == "Boston, Massachusetts"
        assert comparison["confidence"] == 100

    def test_unknown_sex_shows_unspecified_gender(self, previews: PreviewStore, gedcom_text):
        """SEX U is shown with the same gender the import will store."""
        from familytree_import.core.gedcom import parse_gedcom

        parsed = parse_gedcom(gedcom_text(
            "0 @I1@ INDI", "1 NAME Pat /Lee/", "1 SEX U", "1 BIRT", "2 DATE 1 JAN 1960",
        ))
        existing = [StoredPerson(id=7, first_name="Pat", last_name="Lee", birth_date="1960-01-01")]
        previews.store_preview_data(
            "u3", 1, parsed, find_duplicates(parsed.individuals, existing), existing_people=existing,
        )

        comparison = previews.get_duplicates("u3", 1)[0]

        assert comparison["gedcomPerson"]["gender"] == map_sex_to_gender("U") == "unspecified"


class TestImportClaim:
    """Tests for claiming a session for import."""

    def test_second_claim_rejected(self, store: PreviewStore):
        store.begin_import("u1", 1)

        with pytest.raises(ImportInProgressError, match="already running"):
            store.begin_import("u1", 1)

    def test_failed_import_releases_claim(self, store: PreviewStore):
        session = store.begin_import("u1", 1)
        store.finish_import(session, committed=False)

        assert not store.get_preview_data("u1", 1).consumed
        assert store.begin_import("u1", 1) is session

    def test_committed_import_cannot_be_claimed(self, store: PreviewStore):
        session = store.begin_import("u1", 1)
        store.finish_import(session, committed=True)

        with pytest.raises(ImportInProgressError, match="already been imported"):
            store.begin_import("u1", 1)

    def test_claims_are_per_user(self, store: PreviewStore, parsed_sample):
        store.store_preview_data("u1", 2, parsed_sample, [])
        store.begin_import("u1", 1)

        assert store.begin_import("u1", 2).user_id == 2

    def test_unknown_session(self, previews: PreviewStore):
        with pytest.raises(PreviewNotFoundError):
            previews.begin_import("missing", 1)


class TestResolutionDecisions:
    """Tests for saving decisions."""

    def test_save_and_get(self, store: PreviewStore):
        result = store.save_resolution_decisions("u1", 1, [
            {"gedcomId": "@I1@", "resolution": "merge", "existingPersonId": 42},
            ResolutionDecision(gedcom_id="@I2@", resolution="skip"),
        ])

        assert result == {"success": True, "saved": 2}
        decisions = store.get_resolution_decisions("u1", 1)
        assert [d.resolution for d in decisions] == ["merge", "skip"]
        assert decisions[0].existing_person_id == 42
        assert store.get_preview_summary("u1", 1).existing_count == 1

    def test_invalid_resolution_stores_nothing(self, store: PreviewStore):
        store.save_resolution_decisions("u1", 1, [
            {"gedcomId": "@I2@", "resolution": "skip"},
        ])

        with pytest.raises(InvalidResolutionError):
            store.save_resolution_decisions("u1", 1, [
                {"gedcomId": "@I1@", "resolution": "import_as_new"},
                {"gedcomId": "@I2@", "resolution": "delete"},
            ])

        assert [d.gedcom_id for d in store.get_resolution_decisions("u1", 1)] == ["@I2@"]

    @pytest.mark.parametrize("decision", [
        {"gedcomId": "@I1@", "resolution": 5},
        {"gedcomId": "@I1@", "resolution": None},
        {"gedcomId": "@I1@"},
        {"resolution": "skip"},
        "skip",
    ])
    def test_malformed_decision_rejected(self, store: PreviewStore, decision):
        """Malformed entries are rejected like invalid ones and keep saved decisions."""
        store.save_resolution_decisions("u1", 1, [{"gedcomId": "@I2@", "resolution": "skip"}])

        with pytest.raises(InvalidResolutionError):
            store.save_resolution_decisions("u1", 1, [decision])

        assert [d.gedcom_id for d in store.get_resolution_decisions("u1", 1)] == ["@I2@"]

    @pytest.mark.parametrize("decisions", [None, {"gedcomId": "@I1@"}, "skip", 5])
    def test_decisions_must_be_a_list(self, store: PreviewStore, decisions):
        with pytest.raises(InvalidResolutionError):
            store.save_resolution_decisions("u1", 1, decisions)

    def test_merge_requires_existing_person(self, store: PreviewStore):
        with pytest.raises(InvalidResolutionError):
            store.save_resolution_decisions("u1", 1, [{"gedcomId": "@I1@", "resolution": "merge"}])

    def test_unknown_session(self, previews: PreviewStore):
        with pytest.raises(PreviewNotFoundError):
            previews.save_resolution_decisions("missing", 1, [])
