"""
In-memory preview sessions between parse and import.

A session holds everything the user reviews before committing an import:
individuals with new/duplicate status, families, duplicate candidates,
issues and resolution decisions. Sessions are keyed by (upload id, user
id); a user can never see another user's preview of the same upload.

The store is a plain object constructed once by the application and passed
to whatever needs it. Expiry is up to the caller (``clear_preview_data``).
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Any, Iterable

from pydantic import ValidationError

from familytree_import.core.errors import (
    ImportInProgressError,
    InvalidResolutionError,
    PreviewNotFoundError,
)
from familytree_import.core.models import (
    DuplicateCandidate,
    DuplicateMatch,
    GedcomIndividual,
    ImportIssue,
    ParsedGedcom,
    PreviewIndividual,
    PreviewSession,
    PreviewSummary,
    Resolution,
    ResolutionDecision,
    StoredPerson,
)
from familytree_import.importer.importer import map_sex_to_gender

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "name": "name",
    "birthDate": "birth_date",
    "deathDate": "death_date",
}


def _person_ref(individual: PreviewIndividual, **extra: Any) -> dict[str, Any]:
    ref = {
        "gedcomId": individual.gedcom_id,
        "name": individual.name,
        "birthDate": individual.birth_date,
        "deathDate": individual.death_date,
    }
    ref.update(extra)
    return ref


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


class PreviewStore:
    """Thread-safe store of preview sessions."""

    def __init__(self):
        self._sessions: dict[tuple[str, int], PreviewSession] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def store_preview_data(
        self,
        upload_id: str,
        user_id: int,
        parsed: ParsedGedcom,
        duplicates: list[DuplicateCandidate],
        errors: list[ImportIssue] | None = None,
        existing_people: Iterable[StoredPerson] = (),
    ) -> PreviewSession:
        """
        Create (or replace) the session for ``upload_id`` and ``user_id``.

        Each individual is marked ``duplicate`` when it has at least one
        candidate and carries its best match; all others are ``new``.
        """
        best_match: dict[str, DuplicateMatch] = {}
        for candidate in sorted(duplicates, key=lambda d: d.confidence, reverse=True):
            gedcom_id = str(candidate.gedcom_person.id)
            if gedcom_id not in best_match:
                best_match[gedcom_id] = DuplicateMatch(
                    existing_person_id=candidate.existing_person.id,
                    confidence=candidate.confidence,
                    matching_fields=candidate.matching_fields,
                )

        individuals = []
        for record in parsed.individuals:
            match = best_match.get(record.id)
            individuals.append(PreviewIndividual(
                gedcom_id=record.id,
                name=record.display_name,
                first_name=record.first_name,
                last_name=record.last_name,
                birth_date=record.birth_date,
                death_date=record.death_date,
                sex=record.sex,
                status="duplicate" if match else "new",
                duplicate_match=match,
            ))

        duplicate_count = sum(1 for i in individuals if i.status == "duplicate")
        matched_ids = {candidate.existing_person.id for candidate in duplicates}

        session = PreviewSession(
            upload_id=upload_id,
            user_id=user_id,
            version=parsed.version,
            individuals=individuals,
            records={record.id: record for record in parsed.individuals},
            families=list(parsed.families),
            duplicates=list(duplicates),
            existing_people={
                person.id: person
                for person in existing_people
                if person.id is not None and person.id in matched_ids
            },
            errors=list(errors if errors is not None else parsed.errors),
            summary=PreviewSummary(
                total_individuals=len(individuals),
                new_count=len(individuals) - duplicate_count,
                duplicate_count=duplicate_count,
            ),
        )

        with self._lock:
            self._sessions[(upload_id, user_id)] = session

        logger.info(
            "Stored preview %s for user %s: %d individuals, %d duplicates",
            upload_id, user_id, len(individuals), duplicate_count,
        )
        return session

    def clear_preview_data(self, upload_id: str, user_id: int) -> None:
        with self._lock:
            self._sessions.pop((upload_id, user_id), None)

    def begin_import(self, upload_id: str, user_id: int) -> PreviewSession:
        """
        Claim a session for importing.

        Only one import per session can run at a time and a committed session
        cannot be claimed again; both cases raise ``ImportInProgressError``.
        The claim is released with ``finish_import``.
        """
        with self._lock:
            session = self._sessions.get((upload_id, user_id))
            if session is None:
                raise PreviewNotFoundError(f"Preview data not found for upload {upload_id}")
            if session.consumed:
                raise ImportInProgressError("This upload has already been imported")
            if session.importing:
                raise ImportInProgressError("An import of this upload is already running")
            session.importing = True
        return session

    def finish_import(self, session: PreviewSession, committed: bool) -> None:
        """Release a claim taken by ``begin_import``; a committed import consumes the session."""
        with self._lock:
            session.importing = False
            if committed:
                session.consumed = True

    # =========================================================================
    # Reads
    # =========================================================================

    def get_preview_data(self, upload_id: str, user_id: int) -> PreviewSession:
        with self._lock:
            session = self._sessions.get((upload_id, user_id))
        if session is None:
            raise PreviewNotFoundError(f"Preview data not found for upload {upload_id}")
        return session

    def has_preview(self, upload_id: str, user_id: int) -> bool:
        with self._lock:
            return (upload_id, user_id) in self._sessions

    def get_preview_summary(self, upload_id: str, user_id: int) -> PreviewSummary:
        return self.get_preview_data(upload_id, user_id).summary

    def get_preview_individuals(
        self,
        upload_id: str,
        user_id: int,
        page: int = 1,
        limit: int = 50,
        sort_by: str = "name",
        sort_order: str = "asc",
        search: str | None = None,
    ) -> dict[str, Any]:
        """Searched, sorted and paginated individuals."""
        session = self.get_preview_data(upload_id, user_id)
        individuals = list(session.individuals)

        if search:
            needle = search.lower()
            individuals = [
                i for i in individuals
                if needle in (i.name or "").lower()
                or needle in (i.first_name or "").lower()
                or needle in (i.last_name or "").lower()
            ]

        attribute = SORT_FIELDS.get(sort_by, "name")
        individuals.sort(
            key=lambda i: (getattr(i, attribute) or "").lower(),
            reverse=sort_order == "desc",
        )

        page = max(page, 1)
        limit = max(limit, 1)
        total = len(individuals)
        offset = (page - 1) * limit

        return {
            "individuals": [i.to_json_dict() for i in individuals[offset:offset + limit]],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
            },
        }

    def get_preview_tree(self, upload_id: str, user_id: int) -> dict[str, Any]:
        """Individuals plus relationships reconstructed from families."""
        session = self.get_preview_data(upload_id, user_id)

        relationships: list[dict[str, Any]] = []
        has_parents: set[str] = set()
        for family in session.families:
            if family.husband and family.wife:
                relationships.append({
                    "type": "spouse",
                    "person1": family.husband,
                    "person2": family.wife,
                })
            for child_id in _unique(family.children):
                for parent_id, role in ((family.husband, "father"), (family.wife, "mother")):
                    if not parent_id:
                        continue
                    has_parents.add(child_id)
                    relationships.append({
                        "type": "parentOf",
                        "parent": parent_id,
                        "child": child_id,
                        "parentRole": role,
                    })

        individuals = [
            i.model_dump(by_alias=True, mode="json", exclude={"duplicate_match"})
            for i in session.individuals
        ]

        return {
            "individuals": individuals,
            "relationships": relationships,
            "roots": [i.gedcom_id for i in session.individuals if i.gedcom_id not in has_parents],
        }

    def get_preview_person(self, upload_id: str, user_id: int, gedcom_id: str) -> dict[str, Any]:
        """
        One individual with parents, spouses and children.

        Relationships come from the family records themselves (who is
        listed as husband, wife or child), not from FAMC/FAMS pointers.
        """
        session = self.get_preview_data(upload_id, user_id)
        by_id = {i.gedcom_id: i for i in session.individuals}

        person = by_id.get(gedcom_id)
        if person is None:
            raise PreviewNotFoundError(f"Person {gedcom_id} not found in preview {upload_id}")

        parents: dict[str, dict[str, Any]] = {}
        spouses: dict[str, dict[str, Any]] = {}
        children: dict[str, dict[str, Any]] = {}

        for family in session.families:
            if gedcom_id in family.children:
                for parent_id, role in ((family.husband, "father"), (family.wife, "mother")):
                    if parent_id in by_id and parent_id not in parents:
                        parents[parent_id] = _person_ref(by_id[parent_id], relationshipType=role)

            if gedcom_id in (family.husband, family.wife):
                spouse_id = family.wife if family.husband == gedcom_id else family.husband
                if spouse_id in by_id and spouse_id != gedcom_id:
                    spouses.setdefault(spouse_id, _person_ref(by_id[spouse_id]))
                for child_id in family.children:
                    if child_id in by_id:
                        children.setdefault(child_id, _person_ref(by_id[child_id]))

        return {
            "person": person.to_json_dict(),
            "relationships": {
                "parents": list(parents.values()),
                "spouses": list(spouses.values()),
                "children": list(children.values()),
            },
        }

    def get_duplicates(self, upload_id: str, user_id: int) -> list[dict[str, Any]]:
        """Side-by-side comparison of each duplicate candidate."""
        session = self.get_preview_data(upload_id, user_id)
        comparisons = []

        for candidate in session.duplicates:
            record = session.records.get(str(candidate.gedcom_person.id))
            existing = session.existing_people.get(candidate.existing_person.id)
            comparisons.append({
                "gedcomPerson": self._format_gedcom_person(record, candidate),
                "existingPerson": self._format_existing_person(existing, candidate),
                "confidence": candidate.confidence,
                "matchingFields": dict(candidate.matching_fields),
            })

        return comparisons

    @staticmethod
    def _format_gedcom_person(
        record: GedcomIndividual | None,
        candidate: DuplicateCandidate,
    ) -> dict[str, Any]:
        if record is None:
            return candidate.gedcom_person.to_json_dict()
        return {
            "gedcomId": record.id,
            "name": record.display_name or None,
            "firstName": record.first_name,
            "lastName": record.last_name,
            "birthDate": record.birth_date,
            "birthPlace": record.birth_place,
            "deathDate": record.death_date,
            "deathPlace": record.death_place,
            "gender": map_sex_to_gender(record.sex),
            "photoUrl": record.photo_url,
        }

    @staticmethod
    def _format_existing_person(
        person: StoredPerson | None,
        candidate: DuplicateCandidate,
    ) -> dict[str, Any]:
        if person is None:
            return candidate.existing_person.to_json_dict()
        return {
            "id": person.id,
            "name": person.full_name or None,
            "firstName": person.first_name or None,
            "lastName": person.last_name or None,
            "birthDate": person.birth_date,
            "birthPlace": person.birth_place,
            "deathDate": person.death_date,
            "deathPlace": person.death_place,
            "gender": person.gender,
            "photoUrl": person.photo_url,
        }

    # =========================================================================
    # Resolution decisions
    # =========================================================================

    def save_resolution_decisions(
        self,
        upload_id: str,
        user_id: int,
        decisions: Iterable[ResolutionDecision | dict[str, Any]],
    ) -> dict[str, Any]:
        """
        Validate and store decisions, replacing any saved earlier.

        Nothing is stored unless every decision is valid.
        """
        session = self.get_preview_data(upload_id, user_id)
        if isinstance(decisions, (str, bytes, dict)) or not isinstance(decisions, Iterable):
            raise InvalidResolutionError("Decisions must be a list")

        validated: list[ResolutionDecision] = []
        for decision in decisions:
            if not isinstance(decision, ResolutionDecision):
                try:
                    decision = ResolutionDecision.model_validate(decision)
                except ValidationError as e:
                    raise InvalidResolutionError(f"Malformed resolution decision: {decision!r}") from e
            if not decision.is_valid:
                raise InvalidResolutionError(f"Invalid resolution option: {decision.resolution}")
            if decision.resolution == Resolution.MERGE.value and decision.existing_person_id is None:
                raise InvalidResolutionError(
                    f"Merge decision for {decision.gedcom_id} requires an existing person id"
                )
            validated.append(decision)

        with self._lock:
            session.resolution_decisions = validated
            session.summary.existing_count = sum(
                1 for d in validated if d.resolution == Resolution.SKIP.value
            )

        logger.debug("Saved %d resolution decisions for %s", len(validated), upload_id)
        return {"success": True, "saved": len(validated)}

    def get_resolution_decisions(self, upload_id: str, user_id: int) -> list[ResolutionDecision]:
        return list(self.get_preview_data(upload_id, user_id).resolution_decisions)
