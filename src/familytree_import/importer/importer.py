"""
Commit a reviewed GEDCOM preview to family-tree storage.

Import is two steps:
- ``prepare_import_data`` applies resolution decisions and decides, per
  individual, whether it is inserted, merged into an existing person, or
  skipped. Pure; touches no storage.
- ``GedcomImporter.run`` writes the plan in one transaction: merges,
  inserts, then relationships built from the families once every GEDCOM
  id has a person id. Any failure rolls everything back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from pydantic import ValidationError

from familytree_import.core.errors import (
    ErrorCode,
    ImportFailedError,
    InvalidResolutionError,
)
from familytree_import.core.models import (
    DateModifier,
    GedcomFamily,
    GedcomIndividual,
    ImportResult,
    ParentRole,
    PreviewSession,
    RelationshipType,
    Resolution,
    ResolutionDecision,
    StoredPerson,
    StoredRelationship,
)

if TYPE_CHECKING:
    from familytree_import.storage.database import FamilyTreeDatabase

logger = logging.getLogger(__name__)

MODIFIER_TEXT = {
    DateModifier.ABOUT: "approximate",
    DateModifier.BEFORE: "before",
    DateModifier.AFTER: "after",
    DateModifier.BETWEEN: "between",
    DateModifier.CALCULATED: "calculated",
    DateModifier.ESTIMATED: "estimated",
}


# =============================================================================
# Field mapping
# =============================================================================

def map_sex_to_gender(sex: str | None) -> str:
    """GEDCOM SEX -> stored gender: M male, F female, U/missing unspecified, else other."""
    if not sex:
        return "unspecified"
    normalized = sex.strip().upper()
    if normalized == "M":
        return "male"
    if normalized == "F":
        return "female"
    if normalized in ("U", ""):
        return "unspecified"
    return "other"


def append_date_modifier_to_notes(
    notes: str | None,
    modifier: DateModifier | None,
    event: str = "Date",
) -> str | None:
    """Keep an imprecise-date qualifier that the stored date can't express."""
    if modifier is None:
        return notes

    text = f"({event} {MODIFIER_TEXT.get(modifier, modifier.value.lower())})"
    if not notes or not notes.strip():
        return text
    return f"{notes}\n{text}"


def map_person_to_schema(individual: GedcomIndividual, user_id: int) -> StoredPerson:
    """Convert a parsed individual into a person row."""
    notes = append_date_modifier_to_notes(None, individual.birth_date_modifier, "Birth date")
    notes = append_date_modifier_to_notes(notes, individual.death_date_modifier, "Death date")

    return StoredPerson(
        first_name=individual.first_name or "",
        last_name=individual.last_name or "",
        gender=map_sex_to_gender(individual.sex),
        birth_date=individual.birth_date,
        birth_place=individual.birth_place,
        death_date=individual.death_date,
        death_place=individual.death_place,
        photo_url=individual.photo_url,
        notes=notes,
        user_id=user_id,
    )


# =============================================================================
# Planning
# =============================================================================

@dataclass
class PersonInsert:
    gedcom_id: str
    person: StoredPerson


@dataclass
class PersonUpdate:
    gedcom_id: str
    person_id: int
    person: StoredPerson


@dataclass
class ImportPlan:
    """
    What an import will write.

    Inserts and updates are disjoint. ``gedcom_id_to_person_id`` holds the
    merged individuals up front; inserted ids are added while writing.
    Skipped individuals never appear in it, so relationships touching them
    are dropped.
    """
    persons_to_insert: list[PersonInsert] = field(default_factory=list)
    persons_to_update: list[PersonUpdate] = field(default_factory=list)
    gedcom_id_to_person_id: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    families: list[GedcomFamily] = field(default_factory=list)


def _index_decisions(
    decisions: Iterable[ResolutionDecision | dict] | None,
) -> dict[str, ResolutionDecision]:
    indexed: dict[str, ResolutionDecision] = {}
    for decision in decisions or []:
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
        indexed[decision.gedcom_id] = decision
    return indexed


def prepare_import_data(
    preview: PreviewSession,
    decisions: Iterable[ResolutionDecision | dict] | None,
    user_id: int,
    selected_ids: Iterable[str] | None = None,
) -> ImportPlan:
    """
    Apply resolution decisions to a preview.

    Individuals without a decision are imported as new. When
    ``selected_ids`` is given, everyone outside it is skipped.
    """
    by_gedcom_id = _index_decisions(decisions)
    selected = set(selected_ids) if selected_ids is not None else None
    plan = ImportPlan(families=list(preview.families))

    for preview_individual in preview.individuals:
        gedcom_id = preview_individual.gedcom_id
        record = preview.records.get(gedcom_id)
        if record is None:
            continue

        if selected is not None and gedcom_id not in selected:
            plan.skipped.append(gedcom_id)
            continue

        decision = by_gedcom_id.get(gedcom_id)
        resolution = decision.resolution if decision else Resolution.IMPORT_AS_NEW.value

        if resolution == Resolution.SKIP.value:
            plan.skipped.append(gedcom_id)
        elif resolution == Resolution.MERGE.value:
            plan.persons_to_update.append(PersonUpdate(
                gedcom_id=gedcom_id,
                person_id=decision.existing_person_id,
                person=map_person_to_schema(record, user_id),
            ))
            plan.gedcom_id_to_person_id[gedcom_id] = decision.existing_person_id
        else:
            plan.persons_to_insert.append(PersonInsert(
                gedcom_id=gedcom_id,
                person=map_person_to_schema(record, user_id),
            ))

    return plan


def build_relationships_from_families(
    families: Iterable[GedcomFamily],
    gedcom_id_to_person_id: dict[str, int],
    user_id: int,
) -> list[StoredRelationship]:
    """
    Relationship rows for a set of families.

    A couple yields two spouse rows (one per direction); each parent yields
    one parentOf row per child. References missing from the id map are
    dropped, and rows with the same natural key collapse to one, so a
    family repeated in the file produces nothing new.
    """
    relationships: dict[tuple, StoredRelationship] = {}

    def add(person1: int, person2: int, rel_type: RelationshipType, role: ParentRole | None = None):
        if person1 == person2:
            return
        relationship = StoredRelationship(
            person1_id=person1,
            person2_id=person2,
            type=rel_type,
            parent_role=role,
            user_id=user_id,
        )
        relationships.setdefault(relationship.natural_key, relationship)

    for family in families:
        husband = gedcom_id_to_person_id.get(family.husband) if family.husband else None
        wife = gedcom_id_to_person_id.get(family.wife) if family.wife else None

        if husband is not None and wife is not None:
            add(husband, wife, RelationshipType.SPOUSE)
            add(wife, husband, RelationshipType.SPOUSE)

        for child_gedcom_id in family.children:
            child = gedcom_id_to_person_id.get(child_gedcom_id)
            if child is None:
                continue
            if husband is not None:
                add(husband, child, RelationshipType.PARENT_OF, ParentRole.FATHER)
            if wife is not None:
                add(wife, child, RelationshipType.PARENT_OF, ParentRole.MOTHER)

    return list(relationships.values())


# =============================================================================
# Execution
# =============================================================================

class GedcomImporter:
    """Writes import plans to a FamilyTreeDatabase."""

    def __init__(self, database: FamilyTreeDatabase):
        self.database = database

    def run(
        self,
        preview: PreviewSession,
        decisions: Iterable[ResolutionDecision | dict] | None,
        user_id: int,
        selected_ids: Iterable[str] | None = None,
    ) -> ImportResult:
        """
        Import a preview in a single transaction.

        Raises ImportFailedError (after rollback) on any storage failure;
        there is never a partial result.
        """
        plan = prepare_import_data(preview, decisions, user_id, selected_ids)
        return self.execute(plan, user_id)

    def execute(self, plan: ImportPlan, user_id: int) -> ImportResult:
        mapping = dict(plan.gedcom_id_to_person_id)
        result = ImportResult()

        try:
            with self.database.transaction() as tx:
                for update in plan.persons_to_update:
                    if not tx.update_person(update.person_id, update.person, user_id):
                        raise ImportFailedError(
                            f"Existing person {update.person_id} not found for {update.gedcom_id}",
                            code=ErrorCode.CONSTRAINT_VIOLATION,
                            can_retry=False,
                        )
                    result.updated += 1

                for insert in plan.persons_to_insert:
                    mapping[insert.gedcom_id] = tx.insert_person(insert.person, user_id)
                    result.persons += 1

                for relationship in build_relationships_from_families(plan.families, mapping, user_id):
                    if tx.insert_relationship(relationship):
                        result.relationships += 1
        except ImportFailedError:
            logger.warning("Import rolled back", exc_info=True)
            raise
        except Exception as e:
            logger.error("Import rolled back: %s", e)
            raise ImportFailedError.from_exception(e) from e

        logger.info(
            "Imported %d people, merged %d, created %d relationships (skipped %d)",
            result.persons, result.updated, result.relationships, len(plan.skipped),
        )
        return result
