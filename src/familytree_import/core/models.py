"""
Core data models for GEDCOM import and export.

Two families of models live here:
- Ephemeral GEDCOM records produced by the parser (individuals, families)
- Stored records owned by the family-tree database (people, relationships)

Everything that crosses the HTTP boundary serialises with camelCase aliases
(``gedcomId``, ``existingPersonId``) and accepts either spelling on input.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Severity(str, Enum):
    """Import issue severity."""
    ERROR = "Error"
    WARNING = "Warning"


class Resolution(str, Enum):
    """How a duplicate candidate should be handled at import time."""
    MERGE = "merge"
    IMPORT_AS_NEW = "import_as_new"
    SKIP = "skip"


class RelationshipType(str, Enum):
    SPOUSE = "spouse"
    PARENT_OF = "parentOf"


class ParentRole(str, Enum):
    MOTHER = "mother"
    FATHER = "father"


class DateModifier(str, Enum):
    """GEDCOM date modifiers."""
    ABOUT = "ABT"
    BEFORE = "BEF"
    AFTER = "AFT"
    BETWEEN = "BET"
    CALCULATED = "CAL"
    ESTIMATED = "EST"


# =============================================================================
# Import issues
# =============================================================================

class ImportIssue(CamelModel):
    """
    A single error or warning raised while parsing, validating or importing.

    Carries enough context to be actionable: where it happened (line,
    gedcomId, individual, field) and what to do about it (suggested fix).
    """
    severity: Severity = Severity.WARNING
    code: str
    message: str
    line: int | None = None
    gedcom_id: str | None = None
    individual_name: str | None = None
    field: str | None = None
    suggested_fix: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


# =============================================================================
# GEDCOM records (ephemeral, produced by the parser)
# =============================================================================

class DateError(CamelModel):
    """Per-field date parse failure kept on the individual."""
    field: str
    original: str
    error: str


class MediaReference(CamelModel):
    """OBJE sub-structure: only the reference is kept, never the binary."""
    file: str
    form: str | None = None
    title: str | None = None


class GedcomIndividual(CamelModel):
    """
    An INDI record.

    Dates are ISO strings: ``YYYY-MM-DD`` or a best-effort partial value
    (``YYYY`` / ``YYYY-MM``) when the source date was imprecise.
    """
    id: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    sex: str | None = None

    birth_date: str | None = None
    birth_date_modifier: DateModifier | None = None
    birth_place: str | None = None
    death_date: str | None = None
    death_date_modifier: DateModifier | None = None
    death_place: str | None = None

    child_of_family: str | None = None  # First FAMC
    spouse_families: list[str] = Field(default_factory=list)  # FAMS

    photo_url: str | None = None
    media: list[MediaReference] = Field(default_factory=list)

    line: int | None = None
    date_errors: list[DateError] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        """Full name without GEDCOM slashes."""
        joined = f"{self.first_name or ''} {self.last_name or ''}".strip()
        if joined:
            return joined
        if self.name:
            return self.name.replace("/", "").strip()
        return ""


class GedcomFamily(CamelModel):
    """
    A FAM record.

    ``children`` keeps file order and may contain duplicates or references
    to individuals that do not exist; the validator cleans those up.
    """
    id: str
    husband: str | None = None
    wife: str | None = None
    children: list[str] = Field(default_factory=list)
    marriage_date: str | None = None
    line: int | None = None


class RelationshipIssue(CamelModel):
    """FAMC/FAMS back-reference that disagrees with the family record."""
    type: Literal["child-family-mismatch", "spouse-family-mismatch"]
    description: str
    affected_ids: list[str] = Field(default_factory=list)


class ParsedGedcom(CamelModel):
    """Result of parsing one GEDCOM file."""
    success: bool = True
    version: str | None = None
    individuals: list[GedcomIndividual] = Field(default_factory=list)
    families: list[GedcomFamily] = Field(default_factory=list)
    errors: list[ImportIssue] = Field(default_factory=list)
    error: str | None = None  # Top-level failure message

    def individual(self, gedcom_id: str) -> GedcomIndividual | None:
        for individual in self.individuals:
            if individual.id == gedcom_id:
                return individual
        return None

    def family(self, family_id: str) -> GedcomFamily | None:
        for family in self.families:
            if family.id == family_id:
                return family
        return None


# =============================================================================
# Stored records (owned by the family-tree database)
# =============================================================================

class StoredPerson(CamelModel):
    """A person row in the family-tree database."""
    id: int | None = None
    first_name: str = ""
    last_name: str = ""
    gender: str | None = None  # male, female, other, unspecified
    birth_date: str | None = None
    birth_place: str | None = None
    death_date: str | None = None
    death_place: str | None = None
    photo_url: str | None = None
    notes: str | None = None
    user_id: int | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class StoredRelationship(CamelModel):
    """
    A relationship row.

    ``spouse`` rows exist as symmetric pairs. ``parentOf`` rows are directed
    parent -> child and always carry a parent role.
    """
    id: int | None = None
    person1_id: int
    person2_id: int
    type: RelationshipType
    parent_role: ParentRole | None = None
    user_id: int | None = None

    @model_validator(mode="after")
    def validate_role(self) -> "StoredRelationship":
        if self.type == RelationshipType.PARENT_OF and self.parent_role is None:
            raise ValueError("parentOf relationships require a parent role")
        if self.type == RelationshipType.SPOUSE and self.parent_role is not None:
            raise ValueError("spouse relationships cannot carry a parent role")
        return self

    @property
    def natural_key(self) -> tuple[int, int, str, str | None, int | None]:
        """Identity used for de-duplication, independent of the row id."""
        return (
            self.person1_id,
            self.person2_id,
            self.type.value,
            self.parent_role.value if self.parent_role else None,
            self.user_id,
        )


# =============================================================================
# Duplicate detection and resolution
# =============================================================================

class PersonSummary(CamelModel):
    """Compact person reference used in duplicate candidates."""
    id: str | int
    name: str
    birth_date: str | None = None


class DuplicateCandidate(CamelModel):
    """A (GEDCOM individual, stored person) pair flagged as a possible match."""
    gedcom_person: PersonSummary
    existing_person: PersonSummary
    confidence: int = Field(ge=0, le=100)
    matching_fields: dict[str, bool] = Field(default_factory=dict)


class ResolutionDecision(CamelModel):
    """User decision for one GEDCOM individual."""
    gedcom_id: str
    resolution: str
    existing_person_id: int | None = None

    @field_validator("resolution", mode="before")
    @classmethod
    def normalize_resolution(cls, v: Any) -> Any:
        if isinstance(v, Resolution):
            return v.value
        return v

    @property
    def is_valid(self) -> bool:
        return self.resolution in {r.value for r in Resolution}


# =============================================================================
# Preview session
# =============================================================================

class DuplicateMatch(CamelModel):
    existing_person_id: int | str
    confidence: int
    matching_fields: dict[str, bool] = Field(default_factory=dict)


class PreviewIndividual(CamelModel):
    """An individual as shown in the import preview."""
    gedcom_id: str
    name: str
    first_name: str | None = None
    last_name: str | None = None
    birth_date: str | None = None
    death_date: str | None = None
    sex: str | None = None
    status: Literal["new", "duplicate"] = "new"
    duplicate_match: DuplicateMatch | None = None


class PreviewSummary(CamelModel):
    total_individuals: int = 0
    new_count: int = 0
    duplicate_count: int = 0
    existing_count: int = 0


class PreviewSession(BaseModel):
    """Everything kept for one (upload, user) between parse and import."""
    upload_id: str
    user_id: int
    version: str | None = None
    individuals: list[PreviewIndividual] = Field(default_factory=list)
    records: dict[str, GedcomIndividual] = Field(default_factory=dict)
    families: list[GedcomFamily] = Field(default_factory=list)
    duplicates: list[DuplicateCandidate] = Field(default_factory=list)
    existing_people: dict[int, StoredPerson] = Field(default_factory=dict)  # Matched rows only
    errors: list[ImportIssue] = Field(default_factory=list)
    summary: PreviewSummary = Field(default_factory=PreviewSummary)
    resolution_decisions: list[ResolutionDecision] = Field(default_factory=list)
    consumed: bool = False
    importing: bool = False


class ImportResult(CamelModel):
    """Counts reported after a committed import."""
    persons: int = 0
    updated: int = 0
    relationships: int = 0
