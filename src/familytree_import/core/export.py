"""
GEDCOM export of stored people and relationships.

Produces a complete GEDCOM 5.5.1 or 7.0 file:
- HEAD with GEDC/VERS, CHAR, SOUR, DATE and a SUBM pointer
- One INDI per person (``@I<id>@``)
- One FAM per spouse pair with their shared children
- Single-parent FAMs for children whose parents are not a couple
- TRLR
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

from familytree_import.core.gedcom import GedcomLine
from familytree_import.core.models import (
    ParentRole,
    RelationshipType,
    StoredPerson,
    StoredRelationship,
)

logger = logging.getLogger(__name__)

EXPORT_VERSIONS = ("5.5.1", "7.0")
DEFAULT_SUBMITTER = "FamilyTree App"

MONTH_ABBREVIATIONS = [
    "JAN", "FEB", "MAR", "APR", "MAY", "JUN",
    "JUL", "AUG", "SEP", "OCT", "NOV", "DEC",
]

SUBMITTER_ID = "@S1@"


# =============================================================================
# Field formatting
# =============================================================================

def format_gedcom_name(first_name: str | None, last_name: str | None) -> str:
    """"John Robert", "Smith" -> "John Robert /Smith/"."""
    first = (first_name or "").strip()
    last = (last_name or "").strip()

    if not first and not last:
        return ""
    if not last:
        return first
    if not first:
        return f"/{last}/"
    return f"{first} /{last}/"


def format_gedcom_gender(gender: str | None) -> str:
    if not gender:
        return "U"
    normalized = gender.lower()
    if normalized == "male":
        return "M"
    if normalized == "female":
        return "F"
    return "U"


def format_gedcom_date(value: str | None) -> str | None:
    """
    ISO date -> GEDCOM date.

    "1950-01-15" -> "15 JAN 1950"; "1950-01" and "1950-01-00" -> "JAN 1950";
    "1950" and "1950-00-00" -> "1950". Unrecognised input returns None.
    """
    if not value:
        return None

    parts = value.strip().split("-")
    if not parts[0].isdigit() or len(parts) > 3:
        return None
    year = parts[0]

    try:
        month = int(parts[1]) if len(parts) > 1 else 0
        day = int(parts[2]) if len(parts) > 2 else 0
    except ValueError:
        return None

    if month == 0:
        return year
    if not 1 <= month <= 12:
        return None
    if day == 0:
        return f"{MONTH_ABBREVIATIONS[month - 1]} {year}"
    return f"{day} {MONTH_ABBREVIATIONS[month - 1]} {year}"


def format_gedcom_id(prefix: str, number: int | str) -> str:
    return f"@{prefix}{number}@"


def export_filename(export_date: date | None = None) -> str:
    """``familytree_YYYYMMDD.ged``."""
    export_date = export_date or date.today()
    return f"familytree_{export_date.strftime('%Y%m%d')}.ged"


def _text_lines(level: int, tag: str, text: str) -> list[GedcomLine]:
    """A text value, continued with CONT for embedded newlines."""
    first, *rest = text.splitlines() or [""]
    lines = [GedcomLine(level=level, tag=tag, value=first)]
    for continuation in rest:
        lines.append(GedcomLine(level=level + 1, tag="CONT", value=continuation))
    return lines


# =============================================================================
# Records
# =============================================================================

def build_header(
    version: str = "5.5.1",
    submitter: str = DEFAULT_SUBMITTER,
    export_date: date | None = None,
) -> list[GedcomLine]:
    """HEAD and SUBM records."""
    export_date = export_date or date.today()

    lines = [
        GedcomLine(level=0, tag="HEAD"),
        GedcomLine(level=1, tag="GEDC"),
        GedcomLine(level=2, tag="VERS", value=version),
    ]
    if version == "5.5.1":
        lines.append(GedcomLine(level=2, tag="FORM", value="LINEAGE-LINKED"))
    lines.extend([
        GedcomLine(level=1, tag="CHAR", value="UTF-8"),
        GedcomLine(level=1, tag="SOUR", value=DEFAULT_SUBMITTER),
        GedcomLine(level=1, tag="DATE", value=format_gedcom_date(export_date.isoformat())),
        GedcomLine(level=1, tag="SUBM", value=SUBMITTER_ID),
        GedcomLine(level=0, xref=SUBMITTER_ID, tag="SUBM"),
        GedcomLine(level=1, tag="NAME", value=submitter or "Unknown"),
    ])
    return lines


def build_individual(person: StoredPerson, gedcom_id: str) -> list[GedcomLine]:
    """INDI record lines for one stored person (FAMC/FAMS appended later)."""
    lines = [
        GedcomLine(level=0, xref=gedcom_id, tag="INDI"),
        GedcomLine(level=1, tag="NAME", value=format_gedcom_name(person.first_name, person.last_name)),
    ]
    if person.first_name:
        lines.append(GedcomLine(level=2, tag="GIVN", value=person.first_name.strip()))
    if person.last_name:
        lines.append(GedcomLine(level=2, tag="SURN", value=person.last_name.strip()))

    lines.append(GedcomLine(level=1, tag="SEX", value=format_gedcom_gender(person.gender)))

    for tag, event_date, place in (
        ("BIRT", person.birth_date, person.birth_place),
        ("DEAT", person.death_date, person.death_place),
    ):
        formatted = format_gedcom_date(event_date)
        if not formatted and not place:
            continue
        lines.append(GedcomLine(level=1, tag=tag))
        if formatted:
            lines.append(GedcomLine(level=2, tag="DATE", value=formatted))
        if place:
            lines.append(GedcomLine(level=2, tag="PLAC", value=place))

    if person.notes:
        lines.extend(_text_lines(1, "NOTE", person.notes))

    if person.photo_url:
        lines.append(GedcomLine(level=1, tag="OBJE"))
        lines.append(GedcomLine(level=2, tag="FILE", value=person.photo_url))

    return lines


class _Family:
    """A FAM under construction."""

    def __init__(self, husband: int | None, wife: int | None):
        self.husband = husband
        self.wife = wife
        self.children: list[int] = []

    def add_child(self, child_id: int) -> None:
        if child_id not in self.children:
            self.children.append(child_id)


def _spouse_order(
    a: int,
    b: int,
    people: dict[int, StoredPerson],
    roles: dict[int, ParentRole],
) -> tuple[int, int]:
    """(husband, wife) for a spouse pair."""
    if roles.get(a) == ParentRole.FATHER or roles.get(b) == ParentRole.MOTHER:
        return a, b
    if roles.get(b) == ParentRole.FATHER or roles.get(a) == ParentRole.MOTHER:
        return b, a

    gender_a = (people[a].gender or "").lower()
    gender_b = (people[b].gender or "").lower()
    if gender_a == "male" or gender_b == "female":
        return a, b
    if gender_b == "male" or gender_a == "female":
        return b, a
    return (a, b) if a < b else (b, a)


def group_families(
    people: Iterable[StoredPerson],
    relationships: Iterable[StoredRelationship],
) -> list[_Family]:
    """
    Rebuild families from relationship rows.

    Each distinct spouse pair is one family; a child goes to the family of
    its two parents when they are a couple, otherwise to a single-parent
    family per parent.
    """
    people_by_id = {p.id: p for p in people if p.id is not None}
    relationships = [
        r for r in relationships
        if r.person1_id in people_by_id and r.person2_id in people_by_id
    ]

    parents_of: dict[int, list[tuple[int, ParentRole | None]]] = {}
    roles: dict[int, ParentRole] = {}
    for rel in relationships:
        if rel.type != RelationshipType.PARENT_OF:
            continue
        entry = (rel.person1_id, rel.parent_role)
        if entry not in parents_of.setdefault(rel.person2_id, []):
            parents_of[rel.person2_id].append(entry)
        if rel.parent_role:
            roles.setdefault(rel.person1_id, rel.parent_role)

    families: dict[frozenset, _Family] = {}
    for rel in relationships:
        if rel.type != RelationshipType.SPOUSE or rel.person1_id == rel.person2_id:
            continue
        key = frozenset((rel.person1_id, rel.person2_id))
        if key in families:
            continue
        husband, wife = _spouse_order(rel.person1_id, rel.person2_id, people_by_id, roles)
        families[key] = _Family(husband, wife)

    single_parent: dict[int, _Family] = {}
    for child_id, parents in parents_of.items():
        parent_ids = list(dict.fromkeys(pid for pid, _ in parents))

        if len(parent_ids) >= 2:
            key = frozenset(parent_ids[:2])
            if key in families:
                families[key].add_child(child_id)
                continue

        for parent_id, role in parents:
            family = single_parent.get(parent_id)
            if family is None:
                if role == ParentRole.MOTHER:
                    family = _Family(None, parent_id)
                else:
                    family = _Family(parent_id, None)
                single_parent[parent_id] = family
            family.add_child(child_id)

    return [*families.values(), *single_parent.values()]


def build_gedcom_file(
    people: Iterable[StoredPerson],
    relationships: Iterable[StoredRelationship],
    version: str = "5.5.1",
    export_date: date | None = None,
    submitter: str = DEFAULT_SUBMITTER,
) -> str:
    """Render stored people and relationships as a GEDCOM document."""
    if version not in EXPORT_VERSIONS:
        raise ValueError(f"Unsupported GEDCOM version: {version}")

    people = sorted(
        (p for p in people if p.id is not None),
        key=lambda p: p.id,
    )
    relationships = list(relationships)

    individuals: dict[int, list[GedcomLine]] = {
        person.id: build_individual(person, format_gedcom_id("I", person.id))
        for person in people
    }

    family_lines: list[GedcomLine] = []
    for number, family in enumerate(group_families(people, relationships), start=1):
        family_id = format_gedcom_id("F", number)
        family_lines.append(GedcomLine(level=0, xref=family_id, tag="FAM"))

        if family.husband is not None:
            family_lines.append(GedcomLine(level=1, tag="HUSB", value=format_gedcom_id("I", family.husband)))
            individuals[family.husband].append(GedcomLine(level=1, tag="FAMS", value=family_id))
        if family.wife is not None:
            family_lines.append(GedcomLine(level=1, tag="WIFE", value=format_gedcom_id("I", family.wife)))
            individuals[family.wife].append(GedcomLine(level=1, tag="FAMS", value=family_id))

        for child_id in family.children:
            family_lines.append(GedcomLine(level=1, tag="CHIL", value=format_gedcom_id("I", child_id)))
            individuals[child_id].append(GedcomLine(level=1, tag="FAMC", value=family_id))

    lines = build_header(version, submitter, export_date)
    for record in individuals.values():
        lines.extend(record)
    lines.extend(family_lines)
    lines.append(GedcomLine(level=0, tag="TRLR"))

    logger.debug(
        "Exported %d individuals, %d families as GEDCOM %s",
        len(individuals), sum(1 for line in family_lines if line.tag == "FAM"), version,
    )

    return "\n".join(line.to_string() for line in lines) + "\n"
