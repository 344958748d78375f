"""
Duplicate detection between GEDCOM individuals and stored people.

Weighted scoring:
- Name: 50% (fuzzy)
- Birth date: 30% (exact or partial-precision aware)
- Birth place: 10% (fuzzy, token order insensitive)
- Gender: 10% (exact)

Detection is a plain O(new x existing) batch; nothing is cached between
calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from rapidfuzz import fuzz

from familytree_import.core.models import (
    DuplicateCandidate,
    GedcomIndividual,
    PersonSummary,
    StoredPerson,
)

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 70
FIELD_MATCH_THRESHOLD = 70

WEIGHTS = {
    "name": 0.5,
    "birthDate": 0.3,
    "birthPlace": 0.1,
    "gender": 0.1,
}

_SEX_TO_GENDER = {"M": "male", "F": "female"}


def compare_names(name1: str | None, name2: str | None) -> float:
    """Similarity of two names, 0-100. Case and surrounding space are ignored."""
    if not name1 or not name2:
        return 0.0

    n1 = " ".join(name1.lower().split())
    n2 = " ".join(name2.lower().split())

    if n1 == n2:
        return 100.0

    return float(fuzz.ratio(n1, n2))


def compare_dates(date1: str | None, date2: str | None) -> float:
    """
    Similarity of two ISO (possibly partial) dates, 0-100.

    - Exact match: 100
    - Same year and one side lacks the month (or day): 100
    - Same year and month, different day: 75
    - Same year, different month: 50
    - Different year or missing: 0
    """
    if not date1 or not date2:
        return 0.0

    d1 = date1.strip()
    d2 = date2.strip()
    if d1 == d2:
        return 100.0

    parts1 = d1.split("-")
    parts2 = d2.split("-")

    if parts1[0] != parts2[0]:
        return 0.0

    month1 = _date_part(parts1, 1)
    month2 = _date_part(parts2, 1)
    if not month1 or not month2:
        return 100.0

    if month1 != month2:
        return 50.0

    day1 = _date_part(parts1, 2)
    day2 = _date_part(parts2, 2)
    if not day1 or not day2:
        return 100.0

    return 75.0


def _date_part(parts: list[str], index: int) -> str | None:
    if len(parts) <= index:
        return None
    value = parts[index]
    return None if value in ("", "0", "00") else value


def compare_places(place1: str | None, place2: str | None) -> float:
    """Similarity of two place strings, 0-100."""
    if not place1 or not place2:
        return 0.0
    return float(fuzz.token_sort_ratio(place1.lower(), place2.lower()))


def compare_gender(sex: str | None, gender: str | None) -> float:
    """100 when a GEDCOM sex code and a stored gender agree, else 0."""
    if not sex or not gender:
        return 0.0
    mapped = _SEX_TO_GENDER.get(sex.upper())
    if mapped is None:
        return 0.0
    return 100.0 if mapped == gender.lower() else 0.0


@dataclass
class MatchResult:
    """Scores for one (GEDCOM individual, stored person) pair."""
    confidence: int = 0
    scores: dict[str, float] = field(default_factory=dict)
    matching_fields: dict[str, bool] = field(default_factory=dict)


def gedcom_display_name(individual: GedcomIndividual) -> str:
    return individual.display_name


def calculate_match_confidence(
    individual: GedcomIndividual,
    existing: StoredPerson,
) -> MatchResult:
    """Weighted confidence that ``individual`` and ``existing`` are the same person."""
    scores = {
        "name": compare_names(gedcom_display_name(individual), existing.full_name),
        "birthDate": compare_dates(individual.birth_date, existing.birth_date),
        "birthPlace": compare_places(individual.birth_place, existing.birth_place),
        "gender": compare_gender(individual.sex, existing.gender),
    }

    total = sum(scores[name] * weight for name, weight in WEIGHTS.items())

    matching_fields = {
        "name": scores["name"] > FIELD_MATCH_THRESHOLD,
        "birthDate": scores["birthDate"] > FIELD_MATCH_THRESHOLD,
        "birthPlace": scores["birthPlace"] > FIELD_MATCH_THRESHOLD,
        "gender": scores["gender"] == 100.0,
    }

    return MatchResult(
        confidence=int(round(total)),
        scores=scores,
        matching_fields=matching_fields,
    )


def find_duplicates(
    individuals: Iterable[GedcomIndividual],
    existing_people: Iterable[StoredPerson],
    threshold: int = CONFIDENCE_THRESHOLD,
) -> list[DuplicateCandidate]:
    """
    Find stored people that likely match parsed individuals.

    Returns candidates with confidence >= ``threshold``, highest first.
    """
    existing = list(existing_people)
    if not existing:
        return []

    duplicates: list[DuplicateCandidate] = []

    for individual in individuals:
        for person in existing:
            match = calculate_match_confidence(individual, person)
            if match.confidence < threshold:
                continue
            duplicates.append(DuplicateCandidate(
                gedcom_person=PersonSummary(
                    id=individual.id,
                    name=gedcom_display_name(individual),
                    birth_date=individual.birth_date,
                ),
                existing_person=PersonSummary(
                    id=person.id if person.id is not None else "",
                    name=person.full_name,
                    birth_date=person.birth_date,
                ),
                confidence=match.confidence,
                matching_fields=match.matching_fields,
            ))

    duplicates.sort(key=lambda d: d.confidence, reverse=True)
    logger.debug("Found %d duplicate candidates", len(duplicates))
    return duplicates
