"""
Plausibility rules for linking an existing person as someone's parent.

A candidate parent is rejected when they are the child, an ancestor or a
descendant of the child, or too young. The age rule: the parent must be
born strictly more than 12 complete years before the child. A missing
birth date on either side cannot disprove a link, so it is allowed.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Iterable

from familytree_import.core.models import RelationshipType, StoredPerson, StoredRelationship

if TYPE_CHECKING:
    from familytree_import.storage.database import FamilyTreeDatabase

MIN_PARENT_AGE_DIFFERENCE = 13


def _parse_partial_date(value: str) -> tuple[int, int | None, int | None] | None:
    parts = value.strip().split("-")
    try:
        year = int(parts[0])
        month = int(parts[1]) if len(parts) > 1 and int(parts[1]) else None
        day = int(parts[2]) if len(parts) > 2 and int(parts[2]) else None
    except ValueError:
        return None
    return year, month, day


def complete_years_between(earlier: str, later: str) -> int | None:
    """
    Complete years from ``earlier`` to ``later`` (ISO, possibly partial).

    Full dates count anniversaries; if either side lacks month or day the
    difference in years is used.
    """
    a = _parse_partial_date(earlier)
    b = _parse_partial_date(later)
    if a is None or b is None:
        return None

    years = b[0] - a[0]
    if None in (a[1], a[2], b[1], b[2]):
        return years

    if (b[1], b[2]) < (a[1], a[2]):
        years -= 1
    return years


def is_valid_parent_by_age(parent_birth: str | None, child_birth: str | None) -> bool:
    """True when the parent is at least 13 complete years older, or either date is unknown."""
    if not parent_birth or not child_birth:
        return True

    gap = complete_years_between(parent_birth, child_birth)
    if gap is None:
        return True
    return gap >= MIN_PARENT_AGE_DIFFERENCE


def _parent_edges(relationships: Iterable[StoredRelationship]) -> list[tuple[int, int]]:
    return [
        (r.person1_id, r.person2_id)
        for r in relationships
        if r.type == RelationshipType.PARENT_OF
    ]


def find_descendants(person_id: int, relationships: Iterable[StoredRelationship]) -> set[int]:
    """All people reachable through parentOf edges going down."""
    children: dict[int, list[int]] = {}
    for parent, child in _parent_edges(relationships):
        children.setdefault(parent, []).append(child)
    return _reachable(person_id, children)


def find_ancestors(person_id: int, relationships: Iterable[StoredRelationship]) -> set[int]:
    """All people reachable through parentOf edges going up."""
    parents: dict[int, list[int]] = {}
    for parent, child in _parent_edges(relationships):
        parents.setdefault(child, []).append(parent)
    return _reachable(person_id, parents)


def _reachable(start: int, edges: dict[int, list[int]]) -> set[int]:
    seen: set[int] = set()
    queue = deque(edges.get(start, []))
    while queue:
        current = queue.popleft()
        if current in seen or current == start:
            continue
        seen.add(current)
        queue.extend(edges.get(current, []))
    return seen


def filter_parent_candidates(
    child: StoredPerson,
    candidates: Iterable[StoredPerson],
    relationships: Iterable[StoredRelationship],
) -> list[StoredPerson]:
    """Candidates that could plausibly be a parent of ``child``."""
    relationships = list(relationships)
    excluded = {child.id}
    if child.id is not None:
        excluded |= find_ancestors(child.id, relationships)
        excluded |= find_descendants(child.id, relationships)

    return [
        person
        for person in candidates
        if person.id not in excluded
        and is_valid_parent_by_age(person.birth_date, child.birth_date)
    ]


def suggest_parents(database: FamilyTreeDatabase, child_id: int, user_id: int) -> list[StoredPerson]:
    """Stored people that could be linked as parents of ``child_id``."""
    child = database.get_person(child_id, user_id)
    if child is None:
        return []
    return filter_parent_candidates(
        child,
        database.list_people(user_id),
        database.list_relationships(user_id),
    )
