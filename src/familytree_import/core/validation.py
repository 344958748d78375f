"""
Relationship consistency checks for parsed GEDCOM data.

Families may reference individuals that are not in the file (exports cut
out of a larger tree, hand-edited files). Those references are stripped
here so nothing downstream dereferences a missing individual.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from familytree_import.core.errors import ErrorCode, create_validation_warning
from familytree_import.core.models import GedcomFamily, ImportIssue, ParsedGedcom

logger = logging.getLogger(__name__)


@dataclass
class OrphanCheck:
    """Result of validate_orphaned_references."""
    has_orphans: bool = False
    warnings: list[ImportIssue] = field(default_factory=list)
    cleaned_families: list[GedcomFamily] = field(default_factory=list)


def validate_orphaned_references(parsed: ParsedGedcom) -> OrphanCheck:
    """
    Strip family references to individuals that don't exist.

    Emits exactly one Warning per missing reference (husband, wife, or each
    missing child) and returns copies of the families with husband/wife
    nulled and missing children removed. Never fails the parse.
    """
    result = OrphanCheck()
    known_ids = {individual.id for individual in parsed.individuals}

    for family in parsed.families:
        cleaned = family.model_copy(deep=True)

        for role in ("husband", "wife"):
            ref = getattr(family, role)
            if ref and ref not in known_ids:
                result.warnings.append(create_validation_warning(
                    f"Orphaned {role} reference: Individual {ref} not found in family {family.id}",
                    code=ErrorCode.ORPHANED_REFERENCE,
                    line=family.line,
                    gedcom_id=family.id,
                    field=role,
                    suggested_fix=f"Remove invalid {role} reference or add missing individual {ref}",
                ))
                setattr(cleaned, role, None)

        valid_children = []
        for child_id in family.children:
            if child_id in known_ids:
                valid_children.append(child_id)
                continue
            result.warnings.append(create_validation_warning(
                f"Orphaned child reference: Individual {child_id} not found in family {family.id}",
                code=ErrorCode.ORPHANED_REFERENCE,
                line=family.line,
                gedcom_id=family.id,
                field="children",
                suggested_fix=f"Remove invalid child reference or add missing individual {child_id}",
            ))
        cleaned.children = valid_children

        result.cleaned_families.append(cleaned)

    result.has_orphans = bool(result.warnings)
    if result.has_orphans:
        logger.info("Stripped %d orphaned family references", len(result.warnings))

    return result


def apply_orphan_check(parsed: ParsedGedcom) -> tuple[ParsedGedcom, OrphanCheck]:
    """Return a copy of ``parsed`` with cleaned families and the warnings appended."""
    check = validate_orphaned_references(parsed)
    cleaned = parsed.model_copy(update={
        "families": check.cleaned_families,
        "errors": [*parsed.errors, *check.warnings],
    })
    return cleaned, check
