"""
FamilyTree GEDCOM Import

Parse GEDCOM 5.5.1 / 7.0 files, detect duplicates against an existing
family tree, review and resolve them, import, and export back to GEDCOM.
"""

__version__ = "0.1.0"

from familytree_import.core.models import (
    GedcomIndividual,
    GedcomFamily,
    ParsedGedcom,
    StoredPerson,
    StoredRelationship,
    DuplicateCandidate,
    ResolutionDecision,
    ImportIssue,
    ImportResult,
)
from familytree_import.core.gedcom import GedcomParser, parse_gedcom
from familytree_import.core.export import build_gedcom_file

__all__ = [
    "GedcomIndividual",
    "GedcomFamily",
    "ParsedGedcom",
    "StoredPerson",
    "StoredRelationship",
    "DuplicateCandidate",
    "ResolutionDecision",
    "ImportIssue",
    "ImportResult",
    "GedcomParser",
    "parse_gedcom",
    "build_gedcom_file",
]
