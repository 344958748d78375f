"""Core models, parsing, validation and export."""

from familytree_import.core.models import (
    Severity,
    Resolution,
    RelationshipType,
    ParentRole,
    DateModifier,
    ImportIssue,
    GedcomIndividual,
    GedcomFamily,
    ParsedGedcom,
    StoredPerson,
    StoredRelationship,
    DuplicateCandidate,
    ResolutionDecision,
    PreviewSession,
    ImportResult,
)
from familytree_import.core.errors import (
    ErrorCode,
    FamilyTreeImportError,
    GedcomParseError,
    PreviewNotFoundError,
    InvalidResolutionError,
    ImportInProgressError,
    ImportFailedError,
    generate_error_log_csv,
)
from familytree_import.core.gedcom import GedcomParser, normalize_date, parse_gedcom
from familytree_import.core.validation import validate_orphaned_references
from familytree_import.core.export import build_gedcom_file

__all__ = [
    "Severity",
    "Resolution",
    "RelationshipType",
    "ParentRole",
    "DateModifier",
    "ImportIssue",
    "GedcomIndividual",
    "GedcomFamily",
    "ParsedGedcom",
    "StoredPerson",
    "StoredRelationship",
    "DuplicateCandidate",
    "ResolutionDecision",
    "PreviewSession",
    "ImportResult",
    "ErrorCode",
    "FamilyTreeImportError",
    "GedcomParseError",
    "PreviewNotFoundError",
    "InvalidResolutionError",
    "ImportInProgressError",
    "ImportFailedError",
    "generate_error_log_csv",
    "GedcomParser",
    "normalize_date",
    "parse_gedcom",
    "validate_orphaned_references",
    "build_gedcom_file",
]
