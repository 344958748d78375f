"""
Error taxonomy and error-log export for GEDCOM imports.

Top-level failures (unreadable file, unsupported version, storage
transaction failure) are exceptions. Field- and reference-scoped problems
are ImportIssue records collected alongside the parse result so the user can
download them as a CSV error log.
"""

from __future__ import annotations

import csv
import io
import re
from enum import Enum
from typing import Iterable

from familytree_import.core.models import ImportIssue, Severity


class ErrorCode(str, Enum):
    """Codes for the different kinds of import failures."""
    UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"
    PARSE_ERROR = "PARSE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    VALIDATION_WARNING = "VALIDATION_WARNING"
    PARTIAL_DATE = "PARTIAL_DATE"
    MALFORMED_LINE = "MALFORMED_LINE"
    INVALID_LEVEL = "INVALID_LEVEL"
    ORPHANED_REFERENCE = "ORPHANED_REFERENCE"
    DUPLICATE_ID = "DUPLICATE_ID"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


CSV_HEADERS = ["Severity", "Line", "GEDCOM ID", "Name", "Field", "Error", "Suggested Fix"]


# =============================================================================
# Exceptions
# =============================================================================

class FamilyTreeImportError(Exception):
    """Base class for all import/export failures."""


class GedcomParseError(FamilyTreeImportError):
    """The file cannot be parsed at all (unreadable or unsupported version)."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.PARSE_ERROR):
        super().__init__(message)
        self.code = code


class PreviewNotFoundError(FamilyTreeImportError):
    """No preview session (or no such person in it)."""


class InvalidResolutionError(FamilyTreeImportError):
    """A resolution decision was rejected before being stored."""


class ImportInProgressError(FamilyTreeImportError):
    """The preview is already being imported, or has been imported."""


class ImportFailedError(FamilyTreeImportError):
    """The import transaction failed and was rolled back."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: str | None = None,
        can_retry: bool = True,
    ):
        super().__init__(message)
        self.code = code
        self.details = details
        self.can_retry = can_retry

    @classmethod
    def from_exception(cls, exc: Exception) -> ImportFailedError:
        """Classify a storage exception into an actionable import failure."""
        text = str(exc)
        if "UNIQUE constraint" in text:
            return cls(
                "Database constraint violation: Duplicate record detected",
                code=ErrorCode.CONSTRAINT_VIOLATION,
                details=text,
            )
        if "FOREIGN KEY constraint" in text:
            return cls(
                "Database constraint violation: Invalid relationship reference",
                code=ErrorCode.CONSTRAINT_VIOLATION,
                details=text,
            )
        if "timeout" in text.lower() or "database is locked" in text:
            return cls(
                "Import timed out - please try again. Large imports may take several minutes.",
                code=ErrorCode.TIMEOUT_ERROR,
                details=text,
            )
        return cls(f"Import failed: {text}", code=ErrorCode.UNKNOWN_ERROR, details=text)


# =============================================================================
# Issue factories
# =============================================================================

def create_import_error(
    message: str,
    code: ErrorCode | str = ErrorCode.UNKNOWN_ERROR,
    line: int | None = None,
    gedcom_id: str | None = None,
    individual_name: str | None = None,
    field: str | None = None,
    suggested_fix: str | None = None,
) -> ImportIssue:
    """Create an Error-severity issue."""
    return ImportIssue(
        severity=Severity.ERROR,
        code=ErrorCode(code).value,
        message=message,
        line=line,
        gedcom_id=gedcom_id,
        individual_name=individual_name,
        field=field,
        suggested_fix=suggested_fix,
    )


def create_validation_warning(
    message: str,
    code: ErrorCode | str = ErrorCode.VALIDATION_WARNING,
    line: int | None = None,
    gedcom_id: str | None = None,
    individual_name: str | None = None,
    field: str | None = None,
    suggested_fix: str | None = None,
) -> ImportIssue:
    """Create a Warning-severity (non-fatal) issue."""
    return ImportIssue(
        severity=Severity.WARNING,
        code=ErrorCode(code).value,
        message=message,
        line=line,
        gedcom_id=gedcom_id,
        individual_name=individual_name,
        field=field,
        suggested_fix=suggested_fix,
    )


def format_error_message(issue: ImportIssue) -> str:
    """
    Format an issue as a multi-line, user-facing message.

    Example:
        Import failed at individual #45
        Line 234 in GEDCOM file
        Individual: John Smith (@I045@)
        Field: birthDate
        Error: Could not parse date "Spring 1850"
        Suggested fix: Use YYYY-MM-DD format
    """
    parts = []

    if issue.gedcom_id:
        number = re.sub(r"[@IF]", "", issue.gedcom_id).lstrip("0")
        parts.append(f"Import failed at individual #{number}")

    if issue.line:
        parts.append(f"Line {issue.line} in GEDCOM file")

    if issue.individual_name and issue.gedcom_id:
        parts.append(f"Individual: {issue.individual_name} ({issue.gedcom_id})")
    elif issue.individual_name:
        parts.append(f"Individual: {issue.individual_name}")
    elif issue.gedcom_id:
        parts.append(f"GEDCOM ID: {issue.gedcom_id}")

    if issue.field:
        parts.append(f"Field: {issue.field}")

    if issue.code == ErrorCode.CONSTRAINT_VIOLATION.value:
        parts.append(f"Database constraint violation: {issue.message}")
    else:
        parts.append(f"Error: {issue.message}")

    if issue.suggested_fix:
        parts.append(f"Suggested fix: {issue.suggested_fix}")

    return "\n".join(parts)


def generate_error_log_csv(issues: Iterable[ImportIssue]) -> str:
    """Render issues as an RFC 4180 CSV error log."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL)
    writer.writerow(CSV_HEADERS)

    for issue in issues:
        writer.writerow([
            issue.severity.value,
            "" if issue.line is None else str(issue.line),
            issue.gedcom_id or "",
            issue.individual_name or "",
            issue.field or "",
            issue.message or "",
            issue.suggested_fix or "",
        ])

    return buffer.getvalue()


def split_issues(issues: Iterable[ImportIssue]) -> tuple[list[ImportIssue], list[ImportIssue]]:
    """Split issues into (errors, warnings)."""
    errors: list[ImportIssue] = []
    warnings: list[ImportIssue] = []
    for issue in issues:
        (errors if issue.is_error else warnings).append(issue)
    return errors, warnings
