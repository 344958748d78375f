"""
GEDCOM 5.5.1 / 7.0 parsing.

Parsing is a three-stage pipeline:
- Tokenizer: one GedcomLine per physical line (level, xref, tag, value)
- Tree builder: level numbers -> nested GedcomNode records, built with an
  explicit stack so hostile nesting never recurses
- Extractor: INDI/FAM nodes -> GedcomIndividual/GedcomFamily models

Only structural failures (unreadable input, missing or unsupported version)
abort the parse. Everything else degrades the affected field and is
reported as an ImportIssue.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from familytree_import.core.errors import (
    ErrorCode,
    GedcomParseError,
    create_validation_warning,
)
from familytree_import.core.models import (
    DateError,
    DateModifier,
    GedcomFamily,
    GedcomIndividual,
    ImportIssue,
    MediaReference,
    ParsedGedcom,
    RelationshipIssue,
)

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = ("5.5.1", "7.0")

MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}

DATE_FIX = "Use YYYY-MM-DD or standard GEDCOM date format (DD MMM YYYY)"

_LINE_PATTERN = re.compile(r'^(\d+)\s+(?:(@[^@]+@)\s+)?(\S+)(?:\s+(.*))?$')
_ISO_DATE = re.compile(r'^(\d{4})-(\d{2})(?:-(\d{2}))?$')
_MODIFIER = re.compile(r'^(ABT|BEF|AFT|BET|CAL|EST)\s+(.+)$')


# =============================================================================
# Stage 1: tokenizer
# =============================================================================

@dataclass
class GedcomLine:
    """A single parsed GEDCOM line."""
    level: int
    tag: str
    value: str = ""
    xref: str | None = None  # @I123@ style ID
    line_number: int = 0

    @classmethod
    def parse(cls, line: str, line_number: int = 0) -> GedcomLine | None:
        """Parse a GEDCOM line.

        Pattern: level [xref] tag [value]
        Examples:
          0 @I1@ INDI
          1 NAME John /Smith/
          2 DATE 15 JAN 1862
        """
        line = line.strip()
        if not line:
            return None

        match = _LINE_PATTERN.match(line)
        if not match:
            return None

        return cls(
            level=int(match.group(1)),
            xref=match.group(2),
            tag=match.group(3).upper(),
            value=match.group(4) or "",
            line_number=line_number,
        )

    def to_string(self) -> str:
        """Convert back to GEDCOM format."""
        parts = [str(self.level)]
        if self.xref:
            parts.append(self.xref)
        parts.append(self.tag)
        if self.value:
            parts.append(self.value)
        return " ".join(parts)


def tokenize(content: str) -> tuple[list[GedcomLine], list[ImportIssue]]:
    """Split raw GEDCOM text into lines, reporting the ones that don't parse."""
    lines: list[GedcomLine] = []
    issues: list[ImportIssue] = []

    if content.startswith("\ufeff"):
        content = content[1:]

    for number, raw in enumerate(content.splitlines(), start=1):
        if not raw.strip():
            continue
        parsed = GedcomLine.parse(raw, number)
        if parsed is None:
            issues.append(create_validation_warning(
                f"Malformed GEDCOM line skipped: {raw.strip()[:80]}",
                code=ErrorCode.MALFORMED_LINE,
                line=number,
                suggested_fix="Each line must be: level [@xref@] TAG [value]",
            ))
            continue
        lines.append(parsed)

    return lines, issues


# =============================================================================
# Stage 2: tree builder
# =============================================================================

@dataclass
class GedcomNode:
    """A GEDCOM structure: one line plus its subordinate lines."""
    level: int
    tag: str
    value: str = ""
    xref: str | None = None
    line: int = 0
    children: list[GedcomNode] = field(default_factory=list)

    def first(self, tag: str) -> GedcomNode | None:
        for child in self.children:
            if child.tag == tag:
                return child
        return None

    def all(self, tag: str) -> list[GedcomNode]:
        return [child for child in self.children if child.tag == tag]

    def get_value(self, *path: str) -> str | None:
        """Get value at path like ('GEDC', 'VERS')."""
        node: GedcomNode | None = self
        for tag in path:
            node = node.first(tag) if node else None
        return node.value if node else None


def build_tree(lines: list[GedcomLine]) -> tuple[list[GedcomNode], list[ImportIssue]]:
    """Nest lines by level number into level-0 records."""
    records: list[GedcomNode] = []
    issues: list[ImportIssue] = []
    stack: list[GedcomNode] = []

    for line in lines:
        while stack and stack[-1].level >= line.level:
            stack.pop()

        if line.tag in ("CONC", "CONT") and line.level > 0:
            if stack:
                target = stack[-1]
                joiner = "\n" if line.tag == "CONT" else ""
                target.value = f"{target.value}{joiner}{line.value}"
            continue

        node = GedcomNode(
            level=line.level,
            tag=line.tag,
            value=line.value,
            xref=line.xref,
            line=line.line_number,
        )

        if line.level == 0:
            records.append(node)
            stack = [node]
            continue

        if not stack:
            issues.append(create_validation_warning(
                f"Line at level {line.level} has no enclosing record: {line.tag}",
                code=ErrorCode.INVALID_LEVEL,
                line=line.line_number,
                suggested_fix="Start every record with a level 0 line",
            ))
            continue

        parent = stack[-1]
        if line.level > parent.level + 1:
            issues.append(create_validation_warning(
                f"Level jumps from {parent.level} to {line.level} at {line.tag}",
                code=ErrorCode.INVALID_LEVEL,
                line=line.line_number,
                suggested_fix="Levels may only increase by one per line",
            ))

        parent.children.append(node)
        stack.append(node)

    return records, issues


# =============================================================================
# Dates
# =============================================================================

@dataclass
class DateResult:
    """Outcome of normalizing a GEDCOM date."""
    original: str | None
    normalized: str | None = None
    valid: bool = False
    partial: bool = False
    modifier: DateModifier | None = None
    error: str | None = None


def normalize_date(gedcom_date: str | None) -> DateResult:
    """
    Normalize a GEDCOM date to ISO form. Never raises.

    - "15 JAN 1950" -> "1950-01-15"
    - "JAN 1950"    -> "1950-01" (partial)
    - "1950"        -> "1950" (partial)
    - "ABT 1950"    -> "1950" (partial, modifier ABT)
    - "1950-01-15"  -> "1950-01-15" (GEDCOM 7 / already ISO)
    """
    if not gedcom_date or not gedcom_date.strip():
        return DateResult(original=gedcom_date, error="Empty date")

    text = gedcom_date.strip().upper()

    iso = _ISO_DATE.match(text)
    if iso:
        year, month, day = iso.group(1), iso.group(2), iso.group(3)
        if _is_real_date(int(year), int(month), int(day) if day else 1):
            return DateResult(
                original=gedcom_date,
                normalized=text,
                valid=True,
                partial=day is None,
            )
        return DateResult(original=gedcom_date, error="Invalid date format")

    modifier = None
    modifier_match = _MODIFIER.match(text)
    if modifier_match:
        modifier = DateModifier(modifier_match.group(1))
        text = modifier_match.group(2)
        if modifier == DateModifier.BETWEEN:
            text = text.split(" AND ")[0].strip()

    parts = text.split()
    normalized = None
    partial = True

    if len(parts) == 1 and re.fullmatch(r"\d{4}", parts[0]):
        normalized = parts[0]
    elif len(parts) == 2 and parts[0] in MONTHS and re.fullmatch(r"\d{4}", parts[1]):
        normalized = f"{parts[1]}-{MONTHS[parts[0]]:02d}"
    elif (
        len(parts) == 3
        and re.fullmatch(r"\d{1,2}", parts[0])
        and parts[1] in MONTHS
        and re.fullmatch(r"\d{4}", parts[2])
    ):
        year, month, day = int(parts[2]), MONTHS[parts[1]], int(parts[0])
        if _is_real_date(year, month, day):
            normalized = f"{year:04d}-{month:02d}-{day:02d}"
            partial = False

    if normalized is None:
        return DateResult(original=gedcom_date, modifier=modifier, error="Invalid date format")

    return DateResult(
        original=gedcom_date,
        normalized=normalized,
        valid=True,
        partial=partial or modifier is not None,
        modifier=modifier,
    )


def _is_real_date(year: int, month: int, day: int) -> bool:
    try:
        date(year, month, day)
    except ValueError:
        return False
    return True


# =============================================================================
# Stage 3: extractor
# =============================================================================

def is_supported_version(version: str | None) -> bool:
    if not version:
        return False
    return version in SUPPORTED_VERSIONS or version.startswith("7.0.")


class GedcomParser:
    """
    GEDCOM parser producing import-ready individuals and families.

    A parser instance is single-use per file; issues accumulate on
    ``self.errors`` and are returned on the result.
    """

    def __init__(self):
        self.errors: list[ImportIssue] = []
        self._objects: dict[str, GedcomNode] = {}

    def load(self, path: str | Path) -> ParsedGedcom:
        """Parse a GEDCOM file from disk."""
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            raise GedcomParseError(f"Failed to read GEDCOM file: {e}") from e
        return self.parse(content)

    def parse(self, content: str | bytes) -> ParsedGedcom:
        """Parse GEDCOM text. Raises GedcomParseError on structural failure."""
        if isinstance(content, bytes):
            try:
                content = content.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise GedcomParseError(f"Failed to parse GEDCOM file: not valid UTF-8 ({e})") from e

        if not content or not content.strip():
            raise GedcomParseError("Failed to parse GEDCOM file: file is empty")

        lines, issues = tokenize(content)
        self.errors.extend(issues)
        if not lines:
            raise GedcomParseError("Failed to parse GEDCOM file: no GEDCOM records found")

        records, issues = build_tree(lines)
        self.errors.extend(issues)

        version = self._detect_version(records)

        self._objects = {
            r.xref: r for r in records if r.tag == "OBJE" and r.xref
        }

        individuals: list[GedcomIndividual] = []
        families: list[GedcomFamily] = []
        first_seen: dict[tuple[str, str], int] = {}
        for record in records:
            if record.tag in ("INDI", "FAM") and record.xref:
                key = (record.tag, record.xref)
                if key in first_seen:
                    self.errors.append(create_validation_warning(
                        f"Duplicate ID {record.xref} (first defined on line {first_seen[key]}); record ignored",
                        code=ErrorCode.DUPLICATE_ID,
                        line=record.line,
                        gedcom_id=record.xref,
                        suggested_fix="Give every record a unique @ID@",
                    ))
                    continue
                first_seen[key] = record.line

            if record.tag == "INDI":
                individuals.append(self._extract_individual(record))
            elif record.tag == "FAM":
                families.append(self._extract_family(record))

        logger.debug(
            "Parsed GEDCOM %s: %d individuals, %d families, %d issues",
            version, len(individuals), len(families), len(self.errors),
        )

        return ParsedGedcom(
            success=True,
            version=version,
            individuals=individuals,
            families=families,
            errors=list(self.errors),
        )

    def _detect_version(self, records: list[GedcomNode]) -> str:
        header = next((r for r in records if r.tag == "HEAD"), None)
        if header is None:
            raise GedcomParseError("Failed to parse GEDCOM file: HEAD record not found")

        version = (header.get_value("GEDC", "VERS") or "").strip() or None
        if not version:
            raise GedcomParseError(
                "GEDCOM version not found in file",
                code=ErrorCode.UNSUPPORTED_VERSION,
            )
        if not is_supported_version(version):
            raise GedcomParseError(
                f"GEDCOM version {version} is not supported. Please use version 5.5.1 or 7.0",
                code=ErrorCode.UNSUPPORTED_VERSION,
            )
        return version

    def _extract_individual(self, record: GedcomNode) -> GedcomIndividual:
        individual = GedcomIndividual(id=record.xref or "", line=record.line)

        name_node = record.first("NAME")
        if name_node:
            individual.name = name_node.value.strip() or None
            first, last = split_name(name_node.value)
            given = name_node.get_value("GIVN")
            surname = name_node.get_value("SURN")
            individual.first_name = (given or "").strip() or first
            individual.last_name = (surname or "").strip() or last

        sex = record.get_value("SEX")
        if sex and sex.strip():
            individual.sex = sex.strip().upper()

        for event_tag, prefix in (("BIRT", "birth"), ("DEAT", "death")):
            event = record.first(event_tag)
            if not event:
                continue
            date_node = event.first("DATE")
            if date_node:
                self._apply_date(individual, prefix, event_tag, date_node)
            place = event.get_value("PLAC")
            if place and place.strip():
                setattr(individual, f"{prefix}_place", place.strip())

        famc = [n.value.strip() for n in record.all("FAMC") if n.value.strip()]
        if famc:
            individual.child_of_family = famc[0]
        individual.spouse_families = [n.value.strip() for n in record.all("FAMS") if n.value.strip()]

        individual.media = self._extract_media(record)
        if individual.media:
            individual.photo_url = individual.media[0].file

        return individual

    def _apply_date(
        self,
        individual: GedcomIndividual,
        prefix: str,
        event_tag: str,
        date_node: GedcomNode,
    ) -> None:
        field_name = f"{prefix}Date"
        result = normalize_date(date_node.value)

        if not result.valid:
            individual.date_errors.append(DateError(
                field=field_name,
                original=date_node.value,
                error=result.error or "Invalid date format",
            ))
            self.errors.append(create_validation_warning(
                f'Could not parse date "{date_node.value}" in {event_tag} - '
                f'{result.error or "Invalid date format"}',
                line=date_node.line,
                gedcom_id=individual.id,
                individual_name=individual.display_name or None,
                field=field_name,
                suggested_fix=DATE_FIX,
            ))
            return

        setattr(individual, f"{prefix}_date", result.normalized)
        setattr(individual, f"{prefix}_date_modifier", result.modifier)

        if result.partial:
            self.errors.append(create_validation_warning(
                f'Imprecise date "{date_node.value}" in {event_tag} stored as {result.normalized}',
                code=ErrorCode.PARTIAL_DATE,
                line=date_node.line,
                gedcom_id=individual.id,
                individual_name=individual.display_name or None,
                field=field_name,
                suggested_fix="Use a full date (DD MMM YYYY) if it is known",
            ))

    def _extract_media(self, record: GedcomNode) -> list[MediaReference]:
        media = []
        for obje in record.all("OBJE"):
            # OBJE is either inline or a pointer to a top-level OBJE record
            target = self._objects.get(obje.value.strip()) if obje.value.strip() else obje
            if target is None:
                continue
            for file_node in target.all("FILE"):
                if not file_node.value.strip():
                    continue
                media.append(MediaReference(
                    file=file_node.value.strip(),
                    form=file_node.get_value("FORM") or target.get_value("FORM"),
                    title=file_node.get_value("TITL") or target.get_value("TITL"),
                ))
        return media

    def _extract_family(self, record: GedcomNode) -> GedcomFamily:
        family = GedcomFamily(id=record.xref or "", line=record.line)

        husband = record.get_value("HUSB")
        if husband and husband.strip():
            family.husband = husband.strip()

        wife = record.get_value("WIFE")
        if wife and wife.strip():
            family.wife = wife.strip()

        family.children = [n.value.strip() for n in record.all("CHIL") if n.value.strip()]

        marriage_date = record.get_value("MARR", "DATE")
        if marriage_date:
            result = normalize_date(marriage_date)
            if result.valid:
                family.marriage_date = result.normalized

        return family


def split_name(value: str) -> tuple[str | None, str | None]:
    """Split a GEDCOM "Given /Surname/" name. No slashes -> given name only."""
    match = re.match(r'^([^/]*)/([^/]*)/?(.*)$', value)
    if match:
        first = match.group(1).strip() or None
        last = match.group(2).strip() or None
        return first, last
    return value.strip() or None, None


def parse_gedcom(content: str | bytes) -> ParsedGedcom:
    """
    Parse GEDCOM content without raising.

    Structural failures come back as ``success=False`` with ``error`` set;
    this is the only condition that aborts the whole parse.
    """
    try:
        return GedcomParser().parse(content)
    except GedcomParseError as e:
        logger.info("GEDCOM parse aborted: %s", e)
        return ParsedGedcom(success=False, error=str(e))


# =============================================================================
# Summaries and consistency checks
# =============================================================================

def extract_statistics(parsed: ParsedGedcom) -> dict:
    """Counts and the date range covered by the file."""
    stats = {
        "totalIndividuals": len(parsed.individuals),
        "totalFamilies": len(parsed.families),
        "version": parsed.version,
        "dateRange": None,
    }

    dates = []
    for individual in parsed.individuals:
        if individual.birth_date:
            dates.append(individual.birth_date)
        if individual.death_date:
            dates.append(individual.death_date)

    if dates:
        dates.sort()
        stats["dateRange"] = {"earliest": dates[0], "latest": dates[-1]}

    return stats


def validate_relationship_consistency(parsed: ParsedGedcom) -> list[RelationshipIssue]:
    """Check that FAMC/FAMS pointers agree with the family records."""
    issues: list[RelationshipIssue] = []
    families = {f.id: f for f in parsed.families}

    for individual in parsed.individuals:
        if individual.child_of_family:
            family = families.get(individual.child_of_family)
            if family and individual.id not in family.children:
                issues.append(RelationshipIssue(
                    type="child-family-mismatch",
                    description=(
                        f"Individual {individual.id} ({individual.display_name}) references "
                        f"family {individual.child_of_family} but is not listed as a child"
                    ),
                    affected_ids=[individual.id, individual.child_of_family],
                ))

        for family_id in individual.spouse_families:
            family = families.get(family_id)
            if family and individual.id not in (family.husband, family.wife):
                issues.append(RelationshipIssue(
                    type="spouse-family-mismatch",
                    description=(
                        f"Individual {individual.id} ({individual.display_name}) references "
                        f"family {family_id} as spouse but is not listed as husband or wife"
                    ),
                    affected_ids=[individual.id, family_id],
                ))

    return issues
