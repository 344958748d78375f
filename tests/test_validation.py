"""Tests for orphaned family reference handling."""

from __future__ import annotations

from familytree_import.core.errors import ErrorCode
from familytree_import.core.gedcom import parse_gedcom
from familytree_import.core.models import Severity
from familytree_import.core.validation import apply_orphan_check, validate_orphaned_references


class TestOrphanedReferences:
    """Tests for validate_orphaned_references."""

    def test_clean_file_has_no_orphans(self, parsed_sample):
        check = validate_orphaned_references(parsed_sample)

        assert not check.has_orphans
        assert check.warnings == []
        assert check.cleaned_families == parsed_sample.families

    def test_one_warning_per_missing_reference(self, gedcom_text):
        """Missing wife and two missing children give exactly three warnings."""
        parsed = parse_gedcom(gedcom_text(
            "0 @I1@ INDI",
            "0 @I3@ INDI",
            "0 @F1@ FAM",
            "1 HUSB @I1@",
            "1 WIFE @I99@",
            "1 CHIL @I3@",
            "1 CHIL @I98@",
            "1 CHIL @I97@",
        ))

        check = validate_orphaned_references(parsed)

        assert check.has_orphans
        assert len(check.warnings) == 3
        assert [w.field for w in check.warnings] == ["wife", "children", "children"]
        assert all(w.code == ErrorCode.ORPHANED_REFERENCE.value for w in check.warnings)
        assert all(w.severity == Severity.WARNING for w in check.warnings)
        assert all(w.gedcom_id == "@F1@" for w in check.warnings)
        assert "@I99@" in check.warnings[0].message
        assert "@I98@" in check.warnings[1].message
        assert "@I97@" in check.warnings[2].message

    def test_missing_references_are_stripped(self, gedcom_text):
        parsed = parse_gedcom(gedcom_text(
            "0 @I1@ INDI",
            "0 @I3@ INDI",
            "0 @F1@ FAM",
            "1 HUSB @I50@",
            "1 WIFE @I1@",
            "1 CHIL @I3@",
            "1 CHIL @I98@",
        ))

        family = validate_orphaned_references(parsed).cleaned_families[0]

        assert family.husband is None
        assert family.wife == "@I1@"
        assert family.children == ["@I3@"]

    def test_original_is_not_mutated(self, gedcom_text):
        parsed = parse_gedcom(gedcom_text("0 @F1@ FAM", "1 HUSB @I1@"))

        validate_orphaned_references(parsed)

        assert parsed.families[0].husband == "@I1@"

    def test_apply_appends_warnings(self, gedcom_text):
        """The cleaned result carries the warnings after the parse issues."""
        parsed = parse_gedcom(gedcom_text(
            "0 @I1@ INDI",
            "1 BIRT",
            "2 DATE Spring 1850",
            "0 @F1@ FAM",
            "1 HUSB @I1@",
            "1 WIFE @I2@",
        ))

        cleaned, check = apply_orphan_check(parsed)

        assert len(parsed.errors) == 1
        assert len(cleaned.errors) == 2
        assert cleaned.errors[-1].code == ErrorCode.ORPHANED_REFERENCE.value
        assert cleaned.families[0].wife is None
        assert check.has_orphans
