"""Tests for GEDCOM export."""

from __future__ import annotations

from datetime import date

import pytest

from familytree_import.core.export import (
    build_gedcom_file,
    build_header,
    export_filename,
    format_gedcom_date,
    format_gedcom_gender,
    format_gedcom_name,
    group_families,
)
from familytree_import.core.gedcom import parse_gedcom
from familytree_import.core.models import (
    ParentRole,
    RelationshipType,
    StoredPerson,
    StoredRelationship,
)
from familytree_import.importer import GedcomImporter

EXPORT_DATE = date(2024, 3, 5)


def spouses(a: int, b: int) -> list[StoredRelationship]:
    return [
        StoredRelationship(person1_id=a, person2_id=b, type=RelationshipType.SPOUSE, user_id=1),
        StoredRelationship(person1_id=b, person2_id=a, type=RelationshipType.SPOUSE, user_id=1),
    ]


def parent_of(parent: int, child: int, role: ParentRole) -> StoredRelationship:
    return StoredRelationship(
        person1_id=parent,
        person2_id=child,
        type=RelationshipType.PARENT_OF,
        parent_role=role,
        user_id=1,
    )


@pytest.fixture
def family_people() -> list[StoredPerson]:
    return [
        StoredPerson(id=1, first_name="John", last_name="Smith", gender="male",
                     birth_date="1950-01-15", birth_place="Boston, Massachusetts"),
        StoredPerson(id=2, first_name="Jane", last_name="Doe", gender="female",
                     birth_date="1952-03-03", death_date="2010-11-20"),
        StoredPerson(id=3, first_name="Alice", last_name="Smith", gender="female",
                     birth_date="1980-08-12"),
    ]


@pytest.fixture
def family_relationships() -> list[StoredRelationship]:
    return [
        *spouses(1, 2),
        parent_of(1, 3, ParentRole.FATHER),
        parent_of(2, 3, ParentRole.MOTHER),
    ]


class TestFieldFormatting:
    """Tests for field formatters."""

    @pytest.mark.parametrize("value,expected", [
        ("1950-01-15", "15 JAN 1950"),
        ("1950-01-05", "5 JAN 1950"),
        ("1950-12", "DEC 1950"),
        ("1950-12-00", "DEC 1950"),
        ("1950", "1950"),
        ("1950-00-00", "1950"),
        (None, None),
        ("", None),
        ("not a date", None),
        ("1950-13-01", None),
    ])
    def test_date(self, value, expected):
        assert format_gedcom_date(value) == expected

    @pytest.mark.parametrize("first,last,expected", [
        ("John Robert", "Smith", "John Robert /Smith/"),
        ("", "Smith", "/Smith/"),
        ("John", "", "John"),
        (None, None, ""),
    ])
    def test_name(self, first, last, expected):
        assert format_gedcom_name(first, last) == expected

    @pytest.mark.parametrize("gender,expected", [
        ("male", "M"),
        ("Female", "F"),
        ("other", "U"),
        ("unspecified", "U"),
        (None, "U"),
    ])
    def test_gender(self, gender, expected):
        assert format_gedcom_gender(gender) == expected

    def test_filename(self):
        assert export_filename(EXPORT_DATE) == "familytree_20240305.ged"


class TestHeader:
    """Tests for HEAD/SUBM generation."""

    def test_551_header(self):
        lines = [line.to_string() for line in build_header("5.5.1", "Ann", EXPORT_DATE)]

        assert lines == [
            "0 HEAD",
            "1 GEDC",
            "2 VERS 5.5.1",
            "2 FORM LINEAGE-LINKED",
            "1 CHAR UTF-8",
            "1 SOUR FamilyTree App",
            "1 DATE 5 MAR 2024",
            "1 SUBM @S1@",
            "0 @S1@ SUBM",
            "1 NAME Ann",
        ]

    def test_70_header_has_no_form(self):
        lines = [line.to_string() for line in build_header("7.0", export_date=EXPORT_DATE)]

        assert "2 VERS 7.0" in lines
        assert "2 FORM LINEAGE-LINKED" not in lines


class TestGroupFamilies:
    """Tests for rebuilding families from relationship rows."""

    def test_symmetric_spouse_rows_make_one_family(self, family_people, family_relationships):
        families = group_families(family_people, family_relationships)

        assert len(families) == 1
        assert (families[0].husband, families[0].wife, families[0].children) == (1, 2, [3])

    def test_role_decides_husband(self):
        """The father role wins over gender."""
        people = [
            StoredPerson(id=1, first_name="A", gender="female"),
            StoredPerson(id=2, first_name="B"),
            StoredPerson(id=3, first_name="C"),
        ]
        relationships = [*spouses(1, 2), parent_of(2, 3, ParentRole.MOTHER)]

        family = group_families(people, relationships)[0]

        assert (family.husband, family.wife) == (1, 2)

    def test_single_parent_family(self):
        people = [
            StoredPerson(id=1, first_name="Mother", gender="female"),
            StoredPerson(id=2, first_name="Child"),
        ]

        families = group_families(people, [parent_of(1, 2, ParentRole.MOTHER)])

        assert len(families) == 1
        assert (families[0].husband, families[0].wife, families[0].children) == (None, 1, [2])

    def test_parents_not_a_couple(self):
        """A child of two unmarried parents appears in one family per parent."""
        people = [StoredPerson(id=i, first_name=str(i)) for i in (1, 2, 3)]
        relationships = [parent_of(1, 3, ParentRole.FATHER), parent_of(2, 3, ParentRole.MOTHER)]

        families = group_families(people, relationships)

        assert [(f.husband, f.wife, f.children) for f in families] == [
            (1, None, [3]),
            (None, 2, [3]),
        ]

    def test_relationships_to_unknown_people_ignored(self, family_people):
        relationships = [*spouses(1, 99), parent_of(99, 3, ParentRole.FATHER)]
        assert group_families(family_people, relationships) == []


class TestBuildGedcomFile:
    """Tests for the full document."""

    def test_document(self, family_people, family_relationships):
        content = build_gedcom_file(family_people, family_relationships, export_date=EXPORT_DATE)
        lines = content.splitlines()

        assert content.endswith("0 TRLR\n")
        assert lines[0] == "0 HEAD"
        assert "0 @I1@ INDI" in lines
        assert "1 NAME John /Smith/" in lines
        assert "2 GIVN John" in lines
        assert "2 SURN Smith" in lines
        assert "2 DATE 15 JAN 1950" in lines
        assert "2 PLAC Boston, Massachusetts" in lines
        assert "2 DATE 20 NOV 2010" in lines
        assert lines.count("0 @F1@ FAM") == 1
        assert "1 HUSB @I1@" in lines
        assert "1 WIFE @I2@" in lines
        assert "1 CHIL @I3@" in lines
        assert lines.count("1 FAMS @F1@") == 2
        assert lines.count("1 FAMC @F1@") == 1

    def test_family_links_follow_their_individual(self, family_people, family_relationships):
        lines = build_gedcom_file(family_people, family_relationships, export_date=EXPORT_DATE).splitlines()

        alice = lines.index("0 @I3@ INDI")
        family = lines.index("0 @F1@ FAM")
        assert alice < lines.index("1 FAMC @F1@") < family

    def test_notes_and_photo(self):
        person = StoredPerson(id=5, first_name="Ann", notes="Line one\nLine two", photo_url="ann.jpg")

        lines = build_gedcom_file([person], [], export_date=EXPORT_DATE).splitlines()

        assert "1 NOTE Line one" in lines
        assert "2 CONT Line two" in lines
        assert "1 OBJE" in lines
        assert "2 FILE ann.jpg" in lines

    def test_unsupported_version(self, family_people):
        with pytest.raises(ValueError):
            build_gedcom_file(family_people, [], version="5.5")

    def test_empty_tree(self):
        lines = build_gedcom_file([], [], version="7.0", export_date=EXPORT_DATE).splitlines()

        assert lines[-1] == "0 TRLR"
        assert not any(line.endswith("INDI") for line in lines)


class TestRoundTrip:
    """Export output parses and re-imports to the same tree."""

    def test_export_parse_import_export(self, database, previews, family_people, family_relationships):
        first = build_gedcom_file(family_people, family_relationships, export_date=EXPORT_DATE)

        parsed = parse_gedcom(first)
        assert parsed.success
        assert parsed.version == "5.5.1"
        assert [i.display_name for i in parsed.individuals] == ["John Smith", "Jane Doe", "Alice Smith"]
        assert parsed.individuals[0].birth_date == "1950-01-15"
        assert parsed.individuals[1].death_date == "2010-11-20"
        assert parsed.errors == []

        session = previews.store_preview_data("roundtrip", 1, parsed, [])
        result = GedcomImporter(database).run(session, [], user_id=1)
        assert (result.persons, result.relationships) == (3, 4)

        second = build_gedcom_file(
            database.list_people(1), database.list_relationships(1), export_date=EXPORT_DATE,
        )
        assert second == first

    def test_70_export_parses(self, family_people, family_relationships):
        parsed = parse_gedcom(build_gedcom_file(family_people, family_relationships, version="7.0"))

        assert parsed.success
        assert parsed.version == "7.0"
        assert len(parsed.families) == 1
