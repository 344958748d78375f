"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from familytree_import.config import Settings
from familytree_import.core.gedcom import parse_gedcom
from familytree_import.core.models import ParsedGedcom, StoredPerson
from familytree_import.preview import PreviewStore
from familytree_import.storage import FamilyTreeDatabase, UploadStorage
from familytree_import.web import create_app


# =============================================================================
# GEDCOM Fixtures
# =============================================================================

SAMPLE_GEDCOM = """0 HEAD
1 SOUR TestSuite
1 GEDC
2 VERS 5.5.1
2 FORM LINEAGE-LINKED
1 CHAR UTF-8
0 @I1@ INDI
1 NAME John /Smith/
1 SEX M
1 BIRT
2 DATE 15 JAN 1950
2 PLAC Boston, Massachusetts
1 FAMS @F1@
0 @I2@ INDI
1 NAME Jane /Doe/
1 SEX F
1 BIRT
2 DATE 3 MAR 1952
1 DEAT
2 DATE 20 NOV 2010
2 PLAC Chicago, Illinois
1 FAMS @F1@
0 @I3@ INDI
1 NAME Alice /Smith/
1 SEX F
1 BIRT
2 DATE 12 AUG 1980
1 FAMC @F1@
0 @F1@ FAM
1 HUSB @I1@
1 WIFE @I2@
1 CHIL @I3@
1 MARR
2 DATE 10 JUN 1975
0 TRLR
"""


def build_gedcom(*records: str, version: str = "5.5.1") -> str:
    """Wrap record lines in a minimal HEAD/TRLR envelope (HEAD is 4 lines)."""
    header = ["0 HEAD", "1 GEDC", f"2 VERS {version}", "1 CHAR UTF-8"]
    return "\n".join([*header, *records, "0 TRLR"]) + "\n"


@pytest.fixture
def sample_gedcom() -> str:
    """A three-person family: John + Jane with daughter Alice."""
    return SAMPLE_GEDCOM


@pytest.fixture
def gedcom_text() -> Callable[..., str]:
    """Factory for small GEDCOM documents."""
    return build_gedcom


@pytest.fixture
def sample_gedcom_file(tmp_path: Path, sample_gedcom: str) -> Path:
    path = tmp_path / "family.ged"
    path.write_text(sample_gedcom, encoding="utf-8")
    return path


@pytest.fixture
def parsed_sample(sample_gedcom: str) -> ParsedGedcom:
    parsed = parse_gedcom(sample_gedcom)
    assert parsed.success
    return parsed


# =============================================================================
# Storage Fixtures
# =============================================================================

@pytest.fixture
def database(tmp_path: Path) -> Generator[FamilyTreeDatabase, None, None]:
    db = FamilyTreeDatabase(tmp_path / "familytree.db").connect()
    yield db
    db.close()


@pytest.fixture
def uploads(tmp_path: Path) -> UploadStorage:
    return UploadStorage(tmp_path / "uploads")


@pytest.fixture
def previews() -> PreviewStore:
    return PreviewStore()


@pytest.fixture
def existing_john(database: FamilyTreeDatabase) -> StoredPerson:
    """A stored person matching @I1@ of the sample file."""
    person = StoredPerson(
        first_name="John",
        last_name="Smith",
        gender="male",
        birth_date="1950-01-15",
        birth_place="Boston, Massachusetts",
        user_id=1,
    )
    person.id = database.add_person(person, user_id=1)
    return person


# =============================================================================
# Web Fixtures
# =============================================================================

@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_path=str(tmp_path / "familytree.db"),
        upload_dir=str(tmp_path / "uploads"),
        default_user_id=1,
    )


@pytest.fixture
def app(
    settings: Settings,
    database: FamilyTreeDatabase,
    uploads: UploadStorage,
    previews: PreviewStore,
) -> FastAPI:
    return create_app(settings, database=database, uploads=uploads, previews=previews)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture
def upload_id(uploads: UploadStorage, sample_gedcom: str) -> str:
    """The sample file stored as an upload for user 1."""
    upload_id = uploads.generate_upload_id(1)
    uploads.save_uploaded_file(upload_id, "family.ged", sample_gedcom.encode("utf-8"))
    return upload_id
