"""
FastAPI service for GEDCOM import and export.

Routes:
- /api/gedcom/parse/{uploadId}: parse an uploaded file into a preview
- /api/gedcom/preview/{uploadId}/...: review individuals, tree, duplicates
- /api/gedcom/import/{uploadId}: commit a preview to the family tree
- /api/gedcom/export: download the family tree as GEDCOM
- /api/people/{id}/parent-candidates: plausible parents for a person

The application is built by ``create_app``, which receives its
collaborators (settings, database, upload storage, preview store) so tests
and the CLI can wire their own.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Literal, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from familytree_import import __version__
from familytree_import.config import Settings
from familytree_import.core.errors import (
    ErrorCode,
    ImportFailedError,
    ImportInProgressError,
    InvalidResolutionError,
    PreviewNotFoundError,
    create_import_error,
    generate_error_log_csv,
)
from familytree_import.core.export import EXPORT_VERSIONS, build_gedcom_file, export_filename
from familytree_import.core.gedcom import (
    extract_statistics,
    parse_gedcom,
    validate_relationship_consistency,
)
from familytree_import.core.models import CamelModel, ImportResult
from familytree_import.core.validation import apply_orphan_check
from familytree_import.importer import GedcomImporter
from familytree_import.matching import find_duplicates, suggest_parents
from familytree_import.preview import PreviewStore
from familytree_import.storage import FamilyTreeDatabase, UploadStorage

logger = logging.getLogger(__name__)


# =============================================================================
# Services
# =============================================================================

@dataclass
class Services:
    """Collaborators shared by all request handlers."""
    settings: Settings
    database: FamilyTreeDatabase
    uploads: UploadStorage
    previews: PreviewStore

    @property
    def importer(self) -> GedcomImporter:
        return GedcomImporter(self.database)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_user_id(
    request: Request,
    x_user_id: Optional[int] = Header(None),
) -> int:
    """Owner scope for the request."""
    if x_user_id is not None:
        return x_user_id
    return request.app.state.services.settings.default_user_id


# =============================================================================
# Request/Response Models
# =============================================================================

class ImportRequest(CamelModel):
    import_all: bool = True
    selected_ids: list[str] | None = None


class HealthResponse(CamelModel):
    status: str
    version: str


IMPORT_FAILURE_STATUS = {
    ErrorCode.CONSTRAINT_VIOLATION: 409,
    ErrorCode.TIMEOUT_ERROR: 504,
}


# =============================================================================
# GEDCOM Endpoints
# =============================================================================

router = APIRouter(prefix="/api/gedcom", tags=["GEDCOM"])


@router.post("/parse/{upload_id}")
def parse_upload(
    upload_id: str,
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    """
    Parse an uploaded GEDCOM file and store a preview.

    Returns statistics, all issues, duplicate candidates and FAMC/FAMS
    consistency problems. 404 for an unknown upload, 400 if the file can't
    be parsed at all.
    """
    content = services.uploads.read(upload_id)
    if content is None:
        raise HTTPException(status_code=404, detail=f"Upload not found: {upload_id}")

    parsed = parse_gedcom(content)
    if not parsed.success:
        raise HTTPException(status_code=400, detail=parsed.error)

    parsed, _ = apply_orphan_check(parsed)

    existing = services.database.list_people(user_id)
    duplicates = find_duplicates(
        parsed.individuals,
        existing,
        threshold=services.settings.duplicate_threshold,
    )

    services.previews.store_preview_data(
        upload_id, user_id, parsed, duplicates, existing_people=existing,
    )

    return {
        "uploadId": upload_id,
        "version": parsed.version,
        "statistics": extract_statistics(parsed),
        "errors": [issue.to_json_dict() for issue in parsed.errors],
        "duplicates": [d.to_json_dict() for d in duplicates],
        "relationshipIssues": [
            issue.to_json_dict() for issue in validate_relationship_consistency(parsed)
        ],
    }


@router.get("/preview/{upload_id}/individuals")
def preview_individuals(
    upload_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    sort_by: Literal["name", "birthDate", "deathDate"] = Query("name", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("asc", alias="sortOrder"),
    search: Optional[str] = Query(None),
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    """Paginated, sortable, searchable individuals of a preview."""
    return services.previews.get_preview_individuals(
        upload_id,
        user_id,
        page=page,
        limit=limit or services.settings.default_page_size,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search,
    )


@router.get("/preview/{upload_id}/tree")
def preview_tree(
    upload_id: str,
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    return services.previews.get_preview_tree(upload_id, user_id)


@router.get("/preview/{upload_id}/person/{gedcom_id}")
def preview_person(
    upload_id: str,
    gedcom_id: str,
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    return services.previews.get_preview_person(upload_id, user_id, gedcom_id)


@router.get("/preview/{upload_id}/duplicates")
def preview_duplicates(
    upload_id: str,
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    return {"duplicates": services.previews.get_duplicates(upload_id, user_id)}


@router.post("/preview/{upload_id}/duplicates/resolve")
def resolve_duplicates(
    upload_id: str,
    payload: Any = Body(None),
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    """
    Save resolution decisions, replacing earlier ones.

    The body must be ``{"decisions": [...]}``. A missing or malformed list,
    or any invalid decision, is a 400 and leaves saved decisions untouched.
    """
    decisions = payload.get("decisions") if isinstance(payload, dict) else None
    if not isinstance(decisions, list):
        raise InvalidResolutionError("Request body must contain a decisions list")
    return services.previews.save_resolution_decisions(upload_id, user_id, decisions)


@router.post("/import/{upload_id}")
def import_upload(
    upload_id: str,
    request: ImportRequest | None = None,
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    """
    Commit a preview to the family tree in one transaction.

    Failures leave storage untouched and are reported with a code, a
    retry hint and a link to the error log. 409 while another import of the
    same preview is running or once it has been committed.
    """
    request = request or ImportRequest()
    selected_ids = None if request.import_all else (request.selected_ids or [])

    session = services.previews.begin_import(upload_id, user_id)
    committed = False
    try:
        result = services.importer.run(
            session,
            session.resolution_decisions,
            user_id,
            selected_ids=selected_ids,
        )
        committed = True
    except ImportFailedError as e:
        session.errors.append(create_import_error(
            str(e),
            code=e.code,
            field="import",
            suggested_fix="Retry the import" if e.can_retry else None,
        ))
        status = IMPORT_FAILURE_STATUS.get(e.code, 500)
        return JSONResponse(status_code=status, content={
            "success": False,
            "imported": ImportResult().to_json_dict(),
            "error": {
                "code": e.code.value,
                "message": str(e),
                "details": e.details,
                "canRetry": e.can_retry,
                "errorLogUrl": f"/api/gedcom/import/{upload_id}/errors.csv",
            },
        })
    finally:
        services.previews.finish_import(session, committed)

    return {"success": True, "imported": result.to_json_dict()}


@router.get("/import/{upload_id}/errors.csv")
def import_error_log(
    upload_id: str,
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    """All issues recorded for an upload as a CSV download."""
    session = services.previews.get_preview_data(upload_id, user_id)
    return Response(
        content=generate_error_log_csv(session.errors),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="gedcom-errors-{upload_id}.csv"',
        },
    )


@router.get("/export")
def export_gedcom(
    format: Optional[str] = Query(None),
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    """The caller's family tree as a GEDCOM download."""
    version = format or services.settings.export_version
    if version not in EXPORT_VERSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid GEDCOM version: {version}. Supported versions: {', '.join(EXPORT_VERSIONS)}",
        )

    content = build_gedcom_file(
        services.database.list_people(user_id),
        services.database.list_relationships(user_id),
        version=version,
        submitter=services.settings.submitter_name,
    )
    return Response(
        content=content,
        media_type="text/x-gedcom",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


# =============================================================================
# People Endpoints
# =============================================================================

people_router = APIRouter(prefix="/api/people", tags=["People"])


@people_router.get("/{person_id}/parent-candidates")
def parent_candidates(
    person_id: int,
    services: Services = Depends(get_services),
    user_id: int = Depends(get_user_id),
):
    """People who could plausibly be linked as this person's parent."""
    if services.database.get_person(person_id, user_id) is None:
        raise HTTPException(status_code=404, detail=f"Person not found: {person_id}")

    candidates = suggest_parents(services.database, person_id, user_id)
    return {"candidates": [person.to_json_dict() for person in candidates]}


# =============================================================================
# Application
# =============================================================================

def _not_found(request: Request, exc: PreviewNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def _invalid_resolution(request: Request, exc: InvalidResolutionError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def _import_conflict(request: Request, exc: ImportInProgressError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app(
    settings: Settings | None = None,
    database: FamilyTreeDatabase | None = None,
    uploads: UploadStorage | None = None,
    previews: PreviewStore | None = None,
) -> FastAPI:
    """Build the API with explicit collaborators; missing ones come from settings."""
    settings = settings or Settings.from_env()
    owns_database = database is None
    services = Services(
        settings=settings,
        database=(database or FamilyTreeDatabase(settings.database_path)).connect(),
        uploads=uploads or UploadStorage(settings.upload_dir, settings.max_upload_size),
        previews=previews or PreviewStore(),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_database:
            services.database.close()

    app = FastAPI(
        title="FamilyTree GEDCOM Import API",
        description="Import, review and export GEDCOM genealogy files.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_exception_handler(PreviewNotFoundError, _not_found)
    app.add_exception_handler(InvalidResolutionError, _invalid_resolution)
    app.add_exception_handler(ImportInProgressError, _import_conflict)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health_check() -> Any:
        return HealthResponse(status="healthy", version=__version__)

    app.include_router(router)
    app.include_router(people_router)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
