"""
Students Router
===============
Student listing is served from the live reconciled cache; mutations go to
the remote service and come back through the change stream.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator

from api.auth.security import User, AdminOnly, StaffPlus
from api.runtime import DashboardRuntime, get_runtime
from config.logging_config import logger
from config.settings import settings
from livesync.backend import RemoteServiceError
from livesync.change_stream import ConnectionStatus
from livesync.models import Student, StudentFilter, StudentStatus
from livesync.views import build_view

router = APIRouter()

UNIQUE_VIOLATION = "23505"
_TAG_RE = re.compile(r"<[^>]*>")


def sanitize_text(value: str) -> str:
    """Strip HTML tags and javascript: URLs from free text."""
    cleaned = _TAG_RE.sub("", value)
    cleaned = re.sub(r"javascript:", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()


# ── Request / Response Models ──────────────────────────────────────────────────
class StudentCreate(BaseModel):
    student_number:   str = Field(pattern=r"^\d{8,12}$", description="8-12 digit student number")
    name:             str = Field(min_length=1, max_length=100)
    program:          str = Field(min_length=1, max_length=100)
    cohort_year:      int = Field(ge=2000)
    status:           StudentStatus = StudentStatus.ACTIVE
    gpa:              float = Field(default=0.0, ge=0.0, le=4.0)
    current_semester: int = Field(default=1, ge=1, le=14)

    @field_validator("name", "program", mode="before")
    @classmethod
    def _sanitize(cls, value):
        return sanitize_text(value) if isinstance(value, str) else value

    @field_validator("cohort_year")
    @classmethod
    def _not_in_future(cls, value: int) -> int:
        if value > date.today().year:
            raise ValueError(f"cohort_year must be between 2000 and {date.today().year}")
        return value


class StudentUpdate(BaseModel):
    student_number:   Optional[str] = Field(default=None, pattern=r"^\d{8,12}$")
    name:             Optional[str] = Field(default=None, min_length=1, max_length=100)
    program:          Optional[str] = Field(default=None, min_length=1, max_length=100)
    cohort_year:      Optional[int] = Field(default=None, ge=2000)
    status:           Optional[StudentStatus] = None
    gpa:              Optional[float] = Field(default=None, ge=0.0, le=4.0)
    current_semester: Optional[int] = Field(default=None, ge=1, le=14)

    @field_validator("name", "program", mode="before")
    @classmethod
    def _sanitize(cls, value):
        return sanitize_text(value) if isinstance(value, str) else value

    @field_validator("cohort_year")
    @classmethod
    def _not_in_future(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value > date.today().year:
            raise ValueError(f"cohort_year must be between 2000 and {date.today().year}")
        return value


class StudentPage(BaseModel):
    total:       int
    page:        int
    page_size:   int
    total_pages: int
    data:        list[Student]
    error:       Optional[str] = None
    realtime:    ConnectionStatus


def _remote_error(exc: RemoteServiceError) -> HTTPException:
    if exc.code == UNIQUE_VIOLATION:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Student number already registered")
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)


# ── Endpoints ──────────────────────────────────────────────────────────────────
@router.get(
    "",
    response_model=StudentPage,
    summary="List students",
)
async def list_students(
    current_user: User = StaffPlus,
    runtime: DashboardRuntime = Depends(get_runtime),
    program: Optional[str] = Query(None, description="Filter by study program"),
    cohort_year: Optional[int] = Query(None, description="Filter by cohort year"),
    student_status: Optional[StudentStatus] = Query(None, alias="status", description="Filter by status"),
    search: Optional[str] = Query(None, description="Substring of name or student number"),
    sort_by: str = Query("created_at"),
    descending: bool = Query(True),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=200),
) -> StudentPage:
    """Filtered, searched, sorted and paginated view over the live student cache."""
    if sort_by not in Student.model_fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Cannot sort by '{sort_by}'")

    flt = StudentFilter(program=program, cohort_year=cohort_year, status=student_status)
    items = [s for s in runtime.students.items if flt.matches(s)]
    view = build_view(
        items,
        search        = search,
        search_fields = Student.search_fields,
        sort_by       = sort_by,
        descending    = descending,
        page          = page,
        page_size     = page_size,
    )
    return StudentPage(
        total       = view.total,
        page        = view.page,
        page_size   = view.page_size,
        total_pages = view.total_pages,
        data        = view.data,
        error       = runtime.students.error,
        realtime    = runtime.students.status,
    )


@router.get(
    "/{student_id}",
    response_model=Student,
    summary="Get student details",
)
async def get_student(
    student_id: str,
    current_user: User = StaffPlus,
    runtime: DashboardRuntime = Depends(get_runtime),
) -> Student:
    student = runtime.students.get(student_id)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return student


@router.post(
    "",
    response_model=Student,
    status_code=status.HTTP_201_CREATED,
    summary="Create student",
)
async def create_student(
    payload: StudentCreate,
    current_user: User = AdminOnly,
    runtime: DashboardRuntime = Depends(get_runtime),
) -> Student:
    try:
        row = await runtime.backend.insert("students", payload.model_dump(mode="json"))
    except RemoteServiceError as exc:
        logger.error(f"Create student failed: {exc.message}")
        raise _remote_error(exc)
    logger.info(f"Student created by {current_user.email}: {payload.student_number}")
    return Student.model_validate(row)


@router.patch(
    "/{student_id}",
    response_model=Student,
    summary="Update student",
)
async def update_student(
    student_id: str,
    payload: StudentUpdate,
    current_user: User = AdminOnly,
    runtime: DashboardRuntime = Depends(get_runtime),
) -> Student:
    fields = payload.model_dump(mode="json", exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        row = await runtime.backend.update("students", student_id, fields)
    except RemoteServiceError as exc:
        logger.error(f"Update student {student_id} failed: {exc.message}")
        raise _remote_error(exc)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    logger.info(f"Student {student_id} updated by {current_user.email}: {sorted(fields)}")
    return Student.model_validate(row)


@router.delete(
    "/{student_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete student",
)
async def delete_student(
    student_id: str,
    current_user: User = AdminOnly,
    runtime: DashboardRuntime = Depends(get_runtime),
) -> Response:
    try:
        await runtime.backend.delete("students", student_id)
    except RemoteServiceError as exc:
        logger.error(f"Delete student {student_id} failed: {exc.message}")
        raise _remote_error(exc)
    logger.info(f"Student {student_id} deleted by {current_user.email}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
