"""
Grades Router
=============
Read-only view over the live grade cache.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.auth.security import User, StaffPlus
from api.runtime import DashboardRuntime, get_runtime
from livesync.models import Grade, GradeFilter

router = APIRouter()


@router.get(
    "",
    response_model=list[Grade],
    summary="List grades",
)
async def list_grades(
    current_user: User = StaffPlus,
    runtime: DashboardRuntime = Depends(get_runtime),
    student_id: Optional[str] = Query(None, description="Filter by student"),
    course_id: Optional[str] = Query(None, description="Filter by course"),
    semester: Optional[str] = Query(None, description="Filter by semester"),
    academic_year: Optional[str] = Query(None, description="Filter by academic year"),
) -> list[Grade]:
    """Return grades most-recent-first, optionally narrowed by any combination of filters."""
    flt = GradeFilter(
        student_id=student_id, course_id=course_id, semester=semester, academic_year=academic_year
    )
    return [g for g in runtime.grades.items if flt.matches(g)]
