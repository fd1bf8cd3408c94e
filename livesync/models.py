"""
Domain Models
=============
Entities mirrored from the remote tables, plus the field-equality
filters that scope a reconciled view of them.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict


# Tables the change stream is allowed to subscribe to.
KNOWN_COLLECTIONS: frozenset[str] = frozenset({"students", "grades", "courses", "profiles"})


class StudentStatus(str, Enum):
    ACTIVE    = "active"
    GRADUATED = "graduated"
    DROPOUT   = "dropout"
    ON_LEAVE  = "on_leave"


# ── Entities ───────────────────────────────────────────────────────────────────
class Entity(BaseModel):
    """A row with a stable, never-reused identifier."""
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    search_fields: ClassVar[tuple[str, ...]] = ()

    id:         str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.id


class Student(Entity):
    search_fields: ClassVar[tuple[str, ...]] = ("name", "student_number")

    student_number:   str
    name:             str
    program:          str
    cohort_year:      int
    status:           StudentStatus
    gpa:              Optional[float] = None
    current_semester: int = 1

    @property
    def display_name(self) -> str:
        return self.name


class Grade(Entity):
    search_fields: ClassVar[tuple[str, ...]] = ("student_id", "course_id")

    student_id:    str
    course_id:     str
    grade:         str
    grade_point:   float
    semester:      str
    academic_year: str

    @property
    def display_name(self) -> str:
        return f"{self.grade} ({self.course_id})"


# ── Filters ────────────────────────────────────────────────────────────────────
def matches_search(entity: BaseModel, term: str, fields: tuple[str, ...]) -> bool:
    """Case-insensitive substring match of `term` against any of `fields`."""
    needle = term.casefold()
    for field in fields:
        value = getattr(entity, field, None)
        if value is not None and needle in str(value).casefold():
            return True
    return False


class EntityFilter(BaseModel):
    """
    Conjunction of field-equality predicates. Unset fields match anything.
    Subclasses that declare a `search` field add a substring clause over
    `search_fields`.
    """
    model_config = ConfigDict(frozen=True)

    search_fields: ClassVar[tuple[str, ...]] = ()

    def equalities(self) -> dict[str, Any]:
        """Equality predicates as plain JSON values, ready for a remote query."""
        dumped = self.model_dump(mode="json", exclude={"search"})
        return {k: v for k, v in dumped.items() if v is not None}

    @property
    def search_term(self) -> str | None:
        term = getattr(self, "search", None)
        return term.strip() if term and term.strip() else None

    def matches(self, entity: BaseModel) -> bool:
        for name in type(self).model_fields:
            if name == "search":
                continue
            expected = getattr(self, name)
            if expected is None:
                continue
            if getattr(entity, name, None) != expected:
                return False

        term = self.search_term
        if term and not matches_search(entity, term, self.search_fields):
            return False
        return True


class StudentFilter(EntityFilter):
    search_fields: ClassVar[tuple[str, ...]] = Student.search_fields

    program:     Optional[str] = None
    cohort_year: Optional[int] = None
    status:      Optional[StudentStatus] = None
    search:      Optional[str] = None


class GradeFilter(EntityFilter):
    student_id:    Optional[str] = None
    course_id:     Optional[str] = None
    semester:      Optional[str] = None
    academic_year: Optional[str] = None
