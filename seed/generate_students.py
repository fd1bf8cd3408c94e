"""
Seed: Synthetic Student Records
===============================
Generates realistic student rows with Faker and writes them to the remote
`students` table through the mutation interface. Every insert comes back
to running dashboards as an ordinary change event.

Run with:
    python -m seed.generate_students 250
"""
from __future__ import annotations

import asyncio
import random
import sys
from datetime import date

from faker import Faker

from config.logging_config import logger
from livesync.backend import RemoteBackend, RemoteServiceError, create_supabase_backend
from livesync.models import StudentStatus

fake = Faker()

# ── Constants ──────────────────────────────────────────────────────────────────
PROGRAMS = [
    "Computer Science",
    "Information Systems",
    "Electrical Engineering",
    "Mathematics",
    "Business Administration",
    "Psychology",
]

STATUS_WEIGHTS = {
    StudentStatus.ACTIVE:    0.70,
    StudentStatus.GRADUATED: 0.15,
    StudentStatus.DROPOUT:   0.07,
    StudentStatus.ON_LEAVE:  0.08,
}


def generate_students(n: int = 100, seed: int | None = None) -> list[dict]:
    """Build `n` insertable student payloads (no id, no timestamps)."""
    rng = random.Random(seed)
    if seed is not None:
        Faker.seed(seed)

    this_year = date.today().year
    statuses  = list(STATUS_WEIGHTS)
    weights   = list(STATUS_WEIGHTS.values())
    numbers: set[str] = set()

    records = []
    while len(records) < n:
        cohort_year = rng.randint(this_year - 6, this_year)
        number = f"{cohort_year}{rng.randint(0, 999999):06d}"
        if number in numbers:
            continue
        numbers.add(number)

        status = rng.choices(statuses, weights=weights)[0]
        years_in = this_year - cohort_year
        semester = max(1, min(14, years_in * 2 + rng.randint(0, 1)))
        gpa = 0.0 if semester == 1 else round(min(4.0, max(0.0, rng.gauss(3.1, 0.45))), 2)

        records.append({
            "student_number":   number,
            "name":             fake.name(),
            "program":          rng.choice(PROGRAMS),
            "cohort_year":      cohort_year,
            "status":           status.value,
            "gpa":              gpa,
            "current_semester": semester,
        })

    logger.info(f"Generated {len(records)} synthetic student records")
    return records


async def seed_students(backend: RemoteBackend, n: int = 100, seed: int | None = None) -> int:
    """Insert generated students one by one; returns how many were accepted."""
    inserted = 0
    for record in generate_students(n, seed=seed):
        try:
            await backend.insert("students", record)
            inserted += 1
        except RemoteServiceError as exc:
            logger.warning(f"Skipped {record['student_number']}: {exc.message}")
    logger.info(f"Seeded {inserted}/{n} students")
    return inserted


async def main(n: int) -> None:
    backend = await create_supabase_backend()
    await seed_students(backend, n)


if __name__ == "__main__":
    count = int(sys.argv[1]) if len(sys.argv) > 1 else 100
    asyncio.run(main(count))
