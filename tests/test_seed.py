"""
Unit Tests: synthetic student generator
"""
from __future__ import annotations

from datetime import date

import pytest

from api.routes.students import StudentCreate
from fakes import FakeBackend
from livesync.backend import RemoteServiceError
from seed.generate_students import generate_students, seed_students


class TestGenerateStudents:
    def test_count_and_unique_numbers(self):
        records = generate_students(200, seed=42)
        assert len(records) == 200
        assert len({r["student_number"] for r in records}) == 200

    def test_records_pass_create_validation(self):
        for record in generate_students(50, seed=7):
            StudentCreate(**record)

    def test_number_starts_with_cohort_year(self):
        for record in generate_students(20, seed=1):
            assert record["student_number"].startswith(str(record["cohort_year"]))
            assert record["cohort_year"] <= date.today().year

    def test_seed_is_reproducible(self):
        assert generate_students(10, seed=3) == generate_students(10, seed=3)


class TestSeedStudents:
    @pytest.mark.asyncio
    async def test_inserts_all(self):
        backend = FakeBackend()
        inserted = await seed_students(backend, 15, seed=11)
        assert inserted == 15
        assert len(backend.tables["students"]) == 15

    @pytest.mark.asyncio
    async def test_rejected_rows_skipped(self):
        backend = FakeBackend()
        original = backend.insert
        calls = 0

        async def flaky_insert(collection, fields):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise RemoteServiceError("new row violates row-level security policy", "42501")
            return await original(collection, fields)

        backend.insert = flaky_insert
        assert await seed_students(backend, 5, seed=11) == 4
