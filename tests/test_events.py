"""
Unit Tests: change payload parsing and entity filters
"""
from __future__ import annotations

import pytest

from fakes import student_row
from livesync.events import Deleted, EventType, Inserted, Updated, parse_change_payload
from livesync.models import Student, StudentFilter, StudentStatus


class TestParseChangePayload:
    def test_nested_wire_shape(self):
        event = parse_change_payload({
            "data": {"type": "INSERT", "record": {"id": 7, "name": "Ada"}, "old_record": None},
        })
        assert isinstance(event, Inserted)
        assert event.record_id == "7"
        assert event.event_type is EventType.INSERT

    def test_flattened_shape(self):
        event = parse_change_payload({
            "eventType": "UPDATE",
            "new": {"id": "1", "program": "EE"},
            "old": {"id": "1"},
        })
        assert isinstance(event, Updated)
        assert event.new["program"] == "EE"
        assert event.old == {"id": "1"}

    def test_delete_takes_id_from_old_record(self):
        event = parse_change_payload({"data": {"type": "DELETE", "record": None, "old_record": {"id": "5"}}})
        assert event == Deleted(id="5", old={"id": "5"})

    def test_lowercase_type_accepted(self):
        assert isinstance(parse_change_payload({"eventType": "delete", "old": {"id": "1"}}), Deleted)

    @pytest.mark.parametrize("payload", [
        {"eventType": "TRUNCATE"},
        {"eventType": "*", "new": {"id": "1"}},
        {"eventType": "INSERT", "new": {"name": "no id"}},
        {"eventType": "DELETE", "old": {}},
        {"data": "not a mapping"},
    ])
    def test_malformed_rejected(self, payload):
        with pytest.raises(ValueError):
            parse_change_payload(payload)

    def test_mask(self):
        assert EventType.ALL.admits(EventType.DELETE)
        assert EventType.UPDATE.admits(EventType.UPDATE)
        assert not EventType.INSERT.admits(EventType.UPDATE)


class TestStudentFilter:
    def test_unset_fields_match_anything(self):
        student = Student.model_validate(student_row("1"))
        assert StudentFilter().matches(student)

    def test_conjunction(self):
        student = Student.model_validate(student_row("1", program="CS", status="graduated"))
        assert StudentFilter(program="CS", status="graduated").matches(student)
        assert not StudentFilter(program="CS", status=StudentStatus.ACTIVE).matches(student)

    def test_search_clause(self):
        student = Student.model_validate(student_row("1", name="Grace Hopper"))
        assert StudentFilter(search="hopper").matches(student)
        assert not StudentFilter(search="lovelace").matches(student)

    def test_equalities_exclude_unset_and_search(self):
        flt = StudentFilter(cohort_year=2022, status=StudentStatus.ON_LEAVE, search="x")
        assert flt.equalities() == {"cohort_year": 2022, "status": "on_leave"}
        assert flt.search_term == "x"

    def test_extra_columns_kept(self):
        student = Student.model_validate(student_row("1", email="ada@example.edu"))
        assert student.model_dump()["email"] == "ada@example.edu"

    def test_numeric_id_coerced_to_text(self):
        student = Student.model_validate({**student_row("1"), "id": 42})
        assert student.id == "42"
