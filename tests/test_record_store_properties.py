"""
Property-based tests for the resource record store.

Covers schema evolution of externally owned tables, due-record selection and
the guards on kind and table names.
"""

import tempfile

from hypothesis import given, settings
from hypothesis import strategies as st

from domain_rotator.config import KindConfig
from domain_rotator.database import quote_identifier
from domain_rotator.exceptions import RecordNotFoundError, ValidationError
from domain_rotator.record_store import ResourceRecordStore
from domain_rotator.service import RotatorService

from rotation_fixtures import get_record, insert_record, make_config, make_service

NOW = 1_700_000_000


class TestSchemaEvolutionProperty:
    """Tests for adding the bookkeeping columns."""

    def test_legacy_table_gains_columns_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = RotatorService(make_config(tmpdir))
            with service.database.transaction() as conn:
                conn.execute(
                    'CREATE TABLE v2_server_vless (id INTEGER PRIMARY KEY, name TEXT, port TEXT, '
                    'server_port INTEGER, host TEXT, "show" INTEGER)'
                )
                conn.execute(
                    'INSERT INTO v2_server_vless VALUES (1, \'legacy\', \'443\', 443, \'old.com\', 1)'
                )

            service.migrate()
            with service.database.transaction() as conn:
                added_again = service.records.ensure_columns(conn, "vless")

            assert added_again == []
            record = get_record(service, "vless", 1)
            assert record.host == "old.com"
            assert record.numeric_port == 443
            assert record.next_update_time == 0
            assert record.last_update_status == ""


class TestDueSelectionProperty:
    """Property tests for list_due."""

    @given(next_times=st.lists(st.integers(min_value=0, max_value=2 * NOW), min_size=1, max_size=8))
    @settings(max_examples=25, deadline=None)
    def test_due_records_are_exactly_those_past_their_time(self, next_times: list[int]) -> None:
        """
        *For any* set of records, list_due SHALL return exactly the records
        whose next_update_time is at or before now, ordered by id.
        """
        with tempfile.TemporaryDirectory() as tmpdir:
            service = make_service(tmpdir)
            for record_id, next_update_time in enumerate(next_times, start=1):
                insert_record(service, "vless", record_id, next_update_time=next_update_time)

            with service.database.reader() as conn:
                due = service.records.list_due(conn, "vless", NOW)

            expected = [i for i, t in enumerate(next_times, start=1) if t <= NOW]
            assert [r.id for r in due] == expected

    def test_null_next_update_time_counts_as_due(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = make_service(tmpdir)
            insert_record(service, "vless", 1, next_update_time=NOW + 10)
            with service.database.transaction() as conn:
                conn.execute("UPDATE v2_server_vless SET next_update_time = NULL")

            with service.database.reader() as conn:
                due = service.records.list_due(conn, "vless", NOW)

            assert [r.id for r in due] == [1]


class TestWritesProperty:
    """Tests for the rotated fields."""

    @given(port=st.integers(min_value=1, max_value=65535))
    @settings(max_examples=20, deadline=None)
    def test_assignment_writes_display_and_numeric_port(self, port: int) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = make_service(tmpdir)
            insert_record(service, "vless", 1)

            with service.database.transaction() as conn:
                service.records.update_assignment(conn, "vless", 1, port, "new.com", NOW)

            record = get_record(service, "vless", 1)
            assert record.port == str(port)
            assert record.numeric_port == port
            assert record.host == "new.com"
            assert record.next_update_time == NOW

    def test_writes_to_missing_record_raise(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = make_service(tmpdir)
            try:
                with service.database.transaction() as conn:
                    service.records.set_status(conn, "vless", 9, "success")
                assert False, "Expected RecordNotFoundError"
            except RecordNotFoundError as e:
                assert e.details == {"kind": "vless", "record_id": 9}


class TestNameGuardProperty:
    """Tests for kind and table name validation."""

    @given(name=st.text(min_size=1, max_size=20))
    @settings(max_examples=100)
    def test_only_plain_identifiers_are_quoted(self, name: str) -> None:
        """
        *For any* string, quote_identifier SHALL either return it wrapped in
        double quotes or raise, and never pass a quote or space through.
        """
        try:
            quoted = quote_identifier(name)
            assert quoted == f'"{name}"'
            assert '"' not in name and " " not in name and ";" not in name
        except ValidationError as e:
            assert e.code == "invalid_table"

    def test_bad_table_name_rejected_at_construction(self) -> None:
        try:
            ResourceRecordStore([KindConfig(kind="vless", table="v2; DROP TABLE x")])
            assert False, "Expected ValidationError"
        except ValidationError as e:
            assert e.code == "invalid_table"

    def test_unknown_kind_rejected(self) -> None:
        store = ResourceRecordStore([KindConfig(kind="vless", table="v2_server_vless")])

        try:
            store.table_for("vmess")
            assert False, "Expected ValidationError"
        except ValidationError as e:
            assert e.code == "unknown_kind"
            assert e.details["known_kinds"] == ["vless"]
