"""
Property-based tests for Audit Logger module.

Uses Hypothesis to verify output formats, level filtering, credential
masking and error context of log entries.
"""

import json
from io import StringIO

from hypothesis import given, settings
from hypothesis import strategies as st

from domain_rotator.audit_logger import AuditLogger, NullLogger
from domain_rotator.enums import LogLevel
from domain_rotator.exceptions import NoAvailableDomainError


@st.composite
def component_name_strategy(draw) -> str:
    """Generate valid component names."""
    return draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz_-"),
        min_size=1,
        max_size=30,
    ))


@st.composite
def message_strategy(draw) -> str:
    """Generate single-line log messages."""
    return draw(st.text(
        alphabet=st.characters(
            whitelist_categories=('L', 'N', 'P', 'S', 'Z'),
            blacklist_characters='\x00\n\r',
        ),
        min_size=1,
        max_size=100,
    ))


@st.composite
def non_sensitive_key_strategy(draw) -> str:
    """Generate keys that match none of the sensitive patterns."""
    key = draw(st.sampled_from([
        "kind", "record_id", "host", "port", "domain", "attempt",
        "next_update_time", "pool", "now", "in_use",
    ]))
    suffix = draw(st.text(alphabet="xyz0123456789", max_size=4))
    return key + suffix


SENSITIVE_KEYS = [
    "password", "auth_password", "secret", "api_key", "token",
    "Authorization", "credentials", "session_id", "database_dsn",
]


class TestOutputFormatProperty:
    """Property tests for JSON and text output."""

    @given(
        component=component_name_strategy(),
        message=message_strategy(),
        level=st.sampled_from(list(LogLevel)),
    )
    @settings(max_examples=100)
    def test_both_format_writes_json_and_text(
        self,
        component: str,
        message: str,
        level: LogLevel,
    ) -> None:
        """
        *For any* entry logged in 'both' mode, the stream SHALL receive one
        JSON line followed by one text line describing the same entry.
        """
        stream = StringIO()
        logger = AuditLogger(output_format="both", output_stream=stream, level="debug")

        logger.log(level, component, message, {"kind": "vless"})

        lines = stream.getvalue().splitlines()
        assert len(lines) == 2
        parsed = json.loads(lines[0])
        assert parsed["component"] == component
        assert parsed["message"] == message
        assert parsed["level"] == level.value
        assert parsed["data"] == {"kind": "vless"}
        assert f"[{component}]" in lines[1]
        assert level.value.upper() in lines[1]

    @given(message=message_strategy())
    @settings(max_examples=50)
    def test_json_only_format(self, message: str) -> None:
        stream = StringIO()
        logger = AuditLogger(output_format="json", output_stream=stream)

        logger.info("coordinator", message)

        lines = stream.getvalue().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["message"] == message

    def test_invalid_format_rejected(self) -> None:
        try:
            AuditLogger(output_format="xml")
            assert False, "Expected ValueError"
        except ValueError:
            pass


class TestLevelFilterProperty:
    """Property tests for the minimum level filter."""

    @given(
        minimum=st.sampled_from(list(LogLevel)),
        level=st.sampled_from(list(LogLevel)),
    )
    @settings(max_examples=50)
    def test_entries_below_minimum_dropped(self, minimum: LogLevel, level: LogLevel) -> None:
        """
        *For any* pair of levels, an entry SHALL be emitted only when its
        level is at or above the logger's minimum.
        """
        order = [LogLevel.DEBUG, LogLevel.INFO, LogLevel.WARN, LogLevel.ERROR]
        stream = StringIO()
        logger = AuditLogger(output_stream=stream, level=minimum.value)

        entry = logger.log(level, "scheduler", "Sweep finished")

        emitted = order.index(level) >= order.index(minimum)
        assert (entry is not None) == emitted
        assert (stream.getvalue() != "") == emitted
        assert len(logger.entries) == (1 if emitted else 0)

    def test_entry_history_is_bounded(self) -> None:
        logger = AuditLogger(output_stream=StringIO(), max_entries=5)

        for i in range(20):
            logger.info("service", f"message {i}")

        assert [e.message for e in logger.entries] == [f"message {i}" for i in range(15, 20)]


class TestSensitiveDataMaskingProperty:
    """Property tests for credential masking."""

    @given(
        key=st.sampled_from(SENSITIVE_KEYS),
        value=st.text(min_size=1, max_size=40),
    )
    @settings(max_examples=100)
    def test_sensitive_data_masked(self, key: str, value: str) -> None:
        """
        *For any* key naming a credential, the logged value SHALL be
        replaced by the mask and never appear in the output.
        """
        stream = StringIO()
        logger = AuditLogger(output_format="json", output_stream=stream)

        entry = logger.info("cli", "Configuration loaded", {key: value})

        assert entry.data[key] == AuditLogger.MASK_VALUE
        assert json.loads(stream.getvalue())["data"][key] == AuditLogger.MASK_VALUE

    @given(
        key=non_sensitive_key_strategy(),
        value=st.one_of(st.integers(), st.text(max_size=30)),
    )
    @settings(max_examples=100)
    def test_non_sensitive_data_not_masked(self, key: str, value) -> None:
        logger = NullLogger()

        entry = logger.info("coordinator", "Rotation committed", {key: value})

        assert entry.data[key] == value

    @given(value=st.text(min_size=1, max_size=30))
    @settings(max_examples=50)
    def test_nested_sensitive_data_masked(self, value: str) -> None:
        logger = NullLogger()

        entry = logger.info(
            "cli",
            "Configuration loaded",
            {"config": {"auth": {"username": "admin"}, "kinds": [{"password": value}]}},
        )

        assert entry.data["config"]["auth"] == AuditLogger.MASK_VALUE
        assert entry.data["config"]["kinds"][0]["password"] == AuditLogger.MASK_VALUE


class TestErrorContextProperty:
    """Tests for error entries."""

    def test_error_entries_carry_type_message_and_code(self) -> None:
        logger = NullLogger()
        error = NoAvailableDomainError(message="No available domain")

        entry = logger.log_error(
            "coordinator", "Rotation aborted", error, {"kind": "vless", "record_id": 4}
        )

        assert entry.level == LogLevel.ERROR
        assert entry.data["error_type"] == "NoAvailableDomainError"
        assert entry.data["error_message"] == "No available domain"
        assert entry.data["error_code"] == "no_available_domain"
        assert entry.data["kind"] == "vless"
        assert entry.data["record_id"] == 4

    def test_plain_exceptions_have_no_code(self) -> None:
        logger = NullLogger()

        entry = logger.log_error("scheduler", "Scheduled task failed", RuntimeError("boom"))

        assert entry.data["error_message"] == "boom"
        assert entry.data["error_type"] == "RuntimeError"
        assert "error_code" not in entry.data

    def test_additional_data_not_mutated(self) -> None:
        logger = NullLogger()
        context = {"kind": "vmess"}

        logger.log_error("service", "Failed", ValueError("x"), context)

        assert context == {"kind": "vmess"}
