"""
Property-based tests for configuration module.

Uses Hypothesis to verify validation of the live rotation settings and the
JSON configuration file handling of the CLI.
"""

import json
import os
import tempfile
from pathlib import Path
from unittest import mock

from hypothesis import given, settings
from hypothesis import strategies as st

from domain_rotator.cli import (
    ENV_AUTH_PASSWORD,
    ENV_DATABASE_PATH,
    apply_environment,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)
from domain_rotator.config import (
    KindConfig,
    RotationConfig,
    RuntimeSettings,
    SeedConfig,
    SystemConfig,
    DatabaseConfig,
)
from domain_rotator.exceptions import ConfigError, ValidationError


@st.composite
def system_config_strategy(draw) -> SystemConfig:
    """Generate valid SystemConfig objects."""
    port_min = draw(st.integers(min_value=1, max_value=65000))
    kinds = draw(st.lists(
        st.sampled_from(["vless", "vmess", "shadowsocks", "trojan"]),
        min_size=1,
        max_size=4,
        unique=True,
    ))
    return SystemConfig(
        database=DatabaseConfig(
            path=Path(draw(st.sampled_from(["/var/lib/rotator.db", "data/panel.sqlite"]))),
            busy_timeout_ms=draw(st.integers(min_value=0, max_value=60000)),
        ),
        kinds=[KindConfig(kind=k, table=f"v2_server_{k}") for k in kinds],
        rotation=RotationConfig(
            update_interval_hours=draw(st.integers(min_value=1, max_value=720)),
            port_min=port_min,
            port_max=draw(st.integers(min_value=port_min + 1, max_value=65535)),
            cooldown_seconds=draw(st.integers(min_value=0, max_value=86400)),
        ),
        seed=SeedConfig(
            domains=draw(st.lists(st.sampled_from(["a.com", "b.net", "c.org"]), unique=True)),
        ),
    )


class TestRuntimeSettingsProperty:
    """Property tests for the live rotation settings."""

    @given(
        port_min=st.integers(min_value=-10, max_value=70000),
        port_max=st.integers(min_value=-10, max_value=70000),
    )
    @settings(max_examples=200)
    def test_port_range_validation(self, port_min: int, port_max: int) -> None:
        """
        *For any* bounds, set_port_range SHALL succeed exactly when
        0 < min < max <= 65535, and a rejected change SHALL leave the
        current range in place.
        """
        runtime = RuntimeSettings(RotationConfig())
        before = runtime.snapshot()

        valid = 0 < port_min < port_max <= 65535
        try:
            updated = runtime.set_port_range(port_min, port_max)
            assert valid, f"Range {port_min}-{port_max} should be rejected"
            assert (updated.port_min, updated.port_max) == (port_min, port_max)
            assert runtime.snapshot() == updated
        except ValidationError as e:
            assert not valid, f"Range {port_min}-{port_max} should be accepted"
            assert e.code == "invalid_port_range"
            assert runtime.snapshot() == before

    @given(hours=st.integers(min_value=-100, max_value=1000))
    @settings(max_examples=100)
    def test_interval_validation(self, hours: int) -> None:
        runtime = RuntimeSettings(RotationConfig())

        try:
            updated = runtime.set_interval(hours)
            assert hours > 0
            assert updated.update_interval_seconds == hours * 3600
        except ValidationError as e:
            assert hours <= 0
            assert e.code == "invalid_interval"

    def test_non_integer_interval_rejected(self) -> None:
        runtime = RuntimeSettings(RotationConfig())
        for value in (True, 1.5, "24"):
            try:
                runtime.set_interval(value)
                assert False, f"Interval {value!r} should be rejected"
            except ValidationError:
                pass

    def test_invalid_initial_settings_rejected(self) -> None:
        try:
            RuntimeSettings(RotationConfig(port_min=9000, port_max=9000))
            assert False, "Expected ValidationError"
        except ValidationError:
            pass

    def test_change_listener_receives_new_snapshot(self) -> None:
        changes = []
        runtime = RuntimeSettings(RotationConfig(), on_change=changes.append)

        runtime.set_port_range(20000, 30000)
        runtime.set_interval(6)

        assert [(c.port_min, c.port_max, c.update_interval_hours) for c in changes] == [
            (20000, 30000, 24),
            (20000, 30000, 6),
        ]

    def test_snapshots_are_immutable(self) -> None:
        runtime = RuntimeSettings(RotationConfig())
        snapshot = runtime.snapshot()

        runtime.set_interval(12)

        assert snapshot.update_interval_hours == 24
        try:
            snapshot.port_min = 1
            assert False, "RotationConfig should be frozen"
        except AttributeError:
            pass


class TestConfigurationFileProperty:
    """Property tests for the JSON configuration file."""

    @given(config=system_config_strategy())
    @settings(max_examples=50, deadline=None)
    def test_config_file_round_trip(self, config: SystemConfig) -> None:
        """
        *For any* valid SystemConfig, saving and loading the file SHALL
        produce an equal configuration.
        """
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"

            save_config_to_file(config, path)
            loaded = load_config_from_file(path)

            assert loaded == config

    def test_missing_sections_take_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"rotation": {"port_min": 2000, "port_max": 3000}}))

            loaded = load_config_from_file(path)
            defaults = create_default_config()

            assert (loaded.rotation.port_min, loaded.rotation.port_max) == (2000, 3000)
            assert loaded.rotation.update_interval_hours == 24
            assert loaded.kinds == defaults.kinds
            assert loaded.scheduler.sweep_cron == "*/5 * * * *"
            assert loaded.retry.max_attempts == 3

    def test_default_config_kinds_and_seeds(self) -> None:
        config = create_default_config(database_path=Path("/tmp/x.db"))

        assert [(k.kind, k.table) for k in config.kinds] == [
            ("vless", "v2_server_vless"),
            ("shadowsocks", "v2_server_shadowsocks"),
            ("vmess", "v2_server_vmess"),
        ]
        assert "domain1.com" in config.seed.domains
        assert config.rotation.cooldown_seconds == 3 * 3600

    def test_malformed_file_raises_config_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text("{not json")

            try:
                load_config_from_file(path)
                assert False, "Expected ConfigError"
            except ConfigError as e:
                assert e.details["path"] == str(path)

    def test_missing_file_raises_config_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            try:
                load_config_from_file(Path(tmpdir) / "absent.json")
                assert False, "Expected ConfigError"
            except ConfigError as e:
                assert e.code == "config_error"

    def test_environment_overrides_database_and_password(self) -> None:
        config = create_default_config(database_path=Path("/tmp/a.db"))
        env = {ENV_DATABASE_PATH: "/srv/panel.db", ENV_AUTH_PASSWORD: "hunter2"}

        with mock.patch.dict(os.environ, env):
            overridden = apply_environment(config)

        assert overridden.database.path == Path("/srv/panel.db")
        assert overridden.auth.password == "hunter2"
        assert overridden.auth.username == "admin"
        assert config.database.path == Path("/tmp/a.db")
