"""
Shared builders for tests that need a real SQLite database.

Each helper works on a RotatorService created over a database file inside a
temporary directory, with the record tables created as on a fresh install.
"""

from pathlib import Path
from typing import Iterable, Optional

from domain_rotator.audit_logger import NullLogger
from domain_rotator.config import (
    DatabaseConfig,
    KindConfig,
    RetryConfig,
    RotationConfig,
    SeedConfig,
    SystemConfig,
)
from domain_rotator.port_allocator import PortAllocator
from domain_rotator.service import RotatorService

COOLDOWN = 3 * 3600
HOUR = 3600


def make_config(
    directory: str,
    kinds: Iterable[str] = ("vless",),
    interval_hours: int = 24,
    port_min: int = 10000,
    port_max: int = 60000,
    max_attempts: int = 3,
    seed_domains: Optional[list[str]] = None,
) -> SystemConfig:
    return SystemConfig(
        database=DatabaseConfig(path=Path(directory) / "rotator.db"),
        kinds=[KindConfig(kind=kind, table=f"v2_server_{kind}") for kind in kinds],
        rotation=RotationConfig(
            update_interval_hours=interval_hours,
            port_min=port_min,
            port_max=port_max,
        ),
        retry=RetryConfig(max_attempts=max_attempts),
        seed=SeedConfig(domains=list(seed_domains or [])),
    )


def make_service(
    directory: str,
    allocator: Optional[PortAllocator] = None,
    logger: Optional[NullLogger] = None,
    **config_overrides,
) -> RotatorService:
    """A service over a fresh database with all record tables created."""
    service = RotatorService(
        make_config(directory, **config_overrides),
        logger=logger or NullLogger(),
        allocator=allocator,
    )
    service.migrate(create_tables=True)
    return service


def insert_record(
    service: RotatorService,
    kind: str,
    record_id: int,
    port: int = 8080,
    host: str = "",
    next_update_time: int = 0,
    status: str = "",
) -> None:
    table = service.records.table_for(kind)
    with service.database.transaction() as conn:
        conn.execute(
            f'INSERT INTO {table} (id, name, port, server_port, host, "show", '
            "next_update_time, last_update_status) VALUES (?, ?, ?, ?, ?, 1, ?, ?)",
            (record_id, f"{kind}-{record_id}", str(port), port, host, next_update_time, status),
        )


def add_entry(
    service: RotatorService,
    kind: str,
    record_id: int,
    domain: str,
    in_use: bool = False,
    last_used_time: int = 0,
) -> int:
    """Insert a pool entry with explicit usage state. Returns its id."""
    with service.database.transaction() as conn:
        entry = service.pool.add(conn, kind, record_id, domain)
        conn.execute(
            "UPDATE server_domains SET in_use = ?, last_used_time = ? WHERE id = ?",
            (int(in_use), last_used_time, entry.id),
        )
    return entry.id


def get_record(service: RotatorService, kind: str, record_id: int):
    with service.database.reader() as conn:
        return service.records.get(conn, kind, record_id)


def get_entries(service: RotatorService, kind: str, record_id: int) -> dict:
    """Pool entries of a record keyed by domain."""
    with service.database.reader() as conn:
        return {e.domain: e for e in service.pool.list_domains(conn, kind, record_id)}


class FixedPortAllocator(PortAllocator):
    """Returns the given ports in order, then falls back to random picks."""

    def __init__(self, ports: list[int]) -> None:
        super().__init__()
        self._ports = list(ports)

    def pick(self, port_min: int, port_max: int, exclude: int) -> int:
        if self._ports:
            return self._ports.pop(0)
        return super().pick(port_min, port_max, exclude)
