"""Shared fixtures: an in-memory SQLite store with the schema and categories in place."""

import logging
from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from fleetmon_server.aggregation import AggregationService
from fleetmon_server.create_tables import create_schema
from fleetmon_server.database import make_engine, make_session_factory
from fleetmon_server.ingestion import IngestionGateway
from fleetmon_server.measurements import Sample

logging.getLogger("fleetmon_server").setLevel(logging.WARNING)

NOW = datetime(2026, 10, 19, 12, 0, 0)


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def engine():
    engine = make_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def gateway(session_factory, clock):
    return IngestionGateway(session_factory, clock=clock)


@pytest.fixture()
def aggregation(session_factory, clock):
    return AggregationService(session_factory, clock=clock)


@pytest.fixture()
def count_rows(session_factory):
    def count(model):
        with session_factory() as session:
            return session.scalar(select(func.count()).select_from(model))

    return count


def make_sample(cpu=10.0, ram_used=100, ram_total=1000, disk_used=5.0, disk_total=100.0,
                uptime=90, timestamp=None):
    return Sample(
        cpu_usage_percent=cpu,
        ram_used_mb=ram_used,
        ram_total_mb=ram_total,
        disk_used_gb=disk_used,
        disk_total_gb=disk_total,
        uptime_minutes=uptime,
        timestamp=timestamp,
    )
