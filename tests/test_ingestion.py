from datetime import datetime, timedelta

import pytest
from sqlalchemy import delete, select

from conftest import make_sample
from fleetmon_server.categories import HIGH_RAM
from fleetmon_server.errors import IngestionError, StorageError, ValidationError
from fleetmon_server.ingestion import IngestionGateway
from fleetmon_server.measurements import validate_sample
from fleetmon_server.models import (
    Category,
    Computer,
    Measurement,
    MeasurementCategory,
    WarningRecord,
)

ALL_TABLES = (Computer, Measurement, WarningRecord, MeasurementCategory)


def snapshot_counts(count_rows):
    return {model.__name__: count_rows(model) for model in ALL_TABLES}


@pytest.mark.parametrize(
    "sample, field",
    [
        (make_sample(cpu=150), "cpu_usage_percent"),
        (make_sample(cpu=-0.1), "cpu_usage_percent"),
        (make_sample(cpu=float("nan")), "cpu_usage_percent"),
        (make_sample(cpu=True), "cpu_usage_percent"),
        (make_sample(ram_used=-1), "ram_used_mb"),
        (make_sample(disk_total=float("inf")), "disk_total_gb"),
        (make_sample(uptime=None), "uptime_minutes"),
    ],
)
def test_invalid_samples_are_rejected(sample, field):
    with pytest.raises(ValidationError) as excinfo:
        validate_sample(sample)
    assert excinfo.value.field == field


def test_boundary_cpu_values_are_valid():
    validate_sample(make_sample(cpu=0))
    validate_sample(make_sample(cpu=100))


def test_out_of_range_cpu_writes_nothing(gateway, count_rows):
    gateway.ingest("pc-00", "10.0.0.1", "Ubuntu", make_sample())
    before = snapshot_counts(count_rows)

    with pytest.raises(ValidationError):
        gateway.ingest("pc-01", "10.0.0.2", "Ubuntu", make_sample(cpu=150))

    assert snapshot_counts(count_rows) == before


def test_validation_error_is_an_ingestion_error(gateway):
    with pytest.raises(IngestionError):
        gateway.ingest("pc-01", "10.0.0.2", "Ubuntu", make_sample(cpu=150))


@pytest.mark.parametrize("hostname", ["", "   ", None])
def test_hostname_required(gateway, count_rows, hostname):
    with pytest.raises(ValidationError):
        gateway.ingest(hostname, "10.0.0.2", "Ubuntu", make_sample())
    assert count_rows(Computer) == 0


def test_first_contact_registers_computer(gateway, session_factory, clock):
    mid = gateway.ingest("pc-01", "10.0.0.1", "Windows 11 Pro", make_sample())

    with session_factory() as session:
        computer = session.scalar(select(Computer))
        measurement = session.get(Measurement, mid)
    assert computer.hostname == "pc-01"
    assert computer.ip_address == "10.0.0.1"
    assert computer.operating_system == "Windows 11 Pro"
    assert computer.last_contact == clock.now
    assert measurement.computer_id == computer.id
    assert measurement.timestamp == clock.now


def test_later_contact_only_touches_last_contact(gateway, session_factory, clock):
    gateway.ingest("pc-01", "10.0.0.1", "Windows 10 Pro", make_sample())
    clock.now += timedelta(minutes=5)

    gateway.ingest("pc-01", "10.0.0.99", "Windows 11 Pro", make_sample())

    with session_factory() as session:
        computers = session.scalars(select(Computer)).all()
    assert len(computers) == 1
    assert computers[0].ip_address == "10.0.0.1"
    assert computers[0].operating_system == "Windows 10 Pro"
    assert computers[0].last_contact == clock.now


def test_sample_timestamp_is_kept(gateway, session_factory):
    taken = datetime(2026, 10, 17, 8, 30)
    mid = gateway.ingest("pc-01", "10.0.0.1", "Ubuntu", make_sample(timestamp=taken))

    with session_factory() as session:
        assert session.get(Measurement, mid).timestamp == taken


class FailingEvaluator:
    def evaluate(self, session, measurement):
        raise StorageError("disk full")


def test_failed_evaluation_rolls_back_everything(session_factory, clock, count_rows):
    gateway = IngestionGateway(session_factory, evaluator=FailingEvaluator(), clock=clock)

    with pytest.raises(IngestionError) as excinfo:
        gateway.ingest("pc-01", "10.0.0.1", "Ubuntu", make_sample(cpu=99))

    assert isinstance(excinfo.value.__cause__, StorageError)
    assert set(snapshot_counts(count_rows).values()) == {0}


def test_failed_evaluation_keeps_existing_computer_untouched(gateway, session_factory, clock):
    gateway.ingest("pc-01", "10.0.0.1", "Ubuntu", make_sample())
    first_contact = clock.now
    clock.now += timedelta(hours=1)
    gateway.evaluator = FailingEvaluator()

    with pytest.raises(IngestionError):
        gateway.ingest("pc-01", "10.0.0.1", "Ubuntu", make_sample())

    with session_factory() as session:
        assert session.scalar(select(Computer.last_contact)) == first_contact
        assert len(session.scalars(select(Measurement)).all()) == 1


def test_deleting_computer_cascades(gateway, session_factory, count_rows):
    gateway.ingest("pc-01", "10.0.0.1", "Ubuntu", make_sample(cpu=95, ram_used=950))
    gateway.ingest("pc-01", "10.0.0.1", "Ubuntu", make_sample())

    with session_factory() as session, session.begin():
        session.delete(session.scalar(select(Computer)))

    assert set(snapshot_counts(count_rows).values()) == {0}


def test_failure_after_first_warning_rolls_back_everything(gateway, session_factory, count_rows):
    gateway.ingest("pc-00", "10.0.0.1", "Ubuntu", make_sample())
    with session_factory() as session, session.begin():
        session.execute(delete(Category).where(Category.name == HIGH_RAM))
    before = snapshot_counts(count_rows)

    # HighCPU is recorded first, then linking HighRAM fails
    with pytest.raises(IngestionError) as excinfo:
        gateway.ingest("pc-01", "10.0.0.2", "Ubuntu", make_sample(cpu=95, ram_used=950))

    assert isinstance(excinfo.value.__cause__, StorageError)
    assert snapshot_counts(count_rows) == before
    with session_factory() as session:
        assert session.scalar(select(Computer).where(Computer.hostname == "pc-01")) is None
