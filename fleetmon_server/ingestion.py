import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from fleetmon_server.errors import FleetMonitorError, IngestionError, ValidationError
from fleetmon_server.measurements import record_measurement, validate_sample
from fleetmon_server.models import Computer, Measurement
from fleetmon_server.rules import RuleEvaluator

logger = logging.getLogger(__name__)

UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def register_computer(session, hostname, ip_address, operating_system, now):
    """Insert the computer on first contact, otherwise touch ``last_contact`` only.

    Returns the computer id.
    """
    insert = UPSERT_DIALECTS.get(session.get_bind().dialect.name)
    if insert is not None:
        stmt = insert(Computer).values(
            hostname=hostname,
            ip_address=ip_address,
            operating_system=operating_system,
            last_contact=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Computer.hostname],
            set_={"last_contact": stmt.excluded.last_contact},
        ).returning(Computer.id)
        return session.execute(stmt).scalar_one()

    computer = session.scalar(select(Computer).where(Computer.hostname == hostname))
    if computer is None:
        computer = Computer(
            hostname=hostname,
            ip_address=ip_address,
            operating_system=operating_system,
            last_contact=now,
        )
        session.add(computer)
    else:
        computer.last_contact = now
    session.flush()
    return computer.id


class IngestionGateway:
    """Accepts samples from collectors and stores them with their rule outcomes.

    The computer upsert, the measurement insert and the rule evaluation share
    one transaction: a failed call leaves the store exactly as it was.
    """

    def __init__(self, session_factory, evaluator=None, clock=datetime.now):
        self.session_factory = session_factory
        self.evaluator = evaluator or RuleEvaluator()
        self.clock = clock

    def ingest(self, hostname, ip, os, sample):
        hostname = (hostname or "").strip()
        if not hostname:
            raise ValidationError("hostname", "must not be empty")
        validate_sample(sample)

        now = self.clock()
        try:
            with self.session_factory() as session, session.begin():
                computer_id = register_computer(session, hostname, ip, os, now)
                measurement_id = record_measurement(
                    session, computer_id, sample, clock=lambda: now
                )
                measurement = session.get(Measurement, measurement_id)
                result = self.evaluator.evaluate(session, measurement)
        except ValidationError:
            raise
        except (SQLAlchemyError, FleetMonitorError) as exc:
            logger.error("Ingestion failed for %s: %s", hostname, exc)
            raise IngestionError(f"could not ingest sample from {hostname}: {exc}") from exc

        logger.info(
            "Ingested measurement %s from %s: %s",
            measurement_id,
            hostname,
            ", ".join(result.fired) if result.fired else "healthy",
        )
        return measurement_id
