import logging

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError

from fleetmon_server.errors import DuplicateWarningError
from fleetmon_server.models import WarningRecord

logger = logging.getLogger(__name__)


def warning_exists(session, measurement_id, warning_type=None):
    query = select(WarningRecord.id).where(WarningRecord.measurement_id == measurement_id)
    if warning_type is not None:
        query = query.where(WarningRecord.type == warning_type)
    return session.scalar(select(exists(query)))


def warnings_for(session, measurement_id):
    return list(
        session.scalars(
            select(WarningRecord).where(WarningRecord.measurement_id == measurement_id).order_by(WarningRecord.id)
        )
    )


def record_warning(session, measurement_id, warning_type, description, severity):
    if warning_exists(session, measurement_id, warning_type):
        raise DuplicateWarningError(measurement_id, warning_type)

    warning = WarningRecord(
        measurement_id=measurement_id,
        type=warning_type,
        description=description,
        severity_level=severity,
    )
    session.add(warning)
    try:
        session.flush()
    except IntegrityError as exc:
        # the unique constraint caught a concurrent writer
        raise DuplicateWarningError(measurement_id, warning_type) from exc
    logger.debug("Recorded %s warning for measurement %s", warning_type, measurement_id)
    return warning
