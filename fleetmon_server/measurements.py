import logging
import math
from dataclasses import dataclass
from datetime import datetime
from numbers import Real
from typing import Optional

from fleetmon_server.errors import ValidationError
from fleetmon_server.models import Measurement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Sample:
    """One raw hardware-health reading as pushed by a collector."""

    cpu_usage_percent: float
    ram_used_mb: int
    ram_total_mb: int
    disk_used_gb: float
    disk_total_gb: float
    uptime_minutes: int
    timestamp: Optional[datetime] = None


NON_NEGATIVE_FIELDS = (
    "ram_used_mb",
    "ram_total_mb",
    "disk_used_gb",
    "disk_total_gb",
    "uptime_minutes",
)


def _check_number(field, value):
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValidationError(field, f"expected a number, got {value!r}")
    if not math.isfinite(value):
        raise ValidationError(field, f"must be finite, got {value!r}")


def validate_sample(sample):
    _check_number("cpu_usage_percent", sample.cpu_usage_percent)
    if not 0 <= sample.cpu_usage_percent <= 100:
        raise ValidationError(
            "cpu_usage_percent",
            f"must be between 0 and 100, got {sample.cpu_usage_percent}",
        )
    for field in NON_NEGATIVE_FIELDS:
        value = getattr(sample, field)
        _check_number(field, value)
        if value < 0:
            raise ValidationError(field, f"must not be negative, got {value}")
    if sample.timestamp is not None and not isinstance(sample.timestamp, datetime):
        raise ValidationError("timestamp", f"expected a datetime, got {sample.timestamp!r}")


def record_measurement(session, computer_id, sample, clock=datetime.now):
    """Validate ``sample`` and store it for ``computer_id``; return the new id.

    Rule evaluation is not triggered here, the ingestion gateway sequences it.
    """
    validate_sample(sample)
    measurement = Measurement(
        computer_id=computer_id,
        timestamp=sample.timestamp or clock(),
        cpu_usage_percent=float(sample.cpu_usage_percent),
        ram_used_mb=int(sample.ram_used_mb),
        ram_total_mb=int(sample.ram_total_mb),
        disk_used_gb=float(sample.disk_used_gb),
        disk_total_gb=float(sample.disk_total_gb),
        uptime_minutes=int(sample.uptime_minutes),
    )
    session.add(measurement)
    session.flush()
    logger.debug("Stored measurement %s for computer %s", measurement.id, computer_id)
    return measurement.id
