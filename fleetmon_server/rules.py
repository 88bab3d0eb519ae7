"""Threshold rules evaluated against every freshly stored measurement.

The threshold rules run in table order; each match records one warning and
links the matching category. The closing rule runs strictly afterwards and
tags the measurement ``Healthy`` only when no warning exists for it, so a
measurement always ends up with at least one category and never carries
``Healthy`` next to a warning.

Evaluation writes through the caller's session and never commits: the
ingestion gateway runs it in the same transaction as the measurement insert.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from fleetmon_server import categories
from fleetmon_server.errors import DuplicateWarningError, StorageError
from fleetmon_server.models import Category, Measurement, MeasurementCategory
from fleetmon_server.warning_store import record_warning, warning_exists

logger = logging.getLogger(__name__)

CPU_THRESHOLD = 80
RAM_THRESHOLD = 80
DISK_THRESHOLD = 90

SEVERITY_HIGH = "High"


@dataclass(frozen=True)
class Rule:
    name: str
    category: str
    description: str
    severity: str
    predicate: Callable[[Measurement], bool]

    def matches(self, measurement):
        return bool(self.predicate(measurement))


def _above(value, threshold):
    # an undefined ratio (zero total) never matches
    return value is not None and value > threshold


DEFAULT_RULES = (
    Rule(
        name="HighCPU",
        category=categories.HIGH_CPU,
        description=f"CPU usage > {CPU_THRESHOLD}%",
        severity=SEVERITY_HIGH,
        predicate=lambda m: _above(m.cpu_usage_percent, CPU_THRESHOLD),
    ),
    Rule(
        name="HighRAM",
        category=categories.HIGH_RAM,
        description=f"RAM usage > {RAM_THRESHOLD}%",
        severity=SEVERITY_HIGH,
        predicate=lambda m: _above(m.ram_usage_percent, RAM_THRESHOLD),
    ),
    Rule(
        name="LowDisk",
        category=categories.LOW_DISK,
        description=f"Disk usage > {DISK_THRESHOLD}%",
        severity=SEVERITY_HIGH,
        predicate=lambda m: _above(m.disk_usage_percent, DISK_THRESHOLD),
    ),
)


@dataclass(frozen=True)
class EvaluationResult:
    measurement_id: int
    fired: Tuple[str, ...]
    categories: Tuple[str, ...]

    @property
    def healthy(self):
        return not self.fired


class RuleEvaluator:
    def __init__(self, rules=DEFAULT_RULES):
        names = [rule.name for rule in rules]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate rule names: {names}")
        self.rules = tuple(rules)

    def evaluate(self, session, measurement):
        """Apply every rule to ``measurement`` inside the caller's transaction.

        Safe to call again for the same measurement: warnings and tags that
        already exist are left alone.
        """
        try:
            return self._evaluate(session, measurement)
        except SQLAlchemyError as exc:
            raise StorageError(
                f"rule evaluation failed for measurement {measurement.id}: {exc}"
            ) from exc

    def _evaluate(self, session, measurement):
        fired = []
        for rule in self.rules:
            if not rule.matches(measurement):
                continue
            fired.append(rule.name)
            try:
                record_warning(
                    session, measurement.id, rule.name, rule.description, rule.severity
                )
            except DuplicateWarningError:
                logger.debug(
                    "Measurement %s already has a %s warning", measurement.id, rule.name
                )
            self._link(session, measurement.id, rule.category)

        # closing rule: must observe the warnings written above
        if not warning_exists(session, measurement.id):
            self._link(session, measurement.id, categories.HEALTHY)

        session.flush()
        return EvaluationResult(
            measurement_id=measurement.id,
            fired=tuple(fired),
            categories=tuple(linked_categories(session, measurement.id)),
        )

    def _link(self, session, measurement_id, category_name):
        category_id = categories.category_id(session, category_name)
        if session.get(MeasurementCategory, (measurement_id, category_id)) is not None:
            return
        session.add(MeasurementCategory(measurement_id=measurement_id, category_id=category_id))
        session.flush()


def linked_categories(session, measurement_id):
    return list(
        session.scalars(
            select(Category.name)
            .join(MeasurementCategory, MeasurementCategory.category_id == Category.id)
            .where(MeasurementCategory.measurement_id == measurement_id)
            .order_by(Category.id)
        )
    )


def evaluate_measurement(session_factory, measurement_id, evaluator=None):
    """Re-run evaluation for a stored measurement in its own transaction."""
    evaluator = evaluator or RuleEvaluator()
    try:
        with session_factory() as session, session.begin():
            measurement = session.get(Measurement, measurement_id)
            if measurement is None:
                raise StorageError(f"measurement {measurement_id} does not exist")
            return evaluator.evaluate(session, measurement)
    except SQLAlchemyError as exc:
        raise StorageError(f"could not evaluate measurement {measurement_id}: {exc}") from exc
