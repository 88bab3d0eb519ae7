"""Read models for the dashboard.

Every call runs its own read-only query and recomputes from committed rows;
nothing is cached. Percentages never divide by zero: an empty denominator
yields 0.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from fleetmon_server.categories import HEALTHY
from fleetmon_server.errors import AggregationError
from fleetmon_server.models import Computer, Measurement, WarningRecord, usage_percent

logger = logging.getLogger(__name__)

WINDOW_DAYS = 7


def percentage(count, total, digits=2):
    if not total:
        return 0.0
    return round(count * 100.0 / total, digits)


def _mean(series, digits):
    series = series.dropna()
    if series.empty:
        return 0
    return round(float(series.mean()), digits)


@dataclass(frozen=True)
class DashboardSummary:
    computer_count: int
    avg_cpu_today: float
    avg_ram_usage_today: float
    warnings_today: int
    avg_warnings_last_7_days: float

    def as_dict(self):
        return {
            "computerCount": self.computer_count,
            "avgCpuToday": self.avg_cpu_today,
            "avgRamUsageToday": self.avg_ram_usage_today,
            "warningsToday": self.warnings_today,
            "avgWarningsLast7Days": self.avg_warnings_last_7_days,
        }


@dataclass(frozen=True)
class DailyCpu:
    day: date
    avg_cpu_usage: float

    def as_dict(self):
        return {"day": self.day.isoformat(), "avgCpuUsage": self.avg_cpu_usage}


@dataclass(frozen=True)
class DailyRam:
    day: date
    avg_ram_usage_percent: float

    def as_dict(self):
        return {"day": self.day.isoformat(), "avgRamUsagePercent": self.avg_ram_usage_percent}


@dataclass(frozen=True)
class WarningTypeStat:
    warning_type: str
    count: int
    percentage: float

    def as_dict(self):
        return {"warningType": self.warning_type, "count": self.count, "percentage": self.percentage}


@dataclass(frozen=True)
class OperatingSystemStat:
    operating_system: Optional[str]
    count: int
    percentage: float

    def as_dict(self):
        return {
            "operatingSystem": self.operating_system,
            "count": self.count,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class LatestWarning:
    warning_id: int
    measurement_id: int
    type: str
    description: Optional[str]
    severity_level: Optional[str]
    timestamp: datetime
    hostname: str

    def as_dict(self):
        return {
            "warningId": self.warning_id,
            "measurementId": self.measurement_id,
            "type": self.type,
            "description": self.description,
            "severityLevel": self.severity_level,
            "timestamp": self.timestamp.isoformat(),
            "hostname": self.hostname,
        }


@dataclass(frozen=True)
class LatestMeasurement:
    hostname: str
    cpu_usage_percent: float
    ram_usage_percent: Optional[int]
    disk_usage_percent: Optional[int]
    uptime_minutes: int
    uptime_hours: float
    timestamp: datetime

    def as_dict(self):
        return {
            "hostname": self.hostname,
            "cpuUsagePercent": self.cpu_usage_percent,
            "ramUsagePercent": self.ram_usage_percent,
            "diskUsagePercent": self.disk_usage_percent,
            "uptimeHours": self.uptime_hours,
            "timestamp": self.timestamp.isoformat(),
        }


def _truncate(value):
    return None if value is None else int(value)


class AggregationService:
    def __init__(self, session_factory, clock=datetime.now):
        self.session_factory = session_factory
        self.clock = clock

    def _today(self):
        now = self.clock()
        return datetime.combine(now.date(), datetime.min.time())

    def _window_start(self):
        return self._today() - timedelta(days=WINDOW_DAYS)

    def _run(self, name, query):
        try:
            with self.session_factory() as session:
                return query(session)
        except SQLAlchemyError as exc:
            logger.error("Aggregation %s failed: %s", name, exc)
            raise AggregationError(f"{name} query failed: {exc}") from exc

    def _measurements_since(self, session, start, end=None):
        stmt = select(
            Measurement.id,
            Measurement.timestamp,
            Measurement.cpu_usage_percent,
            Measurement.ram_used_mb,
            Measurement.ram_total_mb,
        ).where(Measurement.timestamp >= start)
        if end is not None:
            stmt = stmt.where(Measurement.timestamp < end)
        df = pd.read_sql(stmt, session.connection(), parse_dates=["timestamp"])
        if df.empty:
            df["ram_usage_percent"] = pd.Series(dtype="float64")
            df["day"] = pd.Series(dtype="object")
            return df
        total = df["ram_total_mb"].where(df["ram_total_mb"] > 0)
        df["ram_usage_percent"] = df["ram_used_mb"] * 100.0 / total
        df["day"] = df["timestamp"].dt.date
        return df

    def _warnings_since(self, session, start):
        stmt = (
            select(
                WarningRecord.id,
                WarningRecord.type,
                WarningRecord.measurement_id,
                Measurement.timestamp,
            )
            .join(Measurement, Measurement.id == WarningRecord.measurement_id)
            .where(Measurement.timestamp >= start)
        )
        df = pd.read_sql(stmt, session.connection(), parse_dates=["timestamp"])
        df["day"] = df["timestamp"].dt.date if not df.empty else pd.Series(dtype="object")
        return df

    def dashboard_summary(self):
        def query(session):
            today = self._today()
            tomorrow = today + timedelta(days=1)
            computer_count = session.scalar(select(func.count(Computer.id))) or 0

            measurements = self._measurements_since(session, today, tomorrow)
            warnings = self._warnings_since(session, self._window_start())

            if warnings.empty:
                warnings_today = 0
            else:
                stamps = warnings["timestamp"]
                warnings_today = int(((stamps >= today) & (stamps < tomorrow)).sum())
            previous = warnings[warnings["timestamp"] < today] if not warnings.empty else warnings
            if previous.empty:
                avg_warnings = 0
            else:
                avg_warnings = round(float(previous.groupby("day").size().mean()), 1)

            return DashboardSummary(
                computer_count=computer_count,
                avg_cpu_today=_mean(measurements["cpu_usage_percent"], 0),
                avg_ram_usage_today=_mean(measurements["ram_usage_percent"], 0),
                warnings_today=warnings_today,
                avg_warnings_last_7_days=avg_warnings,
            )

        return self._run("dashboard_summary", query)

    def daily_cpu_rollup(self) -> List[DailyCpu]:
        def query(session):
            df = self._measurements_since(session, self._window_start())
            if df.empty:
                return []
            daily = df.groupby("day")["cpu_usage_percent"].mean().sort_index()
            return [DailyCpu(day=day, avg_cpu_usage=round(float(avg), 2)) for day, avg in daily.items()]

        return self._run("daily_cpu_rollup", query)

    def daily_ram_rollup(self) -> List[DailyRam]:
        def query(session):
            df = self._measurements_since(session, self._window_start())
            if df.empty:
                return []
            daily = df.groupby("day")["ram_usage_percent"].mean().dropna().sort_index()
            return [
                DailyRam(day=day, avg_ram_usage_percent=round(float(avg), 2))
                for day, avg in daily.items()
            ]

        return self._run("daily_ram_rollup", query)

    def warning_type_breakdown(self) -> List[WarningTypeStat]:
        def query(session):
            start = self._window_start()
            measurements = self._measurements_since(session, start)
            warnings = self._warnings_since(session, start)

            counts = {}
            if not warnings.empty:
                counts = {str(k): int(v) for k, v in warnings.groupby("type").size().items()}
            warned = set(warnings["measurement_id"]) if not warnings.empty else set()
            healthy = int((~measurements["id"].isin(warned)).sum()) if not measurements.empty else 0
            if healthy > 0:
                counts[HEALTHY] = healthy

            total = sum(counts.values())
            rows = [
                WarningTypeStat(warning_type=name, count=count, percentage=percentage(count, total))
                for name, count in counts.items()
            ]
            rows.sort(key=lambda row: (-row.count, row.warning_type))
            return rows

        return self._run("warning_type_breakdown", query)

    def os_distribution(self) -> List[OperatingSystemStat]:
        def query(session):
            grouped = session.execute(
                select(Computer.operating_system, func.count(Computer.id)).group_by(
                    Computer.operating_system
                )
            ).all()
            total = sum(count for _, count in grouped)
            rows = [
                OperatingSystemStat(
                    operating_system=name, count=count, percentage=percentage(count, total)
                )
                for name, count in grouped
            ]
            rows.sort(key=lambda row: (-row.count, row.operating_system or ""))
            return rows

        return self._run("os_distribution", query)

    def latest_warnings(self, limit=10) -> List[LatestWarning]:
        def query(session):
            stmt = (
                select(WarningRecord, Measurement.timestamp, Computer.hostname)
                .join(Measurement, Measurement.id == WarningRecord.measurement_id)
                .join(Computer, Computer.id == Measurement.computer_id)
                .order_by(Measurement.timestamp.desc(), WarningRecord.id.desc())
                .limit(limit)
            )
            return [
                LatestWarning(
                    warning_id=warning.id,
                    measurement_id=warning.measurement_id,
                    type=warning.type,
                    description=warning.description,
                    severity_level=warning.severity_level,
                    timestamp=timestamp,
                    hostname=hostname,
                )
                for warning, timestamp, hostname in session.execute(stmt)
            ]

        return self._run("latest_warnings", query)

    def latest_measurements(self, limit=10) -> List[LatestMeasurement]:
        def query(session):
            stmt = (
                select(Measurement, Computer.hostname)
                .join(Computer, Computer.id == Measurement.computer_id)
                .order_by(Measurement.timestamp.desc(), Measurement.id.desc())
                .limit(limit)
            )
            return [
                LatestMeasurement(
                    hostname=hostname,
                    cpu_usage_percent=m.cpu_usage_percent,
                    ram_usage_percent=_truncate(usage_percent(m.ram_used_mb, m.ram_total_mb)),
                    disk_usage_percent=_truncate(usage_percent(m.disk_used_gb, m.disk_total_gb)),
                    uptime_minutes=m.uptime_minutes,
                    uptime_hours=m.uptime_hours,
                    timestamp=m.timestamp,
                )
                for m, hostname in session.execute(stmt)
            ]

        return self._run("latest_measurements", query)
