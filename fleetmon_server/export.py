"""Writes the dashboard snapshot consumed by external renderers.

Run ``python -m fleetmon_server.export`` to refresh the JSON file.
"""

import argparse
import json
import logging
import os
import tempfile
from datetime import datetime

from fleetmon_server.aggregation import AggregationService
from fleetmon_server.config import Settings, configure_logging
from fleetmon_server.database import make_engine, make_session_factory
from fleetmon_server.errors import FleetMonitorError

logger = logging.getLogger(__name__)


def build_snapshot(service, latest_limit=10, clock=datetime.now):
    return {
        "lastUpdated": clock().isoformat(timespec="seconds"),
        "summary": service.dashboard_summary().as_dict(),
        "osStats": [row.as_dict() for row in service.os_distribution()],
        "warnings": [row.as_dict() for row in service.latest_warnings(latest_limit)],
        "measurements": [row.as_dict() for row in service.latest_measurements(latest_limit)],
        "cpu7Days": [row.as_dict() for row in service.daily_cpu_rollup()],
        "ram7Days": [row.as_dict() for row in service.daily_ram_rollup()],
        "warningStats": [row.as_dict() for row in service.warning_type_breakdown()],
    }


def write_snapshot(snapshot, path):
    """Write ``snapshot`` as JSON, replacing ``path`` only once fully written."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".snapshot-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(snapshot, fh, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        os.unlink(tmp_path)
        raise
    logger.info("Snapshot written to %s", path)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Export the dashboard snapshot as JSON")
    parser.add_argument("--output", help="target file (default: FLEETMON_EXPORT_PATH)")
    parser.add_argument("--limit", type=int, help="number of latest warnings/measurements")
    args = parser.parse_args(argv)
    if args.limit is not None and args.limit < 1:
        parser.error(f"--limit must be at least 1, got {args.limit}")

    try:
        settings = Settings.from_env()
    except FleetMonitorError as exc:
        parser.error(str(exc))
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    service = AggregationService(make_session_factory(engine))
    try:
        snapshot = build_snapshot(
            service, args.limit if args.limit is not None else settings.latest_limit
        )
        write_snapshot(snapshot, args.output or settings.export_path)
    except FleetMonitorError as exc:
        logger.error("Export failed: %s", exc)
        return 1
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
