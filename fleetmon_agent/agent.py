import logging
import os
import platform
import socket
import time

import psutil

from fleetmon_server.config import Settings, configure_logging
from fleetmon_server.database import make_engine, make_session_factory
from fleetmon_server.errors import IngestionError
from fleetmon_server.ingestion import IngestionGateway
from fleetmon_server.measurements import Sample

logger = logging.getLogger(__name__)

MB = 1024 ** 2
GB = 1024 ** 3


def disk_root():
    return os.path.abspath(os.sep)


def collect_sample(cpu_interval=0.5):
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(disk_root())
    uptime_seconds = max(time.time() - psutil.boot_time(), 0)
    return Sample(
        cpu_usage_percent=psutil.cpu_percent(interval=cpu_interval),
        ram_used_mb=int(memory.used // MB),
        ram_total_mb=int(memory.total // MB),
        disk_used_gb=round(disk.used / GB, 2),
        disk_total_gb=round(disk.total / GB, 2),
        uptime_minutes=int(uptime_seconds // 60),
    )


def host_identity():
    """Return ``(hostname, ip_address, operating_system)`` for this machine."""
    if hasattr(os, "uname"):
        hostname = os.uname().nodename
    else:
        hostname = os.environ.get("COMPUTERNAME", "Unknown")
    try:
        ip_address = socket.gethostbyname(hostname)
    except OSError:
        ip_address = None
    operating_system = f"{platform.system()} {platform.release()}".strip()
    return hostname, ip_address, operating_system


def run(gateway, interval, iterations=None, sleep=time.sleep, collect=collect_sample):
    hostname, ip_address, operating_system = host_identity()
    logger.info("Agent started on %s (%s), sampling every %ss", hostname, operating_system, interval)

    done = 0
    while iterations is None or done < iterations:
        sample = collect()
        try:
            measurement_id = gateway.ingest(hostname, ip_address, operating_system, sample)
        except IngestionError as exc:
            logger.warning("Sample from %s not stored: %s", hostname, exc)
        else:
            logger.info(
                "Stored measurement %s | CPU: %s%% | RAM: %s/%s MB",
                measurement_id,
                sample.cpu_usage_percent,
                sample.ram_used_mb,
                sample.ram_total_mb,
            )
        done += 1
        if iterations is None or done < iterations:
            sleep(interval)
    return done


if __name__ == "__main__":
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    engine = make_engine(settings.database_url)
    try:
        run(IngestionGateway(make_session_factory(engine)), settings.sample_interval)
    except KeyboardInterrupt:
        logger.info("Agent stopped")
    finally:
        engine.dispose()
