import logging

from sqlalchemy import select

from fleetmon_server.errors import StorageError
from fleetmon_server.models import Category

logger = logging.getLogger(__name__)

HIGH_CPU = "HighCPU"
HIGH_RAM = "HighRAM"
LOW_DISK = "LowDisk"
HEALTHY = "Healthy"

CATEGORY_NAMES = (HIGH_CPU, HIGH_RAM, LOW_DISK, HEALTHY)


def seed_categories(session):
    """Insert the fixed category names that are not registered yet."""
    existing = set(session.scalars(select(Category.name)))
    missing = [name for name in CATEGORY_NAMES if name not in existing]
    for name in missing:
        session.add(Category(name=name))
    if missing:
        session.flush()
        logger.info("Registered categories: %s", ", ".join(missing))
    return missing


def category_id(session, name):
    found = session.scalar(select(Category.id).where(Category.name == name))
    if found is None:
        raise StorageError(f"category {name!r} is not registered")
    return found
