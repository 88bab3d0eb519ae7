import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from fleetmon_server import models  # noqa: F401  registers the tables on Base
from fleetmon_server.categories import seed_categories
from fleetmon_server.config import Settings, configure_logging
from fleetmon_server.database import Base, make_engine, make_session_factory
from fleetmon_server.errors import FleetMonitorError, StorageError

logger = logging.getLogger(__name__)


def create_schema(engine):
    """Create every table and register the fixed categories. Idempotent."""
    try:
        Base.metadata.create_all(bind=engine)
        session_factory = make_session_factory(engine)
        with session_factory() as session, session.begin():
            return seed_categories(session)
    except SQLAlchemyError as exc:
        raise StorageError(f"could not create schema: {exc}") from exc


def main():
    print("⏳ Setting up the database...")
    try:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        engine = make_engine(settings.database_url)
        try:
            create_schema(engine)
        finally:
            engine.dispose()
    except FleetMonitorError as exc:
        print(f"❌ ERROR: {exc}")
        return 1
    print("✅ SUCCESS! Tables and categories are ready.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
