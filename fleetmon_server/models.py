from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from fleetmon_server.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer, "sqlite")


def usage_percent(used, total):
    """Return ``used / total * 100``, or None when the total is not positive."""
    if used is None or not total or total <= 0:
        return None
    return used * 100.0 / total


class Computer(Base):
    __tablename__ = "computers"

    id = Column(IdType, primary_key=True)
    hostname = Column(String(255), unique=True, index=True, nullable=False)
    ip_address = Column(String(50))
    operating_system = Column(String(100))
    created_at = Column(DateTime, server_default=func.now())
    last_contact = Column(DateTime)

    measurements = relationship(
        "Measurement",
        back_populates="computer",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Computer {self.id} {self.hostname!r}>"


class Measurement(Base):
    __tablename__ = "measurements"
    __table_args__ = (
        CheckConstraint(
            "cpu_usage_percent >= 0 AND cpu_usage_percent <= 100", name="ck_measurement_cpu"
        ),
        CheckConstraint("ram_used_mb >= 0", name="ck_measurement_ram_used"),
        CheckConstraint("ram_total_mb >= 0", name="ck_measurement_ram_total"),
        CheckConstraint("disk_used_gb >= 0", name="ck_measurement_disk_used"),
        CheckConstraint("disk_total_gb >= 0", name="ck_measurement_disk_total"),
        CheckConstraint("uptime_minutes >= 0", name="ck_measurement_uptime"),
    )

    id = Column(IdType, primary_key=True)
    computer_id = Column(
        IdType, ForeignKey("computers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    timestamp = Column(DateTime, nullable=False, server_default=func.now(), index=True)
    cpu_usage_percent = Column(Float, nullable=False)
    ram_used_mb = Column(BigInteger, nullable=False)
    ram_total_mb = Column(BigInteger, nullable=False)
    disk_used_gb = Column(Float, nullable=False)
    disk_total_gb = Column(Float, nullable=False)
    uptime_minutes = Column(BigInteger, nullable=False)

    computer = relationship("Computer", back_populates="measurements")
    warnings = relationship(
        "WarningRecord",
        back_populates="measurement",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WarningRecord.id",
    )
    category_links = relationship(
        "MeasurementCategory",
        back_populates="measurement",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def ram_usage_percent(self):
        return usage_percent(self.ram_used_mb, self.ram_total_mb)

    @property
    def disk_usage_percent(self):
        return usage_percent(self.disk_used_gb, self.disk_total_gb)

    @property
    def uptime_hours(self):
        return round(self.uptime_minutes / 60.0, 1)

    def __repr__(self):
        return f"<Measurement {self.id} computer={self.computer_id} cpu={self.cpu_usage_percent}>"


class Category(Base):
    __tablename__ = "categories"

    id = Column(IdType, primary_key=True)
    name = Column(String(50), unique=True, nullable=False)

    def __repr__(self):
        return f"<Category {self.name}>"


class WarningRecord(Base):
    __tablename__ = "warnings"
    __table_args__ = (
        UniqueConstraint("measurement_id", "type", name="uq_warning_measurement_type"),
    )

    id = Column(IdType, primary_key=True)
    measurement_id = Column(
        IdType, ForeignKey("measurements.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(String(50), nullable=False)
    description = Column(Text)
    severity_level = Column(String(20))

    measurement = relationship("Measurement", back_populates="warnings")

    def __repr__(self):
        return f"<WarningRecord {self.type} measurement={self.measurement_id}>"


class MeasurementCategory(Base):
    __tablename__ = "measurement_categories"

    measurement_id = Column(
        IdType, ForeignKey("measurements.id", ondelete="CASCADE"), primary_key=True
    )
    category_id = Column(
        IdType, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True, index=True
    )

    measurement = relationship("Measurement", back_populates="category_links")
    category = relationship("Category")
