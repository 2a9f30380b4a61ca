import uuid

from sqlalchemy import JSON, Boolean, Column, Float, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from .database import Base, UTCDateTime, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class User(TimestampMixin, Base):
    """A dashboard user; every user can be scheduled as a pilot."""

    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    phone = Column(String(50), nullable=False)
    password_hash = Column(String(255), nullable=False)
    schedules = relationship("Schedule", back_populates="pilot")


class Site(TimestampMixin, Base):
    __tablename__ = "sites"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    description = Column(String(2000), nullable=True)
    site_manager = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False)
    code = Column(String(50), nullable=True)
    emirate = Column(String(100), nullable=True, index=True)
    city = Column(String(100), nullable=True, index=True)
    asset_type = Column(String(30), nullable=True)
    glass_surface_type = Column(String(30), nullable=True)
    max_approved_pressure = Column(Float, nullable=True)
    height = Column(Float, nullable=True)
    panel_width = Column(Float, nullable=True)
    panel_height = Column(Float, nullable=True)
    tether_required = Column(Boolean, nullable=True)
    estimated_time = Column(Float, nullable=True)
    actual_time = Column(Float, nullable=True)
    access_constraints = Column(JSON, nullable=True)
    jobs = relationship("Job", back_populates="site")


class Job(TimestampMixin, Base):
    __tablename__ = "jobs"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    site = relationship("Site", back_populates="jobs")
    schedules = relationship("Schedule", back_populates="job", order_by="Schedule.start_at")


class Drone(TimestampMixin, Base):
    __tablename__ = "drones"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    serial_number = Column(String(100), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False, default="AVAILABLE")
    schedules = relationship("Schedule", back_populates="drone", order_by="Schedule.start_at")


class Schedule(TimestampMixin, Base):
    __tablename__ = "schedules"
    id = Column(String(36), primary_key=True, default=new_id)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="RESTRICT"), nullable=False, index=True)
    pilot_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    drone_id = Column(String(36), ForeignKey("drones.id", ondelete="RESTRICT"), nullable=False)
    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)
    status = Column(String(20), nullable=False, default="ASSIGNED")
    job = relationship("Job", back_populates="schedules")
    pilot = relationship("User", back_populates="schedules")
    drone = relationship("Drone", back_populates="schedules")

    __table_args__ = (
        Index("ix_schedules_pilot_window", "pilot_id", "start_at", "end_at"),
        Index("ix_schedules_drone_window", "drone_id", "start_at", "end_at"),
    )
