import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from .lifecycle import ScheduleStatus
from .utils import format_duration

T = TypeVar("T")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ApiModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


def _check_uuid(value: Optional[str], label: str) -> Optional[str]:
    if value is None:
        return value
    try:
        uuid.UUID(str(value))
    except ValueError:
        raise ValueError(f"Invalid {label}")
    return str(value)


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email")
    return value.lower()


class DataEnvelope(ApiModel, Generic[T]):
    data: T


class Page(ApiModel, Generic[T]):
    items: List[T]
    page: int
    page_size: int
    total: int
    total_pages: int


class Items(ApiModel, Generic[T]):
    items: List[T]


class MessageRead(ApiModel):
    message: str


class CountRead(ApiModel):
    count: int


# --- enums -----------------------------------------------------------------

class JobType(str, Enum):
    INSPECTION = "INSPECTION"
    CLEANING = "CLEANING"


class DroneStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    MAINTENANCE = "MAINTENANCE"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"


class AssetType(str, Enum):
    FACADE_WINDOWS = "FACADE_WINDOWS"
    SOLAR_PANELS = "SOLAR_PANELS"
    AIRCRAFT_HANGAR = "AIRCRAFT_HANGAR"
    AIRCRAFT_APRON = "AIRCRAFT_APRON"


class GlassSurfaceType(str, Enum):
    TEMPERED = "TEMPERED"
    LAMINATED = "LAMINATED"
    COATED = "COATED"
    SOLAR_MONO = "SOLAR_MONO"
    SOLAR_POLY = "SOLAR_POLY"


class AccessConstraint(str, Enum):
    ROAD_CLOSURE = "ROAD_CLOSURE"
    NIGHT_ONLY = "NIGHT_ONLY"
    WIND_CORRIDOR = "WIND_CORRIDOR"
    AIRPORT_OPS_WINDOW = "AIRPORT_OPS_WINDOW"


# --- read-side projections embedded in schedules ----------------------------

class PilotSummary(ApiModel):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class DroneSummary(ApiModel):
    id: str
    name: str
    serial_number: str
    status: Optional[DroneStatus] = None


class SiteSummary(ApiModel):
    id: str
    name: str


class JobSummary(ApiModel):
    id: str
    name: str
    site_id: Optional[str] = None
    type: Optional[JobType] = None
    site: Optional[SiteSummary] = None


# --- auth / users ----------------------------------------------------------

class RegisterInput(ApiModel):
    name: str = Field(min_length=1)
    email: str
    phone: str = Field(min_length=6)
    password: str = Field(min_length=8)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class LoginInput(ApiModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class UserRead(ApiModel):
    id: str
    name: str
    email: str
    phone: str


class UserBody(ApiModel):
    user: UserRead


# --- schedules -------------------------------------------------------------

class ScheduleCreate(ApiModel):
    job_id: str
    pilot_id: str
    drone_id: str
    start_at: datetime
    end_at: datetime
    status: Optional[ScheduleStatus] = None

    @field_validator("job_id", "pilot_id", "drone_id")
    @classmethod
    def validate_reference(cls, v, info):
        return _check_uuid(v, info.field_name.replace("_id", ""))


class ScheduleUpdate(ApiModel):
    pilot_id: Optional[str] = None
    drone_id: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    status: Optional[ScheduleStatus] = None

    @field_validator("pilot_id", "drone_id")
    @classmethod
    def validate_reference(cls, v, info):
        return _check_uuid(v, info.field_name.replace("_id", ""))


class ScheduleRead(ApiModel):
    id: str
    job_id: str
    pilot_id: str
    drone_id: str
    status: ScheduleStatus
    start_at: datetime
    end_at: datetime
    created_at: datetime
    updated_at: datetime
    job: Optional[JobSummary] = None
    pilot: Optional[PilotSummary] = None
    drone: Optional[DroneSummary] = None

    @computed_field(alias="durationDisplay")
    @property
    def duration_display(self) -> str:
        return format_duration(self.end_at - self.start_at)


class ScheduleBody(ApiModel):
    schedule: ScheduleRead


class BusyResources(ApiModel):
    pilots: List[str] = []
    drones: List[str] = []


class AvailabilityRead(ApiModel):
    start_at: datetime
    end_at: datetime
    available_pilots: List[PilotSummary]
    available_drones: List[DroneSummary]
    busy: BusyResources


class ResourceScheduleRead(ApiModel):
    """Schedule as embedded under a job or drone."""

    id: str
    start_at: datetime
    end_at: datetime
    status: ScheduleStatus
    pilot: Optional[PilotSummary] = None
    drone: Optional[DroneSummary] = None
    job: Optional[JobSummary] = None


# --- drones ----------------------------------------------------------------

class DroneCreate(ApiModel):
    name: str = Field(min_length=1)
    serial_number: str = Field(min_length=3)
    status: Optional[DroneStatus] = None


class DroneUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    serial_number: Optional[str] = Field(None, min_length=3)
    status: Optional[DroneStatus] = None


class DroneRead(ApiModel):
    id: str
    name: str
    serial_number: str
    status: DroneStatus
    created_at: datetime
    updated_at: datetime


class DroneWithSchedules(DroneRead):
    schedules: List[ResourceScheduleRead] = []


class DroneBody(ApiModel):
    drone: DroneWithSchedules


# --- jobs ------------------------------------------------------------------

class JobCreate(ApiModel):
    name: str = Field(min_length=1)
    site_id: str
    type: JobType

    @field_validator("site_id")
    @classmethod
    def validate_site(cls, v):
        return _check_uuid(v, "site")


class JobUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    type: Optional[JobType] = None


class JobRead(ApiModel):
    id: str
    name: str
    site_id: str
    type: JobType
    created_at: datetime
    updated_at: datetime
    site: Optional[SiteSummary] = None


class JobWithSchedules(JobRead):
    schedules: List[ResourceScheduleRead] = []


class JobBody(ApiModel):
    job: JobWithSchedules


# --- sites -----------------------------------------------------------------

class SiteFields(ApiModel):
    email: Optional[str] = None
    description: Optional[str] = Field(None, alias="Description")
    code: Optional[str] = None
    emirate: Optional[str] = None
    city: Optional[str] = None
    asset_type: Optional[AssetType] = None
    glass_surface_type: Optional[GlassSurfaceType] = None
    max_approved_pressure: Optional[float] = Field(None, ge=0)
    height: Optional[float] = Field(None, ge=0)
    panel_width: Optional[float] = Field(None, ge=0)
    panel_height: Optional[float] = Field(None, ge=0)
    tether_required: Optional[bool] = None
    estimated_time: Optional[float] = Field(None, ge=0)
    actual_time: Optional[float] = Field(None, ge=0)
    access_constraints: Optional[List[AccessConstraint]] = None

    @field_validator(
        "max_approved_pressure", "height", "panel_width", "panel_height",
        "estimated_time", "actual_time",
        mode="before",
    )
    @classmethod
    def blank_number_is_none(cls, v):
        # form inputs send "" for an empty number field
        if v == "":
            return None
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class SiteCreate(SiteFields):
    name: str = Field(min_length=1)
    site_manager: str = Field(min_length=1)
    phone: str = Field(min_length=6)


class SiteUpdate(SiteFields):
    name: Optional[str] = Field(None, min_length=1)
    site_manager: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=6)

    @field_validator("name", "site_manager", "phone")
    @classmethod
    def reject_null(cls, v, info):
        # omitted keeps the stored value; an explicit null would clear a required column
        if v is None:
            raise ValueError(f"{to_camel(info.field_name)} cannot be null")
        return v


class SiteRead(SiteFields):
    id: str
    name: str
    site_manager: str
    phone: str
    created_at: datetime
    updated_at: datetime


class SiteBody(ApiModel):
    site: SiteRead


class SiteJobRead(ApiModel):
    id: str
    name: str
    type: JobType
    created_at: datetime
    schedules: List[ResourceScheduleRead] = []


class SiteWithJobs(SiteRead):
    jobs: List[SiteJobRead] = []


class SiteDetailsBody(ApiModel):
    site: SiteWithJobs


# --- statistics ------------------------------------------------------------

class DateRange(ApiModel):
    from_: Optional[datetime] = Field(None, alias="from")
    to: Optional[datetime] = None


class StatisticsOverview(ApiModel):
    total_users: int
    total_sites: int
    total_jobs: int
    schedules_by_status: dict
    total_schedules: int
    drones_by_status: dict
    total_drones: int
    date_range: Optional[DateRange] = None


class JobStats(ApiModel):
    total: int
    by_type: dict


class DroneStats(ApiModel):
    total: int
    by_status: dict
