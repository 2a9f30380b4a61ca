"""Availability query and the transactional create/update path for schedules.

Writes are serialized per pilot and per drone: the service takes an
in-process lock for every resource the write touches (sorted, so two writers
never wait on each other in opposite order), then re-reads the resource rows
``FOR UPDATE`` inside the same transaction before re-running the conflict
check. The row locks extend the guarantee across processes on databases that
support them; locks are released when the request's transaction ends.
"""
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Dict, Iterable, Iterator, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from . import models
from .config import SchedulingRules
from .data_structures import AvailabilitySnapshot
from .errors import NotFoundError
from .logger_service import LoggerService
from .utils import to_utc
from .validations import (
    find_overlapping_schedules,
    get_or_404,
    validate_schedule_create,
    validate_schedule_update,
    validate_window,
)

scheduling_rules = SchedulingRules()
logger = LoggerService(__name__)

ResourceKey = Tuple[str, str]


class _SharedLock:
    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class ResourceLocks:
    """Per-resource mutexes keyed by ("pilot", id) / ("drone", id).

    An entry lives only while some writer holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[ResourceKey, _SharedLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: ResourceKey) -> _SharedLock:
        with self._guard:
            shared = self._locks.get(key)
            if shared is None:
                shared = self._locks[key] = _SharedLock()
            shared.users += 1
            return shared

    def _checkin(self, key: ResourceKey, shared: _SharedLock) -> None:
        with self._guard:
            shared.users -= 1
            if shared.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[ResourceKey]) -> Iterator[None]:
        ordered = sorted({key for key in keys if key[1]})
        checked_out = []
        acquired = []
        try:
            for key in ordered:
                shared = self._checkout(key)
                checked_out.append((key, shared))
                shared.lock.acquire()
                acquired.append(shared.lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key, shared in reversed(checked_out):
                self._checkin(key, shared)


resource_locks = ResourceLocks()


def _plain(values: dict) -> dict:
    plain = {}
    for field, value in values.items():
        if isinstance(value, Enum):
            value = value.value
        elif field in ("start_at", "end_at") and value is not None:
            value = to_utc(value)
        plain[field] = value
    return plain


def _lock_resource_rows(db: Session, pilot_ids: Iterable[str], drone_ids: Iterable[str]) -> None:
    for pilot_id in sorted(set(filter(None, pilot_ids))):
        db.query(models.User.id).filter(models.User.id == pilot_id).with_for_update().first()
    for drone_id in sorted(set(filter(None, drone_ids))):
        db.query(models.Drone.id).filter(models.Drone.id == drone_id).with_for_update().first()


def schedule_query(db: Session):
    return db.query(models.Schedule).options(
        joinedload(models.Schedule.job).joinedload(models.Job.site),
        joinedload(models.Schedule.pilot),
        joinedload(models.Schedule.drone),
    )


def compute_availability(db: Session, start_at, end_at) -> AvailabilitySnapshot:
    window = validate_window(start_at, end_at)
    busy = find_overlapping_schedules(db, window)

    busy_pilots = sorted({schedule.pilot_id for schedule in busy})
    busy_drones = sorted({schedule.drone_id for schedule in busy})

    pilots = db.query(models.User).order_by(models.User.name, models.User.id).all()
    drones = db.query(models.Drone).order_by(models.Drone.name, models.Drone.id).all()

    snapshot = AvailabilitySnapshot(
        window=window,
        available_pilots=[p for p in pilots if p.id not in busy_pilots],
        available_drones=[d for d in drones if d.id not in busy_drones],
        busy_pilots=busy_pilots,
        busy_drones=busy_drones,
    )
    logger.info(
        f"Availability {window}: {len(snapshot.available_pilots)} pilots, "
        f"{len(snapshot.available_drones)} drones free"
    )
    return snapshot


class SchedulingService:
    def __init__(self, db: Session, locks: Optional[ResourceLocks] = None):
        self.db = db
        self.locks = locks or resource_locks

    def get(self, schedule_id: str) -> models.Schedule:
        schedule = schedule_query(self.db).filter(models.Schedule.id == schedule_id).first()
        if not schedule:
            raise NotFoundError("Schedule not found")
        return schedule

    def create(self, payload: dict) -> models.Schedule:
        payload = _plain(payload)
        payload["status"] = payload.get("status") or scheduling_rules.default_status
        keys = [("pilot", payload["pilot_id"]), ("drone", payload["drone_id"])]

        with self.locks.hold(keys):
            try:
                _lock_resource_rows(self.db, [payload["pilot_id"]], [payload["drone_id"]])
                validate_schedule_create(self.db, payload)
                schedule = models.Schedule(**payload)
                self.db.add(schedule)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"Created schedule {schedule.id}: pilot {schedule.pilot_id}, drone {schedule.drone_id}, "
            f"{schedule.start_at.isoformat()} → {schedule.end_at.isoformat()}"
        )
        return self.get(schedule.id)

    def update(self, schedule_id: str, changes: dict) -> models.Schedule:
        changes = _plain(changes)
        current = get_or_404(self.db, models.Schedule, schedule_id, "Schedule")
        keys = [
            ("pilot", current.pilot_id),
            ("drone", current.drone_id),
            ("pilot", changes.get("pilot_id")),
            ("drone", changes.get("drone_id")),
        ]

        with self.locks.hold(keys):
            try:
                _lock_resource_rows(
                    self.db,
                    [current.pilot_id, changes.get("pilot_id")],
                    [current.drone_id, changes.get("drone_id")],
                )
                self.db.refresh(current)
                validate_schedule_update(self.db, current, changes)
                for field, value in changes.items():
                    setattr(current, field, value)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(f"Updated schedule {schedule_id}: {sorted(changes)}")
        return self.get(schedule_id)

    def delete(self, schedule_id: str) -> None:
        schedule = get_or_404(self.db, models.Schedule, schedule_id, "Schedule")
        self.db.delete(schedule)
        self.db.commit()
        logger.info(f"Deleted schedule {schedule_id}")
