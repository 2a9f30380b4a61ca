from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models
from .config import SchedulingRules
from .data_structures import ScheduleConflict, TimeWindow
from .errors import ConflictError, NotFoundError, ValidationError
from .lifecycle import can_transition, is_active, reactivates
from .logger_service import LoggerService

scheduling_rules = SchedulingRules()
logger = LoggerService(__name__)

RESOURCE_ORDER = ("pilot", "drone")


def validate_window(start_at: Optional[datetime], end_at: Optional[datetime]) -> TimeWindow:
    missing = [
        {"path": path, "message": f"{path} is required"}
        for path, value in (("startAt", start_at), ("endAt", end_at))
        if value is None
    ]
    if missing:
        raise ValidationError(details=missing)
    return TimeWindow(start_at, end_at)


def find_overlapping_schedules(
    db: Session,
    window: TimeWindow,
    pilot_id: Optional[str] = None,
    drone_id: Optional[str] = None,
    exclude_id: Optional[str] = None,
) -> List[models.Schedule]:
    """Active schedules overlapping the window, limited to the given pilot or drone when provided."""
    filters = [
        models.Schedule.status.in_(scheduling_rules.active_statuses),
        models.Schedule.start_at < window.end,
        models.Schedule.end_at > window.start,
    ]
    resource_filters = []
    if pilot_id:
        resource_filters.append(models.Schedule.pilot_id == pilot_id)
    if drone_id:
        resource_filters.append(models.Schedule.drone_id == drone_id)
    if resource_filters:
        filters.append(or_(*resource_filters))
    if exclude_id:
        filters.append(models.Schedule.id != exclude_id)

    return db.query(models.Schedule).filter(*filters).order_by(
        models.Schedule.start_at, models.Schedule.id
    ).all()


def check_schedule_conflict(
    existing: models.Schedule,
    window: TimeWindow,
    resource: str,
    resource_id: str,
) -> Optional[ScheduleConflict]:
    if not is_active(existing.status):
        return None
    if getattr(existing, f"{resource}_id") != resource_id:
        return None

    try:
        existing_window = TimeWindow(existing.start_at, existing.end_at)
    except ValidationError:
        logger.warning(f"Schedule {existing.id} has an invalid window, skipped in conflict check")
        return None

    logger.debug(f"[CONFLICT_CHECK] {resource} {resource_id}: existing {existing_window} vs new {window}")

    if not existing_window.overlaps(window):
        return None

    return ScheduleConflict(
        resource=resource,
        schedule_id=existing.id,
        job_id=existing.job_id,
        window=existing_window,
        overlap=existing_window.overlap_duration(window),
    )


def first_conflict(
    candidates: Iterable[models.Schedule],
    window: TimeWindow,
    pilot_id: str,
    drone_id: str,
) -> Optional[ScheduleConflict]:
    """Pilot conflicts are reported before drone conflicts."""
    candidates = list(candidates)
    for resource, resource_id in zip(RESOURCE_ORDER, (pilot_id, drone_id)):
        for existing in candidates:
            conflict = check_schedule_conflict(existing, window, resource, resource_id)
            if conflict:
                return conflict
    return None


def detect_schedule_conflict(
    db: Session,
    window: TimeWindow,
    pilot_id: str,
    drone_id: str,
    exclude_id: Optional[str] = None,
) -> None:
    candidates = find_overlapping_schedules(db, window, pilot_id, drone_id, exclude_id)
    conflict = first_conflict(candidates, window, pilot_id, drone_id)
    if conflict:
        logger.warning(f"Schedule conflict detected: {conflict}")
        raise ConflictError(str(conflict), resource=conflict.resource, conflict=conflict.as_payload())


def get_or_404(db: Session, model, entity_id: str, label: str):
    instance = db.query(model).filter(model.id == entity_id).first()
    if not instance:
        raise NotFoundError(f"{label} not found")
    return instance


def validate_references(db: Session, job_id: Optional[str] = None, pilot_id: Optional[str] = None,
                        drone_id: Optional[str] = None) -> None:
    if job_id:
        get_or_404(db, models.Job, job_id, "Job")
    if pilot_id:
        get_or_404(db, models.User, pilot_id, "Pilot")
    if drone_id:
        get_or_404(db, models.Drone, drone_id, "Drone")


def validate_status_transition(current: str, target: str, strict: Optional[bool] = None) -> None:
    if strict is None:
        strict = scheduling_rules.strict_transitions
    if not can_transition(current, target, strict=strict):
        raise ConflictError(
            f"Cannot change schedule status from {current} to {target}",
            resource="status",
        )


def schedule_needs_conflict_check(schedule: models.Schedule, changes: dict) -> bool:
    """Whether an update touches the booking itself or revives a terminal schedule."""
    target_status = changes.get("status") or schedule.status
    if not is_active(target_status):
        return False
    if reactivates(schedule.status, target_status):
        return True
    for field in ("pilot_id", "drone_id", "start_at", "end_at"):
        if field in changes and changes[field] != getattr(schedule, field):
            return True
    return False


def validate_schedule_create(db: Session, payload: dict) -> TimeWindow:
    window = validate_window(payload.get("start_at"), payload.get("end_at"))
    validate_references(db, payload["job_id"], payload["pilot_id"], payload["drone_id"])

    status = payload.get("status") or scheduling_rules.default_status
    if is_active(status):
        detect_schedule_conflict(db, window, payload["pilot_id"], payload["drone_id"])
    return window


def validate_schedule_update(db: Session, schedule: models.Schedule, changes: dict) -> TimeWindow:
    for field in ("pilot_id", "drone_id", "start_at", "end_at", "status"):
        if field in changes and changes[field] is None:
            raise ValidationError(details=[{"path": field, "message": f"{field} cannot be null"}])

    window = validate_window(changes.get("start_at", schedule.start_at), changes.get("end_at", schedule.end_at))
    validate_references(db, pilot_id=changes.get("pilot_id"), drone_id=changes.get("drone_id"))

    if "status" in changes:
        validate_status_transition(schedule.status, changes["status"])

    if schedule_needs_conflict_check(schedule, changes):
        detect_schedule_conflict(
            db,
            window,
            changes.get("pilot_id", schedule.pilot_id),
            changes.get("drone_id", schedule.drone_id),
            exclude_id=schedule.id,
        )
    return window


def _count_schedules(db: Session, column, value: str) -> int:
    return db.query(models.Schedule).filter(column == value).count()


def guard_job_delete(db: Session, job: models.Job) -> None:
    count = _count_schedules(db, models.Schedule.job_id, job.id)
    if count:
        logger.warning(f"Blocked delete of job {job.id}: {count} dependent record(s)")
        raise ConflictError(
            f"Cannot delete job {job.name} while {count} schedule(s) reference it. Remove the schedules first.",
            resource="job",
        )


def guard_drone_delete(db: Session, drone: models.Drone) -> None:
    count = _count_schedules(db, models.Schedule.drone_id, drone.id)
    if count:
        logger.warning(f"Blocked delete of drone {drone.id}: {count} dependent record(s)")
        raise ConflictError(
            f"Cannot delete drone {drone.name} while {count} schedule(s) reference it. Remove the schedules first.",
            resource="drone",
        )


def guard_site_delete(db: Session, site: models.Site) -> None:
    count = db.query(models.Job).filter(models.Job.site_id == site.id).count()
    if count:
        logger.warning(f"Blocked delete of site {site.id}: {count} dependent record(s)")
        raise ConflictError(
            f"Cannot delete site {site.name} while it has {count} job(s). Remove the jobs first.",
            resource="site",
        )


def guard_serial_number(db: Session, serial_number: str, drone_id: Optional[str] = None) -> None:
    query = db.query(models.Drone).filter(models.Drone.serial_number == serial_number)
    if drone_id:
        query = query.filter(models.Drone.id != drone_id)
    if query.first():
        raise ConflictError(f"A drone with serial number {serial_number} already exists", resource="drone")
