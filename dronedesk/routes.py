import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from . import models, schemas
from .auth import get_current_user
from .config import SchedulingRules
from .database import get_db
from .lifecycle import ScheduleStatus
from .logger_service import LoggerService, get_logger_service
from .scheduling import SchedulingService, compute_availability, schedule_query
from .validations import (
    get_or_404,
    guard_drone_delete,
    guard_job_delete,
    guard_serial_number,
    guard_site_delete,
)

router = APIRouter(dependencies=[Depends(get_current_user)])
scheduling_rules = SchedulingRules()


def page_params(
    page: int = Query(1, ge=1),
    page_size: int = Query(scheduling_rules.default_page_size, ge=1, le=scheduling_rules.max_page_size, alias="pageSize"),
):
    return page, page_size


def paginate(query, page: int, page_size: int, serialize=None) -> dict:
    total = query.order_by(None).count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    if serialize:
        items = [serialize(item) for item in items]
    return {
        "items": items,
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": math.ceil(total / page_size) if total else 0,
    }


def _ilike(column, q: str):
    return column.ilike(f"%{q.strip()}%")


# --- schedules -------------------------------------------------------------

@router.get("/schedule", response_model=schemas.DataEnvelope[schemas.Page[schemas.ScheduleRead]])
def list_schedules(
    paging: tuple = Depends(page_params),
    job_id: Optional[str] = Query(None, alias="jobId"),
    site_id: Optional[str] = Query(None, alias="siteId"),
    pilot_id: Optional[str] = Query(None, alias="pilotId"),
    drone_id: Optional[str] = Query(None, alias="droneId"),
    status: Optional[ScheduleStatus] = None,
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = None,
    db: Session = Depends(get_db),
    logger: LoggerService = Depends(get_logger_service),
):
    try:
        query = schedule_query(db)
        if job_id:
            query = query.filter(models.Schedule.job_id == job_id)
        if site_id:
            query = query.filter(models.Schedule.job.has(models.Job.site_id == site_id))
        if pilot_id:
            query = query.filter(models.Schedule.pilot_id == pilot_id)
        if drone_id:
            query = query.filter(models.Schedule.drone_id == drone_id)
        if status:
            query = query.filter(models.Schedule.status == status.value)
        if from_:
            query = query.filter(models.Schedule.start_at >= from_)
        if to:
            query = query.filter(models.Schedule.end_at <= to)
        query = query.order_by(models.Schedule.start_at, models.Schedule.id)

        result = paginate(query, *paging)
        logger.info(f"Retrieved {len(result['items'])} of {result['total']} schedules")
        return {"data": result}
    except Exception as e:
        logger.error(f"Error fetching schedules: {str(e)}")
        raise HTTPException(status_code=500, detail="Error fetching schedules")


@router.get("/schedule/{schedule_id}", response_model=schemas.DataEnvelope[schemas.ScheduleBody])
def get_schedule(schedule_id: str, db: Session = Depends(get_db)):
    return {"data": {"schedule": SchedulingService(db).get(schedule_id)}}


@router.post("/schedule", response_model=schemas.DataEnvelope[schemas.ScheduleBody], status_code=201)
def create_schedule(payload: schemas.ScheduleCreate, db: Session = Depends(get_db),
                    logger: LoggerService = Depends(get_logger_service)):
    schedule = SchedulingService(db).create(payload.model_dump(exclude_unset=True))
    logger.info(f"Scheduled pilot {schedule.pilot.name} with drone {schedule.drone.name} for job {schedule.job.name}")
    return {"data": {"schedule": schedule}}


@router.patch("/schedule/{schedule_id}", response_model=schemas.DataEnvelope[schemas.ScheduleBody])
def update_schedule(schedule_id: str, payload: schemas.ScheduleUpdate, db: Session = Depends(get_db)):
    schedule = SchedulingService(db).update(schedule_id, payload.model_dump(exclude_unset=True))
    return {"data": {"schedule": schedule}}


@router.delete("/schedule/{schedule_id}", status_code=204)
def delete_schedule(schedule_id: str, db: Session = Depends(get_db)):
    SchedulingService(db).delete(schedule_id)
    return Response(status_code=204)


@router.get("/availability", response_model=schemas.DataEnvelope[schemas.AvailabilityRead])
def get_availability(
    start_at: Optional[datetime] = Query(None, alias="startAt"),
    end_at: Optional[datetime] = Query(None, alias="endAt"),
    db: Session = Depends(get_db),
):
    snapshot = compute_availability(db, start_at, end_at)
    return {
        "data": {
            "start_at": snapshot.window.start,
            "end_at": snapshot.window.end,
            "available_pilots": snapshot.available_pilots,
            "available_drones": snapshot.available_drones,
            "busy": {"pilots": snapshot.busy_pilots, "drones": snapshot.busy_drones},
        }
    }


# --- jobs ------------------------------------------------------------------

def _job_query(db: Session, include_schedules: bool = False):
    query = db.query(models.Job).options(joinedload(models.Job.site))
    if include_schedules:
        query = query.options(
            joinedload(models.Job.schedules).joinedload(models.Schedule.pilot),
            joinedload(models.Job.schedules).joinedload(models.Schedule.drone),
        )
    return query


@router.get(
    "/job",
    response_model=schemas.DataEnvelope[schemas.Page[schemas.JobWithSchedules]],
    response_model_exclude_unset=True,
)
def list_jobs(
    paging: tuple = Depends(page_params),
    site_id: Optional[str] = Query(None, alias="siteId"),
    type: Optional[schemas.JobType] = None,
    q: Optional[str] = None,
    include_schedules: bool = Query(False, alias="includeSchedules"),
    db: Session = Depends(get_db),
    logger: LoggerService = Depends(get_logger_service),
):
    query = _job_query(db, include_schedules)
    if site_id:
        query = query.filter(models.Job.site_id == site_id)
    if type:
        query = query.filter(models.Job.type == type.value)
    if q:
        query = query.filter(_ilike(models.Job.name, q))
    query = query.order_by(models.Job.created_at.desc(), models.Job.id)

    serializer = schemas.JobWithSchedules if include_schedules else schemas.JobRead
    result = paginate(query, *paging, serialize=serializer.model_validate)
    logger.info(f"Retrieved {len(result['items'])} of {result['total']} jobs")
    return {"data": result}


@router.get("/job/{job_id}", response_model=schemas.DataEnvelope[schemas.JobBody])
def get_job(job_id: str, db: Session = Depends(get_db)):
    job = _job_query(db, include_schedules=True).filter(models.Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"data": {"job": job}}


@router.get("/job/{job_id}/schedule", response_model=schemas.DataEnvelope[schemas.Items[schemas.ScheduleRead]])
def get_job_schedules(job_id: str, db: Session = Depends(get_db)):
    get_or_404(db, models.Job, job_id, "Job")
    schedules = schedule_query(db).filter(models.Schedule.job_id == job_id).order_by(
        models.Schedule.start_at, models.Schedule.id
    ).all()
    return {"data": {"items": schedules}}


@router.post("/job", response_model=schemas.DataEnvelope[schemas.JobBody], status_code=201)
def create_job(payload: schemas.JobCreate, db: Session = Depends(get_db),
               logger: LoggerService = Depends(get_logger_service)):
    get_or_404(db, models.Site, payload.site_id, "Site")
    job = models.Job(**payload.model_dump(mode="json"))
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info(f"Created job {job.id}: {job.name} ({job.type})")
    return {"data": {"job": job}}


@router.patch("/job/{job_id}", response_model=schemas.DataEnvelope[schemas.JobBody])
def update_job(job_id: str, payload: schemas.JobUpdate, db: Session = Depends(get_db),
               logger: LoggerService = Depends(get_logger_service)):
    job = get_or_404(db, models.Job, job_id, "Job")
    update_data = payload.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    for field, value in update_data.items():
        setattr(job, field, value)
    db.commit()
    db.refresh(job)
    logger.info(f"Updated job {job_id}: {update_data}")
    return {"data": {"job": job}}


@router.delete("/job/{job_id}", status_code=204)
def delete_job(job_id: str, db: Session = Depends(get_db), logger: LoggerService = Depends(get_logger_service)):
    job = get_or_404(db, models.Job, job_id, "Job")
    guard_job_delete(db, job)
    db.delete(job)
    db.commit()
    logger.info(f"Deleted job {job_id} ({job.name})")
    return Response(status_code=204)


# --- drones ----------------------------------------------------------------

@router.get(
    "/drone",
    response_model=schemas.DataEnvelope[schemas.Page[schemas.DroneWithSchedules]],
    response_model_exclude_unset=True,
)
def list_drones(
    paging: tuple = Depends(page_params),
    q: Optional[str] = None,
    status: Optional[schemas.DroneStatus] = None,
    include_schedules: bool = Query(False, alias="includeSchedules"),
    db: Session = Depends(get_db),
    logger: LoggerService = Depends(get_logger_service),
):
    query = db.query(models.Drone)
    if q:
        query = query.filter(_ilike(models.Drone.name, q) | _ilike(models.Drone.serial_number, q))
    if status:
        query = query.filter(models.Drone.status == status.value)
    query = query.order_by(models.Drone.name, models.Drone.id)

    serializer = schemas.DroneWithSchedules if include_schedules else schemas.DroneRead
    result = paginate(query, *paging, serialize=serializer.model_validate)
    logger.info(f"Retrieved {len(result['items'])} of {result['total']} drones")
    return {"data": result}


@router.get("/drone/{drone_id}", response_model=schemas.DataEnvelope[schemas.DroneBody])
def get_drone(drone_id: str, db: Session = Depends(get_db)):
    drone = db.query(models.Drone).options(
        joinedload(models.Drone.schedules).joinedload(models.Schedule.pilot),
        joinedload(models.Drone.schedules).joinedload(models.Schedule.job).joinedload(models.Job.site),
    ).filter(models.Drone.id == drone_id).first()
    if not drone:
        raise HTTPException(status_code=404, detail="Drone not found")
    return {"data": {"drone": drone}}


@router.post("/drone", response_model=schemas.DataEnvelope[schemas.DroneBody], status_code=201)
def create_drone(payload: schemas.DroneCreate, db: Session = Depends(get_db),
                 logger: LoggerService = Depends(get_logger_service)):
    guard_serial_number(db, payload.serial_number)
    data = payload.model_dump(mode="json", exclude_none=True)
    drone = models.Drone(**data)
    db.add(drone)
    db.commit()
    db.refresh(drone)
    logger.info(f"Created drone {drone.id}: {drone.name} ({drone.serial_number})")
    return {"data": {"drone": drone}}


@router.patch("/drone/{drone_id}", response_model=schemas.DataEnvelope[schemas.DroneBody])
def update_drone(drone_id: str, payload: schemas.DroneUpdate, db: Session = Depends(get_db),
                 logger: LoggerService = Depends(get_logger_service)):
    drone = get_or_404(db, models.Drone, drone_id, "Drone")
    update_data = payload.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    if "serial_number" in update_data:
        guard_serial_number(db, update_data["serial_number"], drone_id=drone.id)
    for field, value in update_data.items():
        setattr(drone, field, value)
    db.commit()
    db.refresh(drone)
    logger.info(f"Updated drone {drone_id}: {update_data}")
    return {"data": {"drone": drone}}


@router.delete("/drone/{drone_id}", status_code=204)
def delete_drone(drone_id: str, db: Session = Depends(get_db), logger: LoggerService = Depends(get_logger_service)):
    drone = get_or_404(db, models.Drone, drone_id, "Drone")
    guard_drone_delete(db, drone)
    db.delete(drone)
    db.commit()
    logger.info(f"Deleted drone {drone_id} ({drone.name})")
    return Response(status_code=204)


# --- sites -----------------------------------------------------------------

@router.get(
    "/site",
    response_model=schemas.DataEnvelope[schemas.Page[schemas.SiteWithJobs]],
    response_model_exclude_unset=True,
)
def list_sites(
    paging: tuple = Depends(page_params),
    q: Optional[str] = None,
    emirate: Optional[str] = None,
    city: Optional[str] = None,
    asset_type: Optional[schemas.AssetType] = Query(None, alias="assetType"),
    include_jobs: bool = Query(False, alias="includeJobs"),
    db: Session = Depends(get_db),
    logger: LoggerService = Depends(get_logger_service),
):
    try:
        query = db.query(models.Site)
        if q:
            query = query.filter(_ilike(models.Site.name, q))
        if emirate:
            query = query.filter(models.Site.emirate == emirate)
        if city:
            query = query.filter(models.Site.city == city)
        if asset_type:
            query = query.filter(models.Site.asset_type == asset_type.value)
        query = query.order_by(models.Site.created_at.desc(), models.Site.id)

        serializer = schemas.SiteWithJobs if include_jobs else schemas.SiteRead
        result = paginate(query, *paging, serialize=serializer.model_validate)
        logger.info(f"Retrieved {len(result['items'])} of {result['total']} sites")
        return {"data": result}
    except Exception as e:
        logger.error(f"Error fetching sites: {str(e)}")
        raise HTTPException(status_code=500, detail="Error fetching sites")


@router.get("/site/{site_id}", response_model=schemas.DataEnvelope[schemas.SiteBody])
def get_site(site_id: str, db: Session = Depends(get_db)):
    return {"data": {"site": get_or_404(db, models.Site, site_id, "Site")}}


@router.get("/site/{site_id}/details", response_model=schemas.DataEnvelope[schemas.SiteDetailsBody])
def get_site_details(site_id: str, db: Session = Depends(get_db)):
    site = db.query(models.Site).options(
        joinedload(models.Site.jobs).joinedload(models.Job.schedules).joinedload(models.Schedule.pilot),
        joinedload(models.Site.jobs).joinedload(models.Job.schedules).joinedload(models.Schedule.drone),
    ).filter(models.Site.id == site_id).first()
    if not site:
        raise HTTPException(status_code=404, detail="Site not found")
    return {"data": {"site": site}}


@router.get("/site/{site_id}/jobs-count", response_model=schemas.DataEnvelope[schemas.CountRead])
def get_site_jobs_count(site_id: str, db: Session = Depends(get_db)):
    get_or_404(db, models.Site, site_id, "Site")
    count = db.query(models.Job).filter(models.Job.site_id == site_id).count()
    return {"data": {"count": count}}


@router.post("/site", response_model=schemas.DataEnvelope[schemas.SiteBody], status_code=201)
def create_site(payload: schemas.SiteCreate, db: Session = Depends(get_db),
                logger: LoggerService = Depends(get_logger_service)):
    site = models.Site(**payload.model_dump(mode="json", exclude_unset=True))
    db.add(site)
    db.commit()
    db.refresh(site)
    logger.info(f"Created site {site.id}: {site.name}")
    return {"data": {"site": site}}


@router.patch("/site/{site_id}", response_model=schemas.DataEnvelope[schemas.SiteBody])
def update_site(site_id: str, payload: schemas.SiteUpdate, db: Session = Depends(get_db),
                logger: LoggerService = Depends(get_logger_service)):
    site = get_or_404(db, models.Site, site_id, "Site")
    update_data = payload.model_dump(mode="json", exclude_unset=True)
    for field, value in update_data.items():
        setattr(site, field, value)
    db.commit()
    db.refresh(site)
    logger.info(f"Updated site {site_id}: {sorted(update_data)}")
    return {"data": {"site": site}}


@router.delete("/site/{site_id}", status_code=204)
def delete_site(site_id: str, db: Session = Depends(get_db), logger: LoggerService = Depends(get_logger_service)):
    site = get_or_404(db, models.Site, site_id, "Site")
    guard_site_delete(db, site)
    db.delete(site)
    db.commit()
    logger.info(f"Deleted site {site_id} ({site.name})")
    return Response(status_code=204)


# --- statistics ------------------------------------------------------------

def _counts_by(db: Session, column, keys, *filters) -> dict:
    rows = db.query(column, func.count()).filter(*filters).group_by(column).all()
    counts = {key: 0 for key in keys}
    counts.update({key: count for key, count in rows})
    return counts


@router.get("/statistics/overview", response_model=schemas.DataEnvelope[schemas.StatisticsOverview])
def statistics_overview(
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    schedule_filters = []
    if from_:
        schedule_filters.append(models.Schedule.start_at >= from_)
    if to:
        schedule_filters.append(models.Schedule.start_at <= to)

    schedules_by_status = _counts_by(
        db, models.Schedule.status, [s.value for s in ScheduleStatus], *schedule_filters
    )
    drones_by_status = _counts_by(db, models.Drone.status, [s.value for s in schemas.DroneStatus])

    overview = {
        "total_users": db.query(models.User).count(),
        "total_sites": db.query(models.Site).count(),
        "total_jobs": db.query(models.Job).count(),
        "schedules_by_status": schedules_by_status,
        "total_schedules": sum(schedules_by_status.values()),
        "drones_by_status": drones_by_status,
        "total_drones": sum(drones_by_status.values()),
    }
    if from_ or to:
        overview["date_range"] = {"from": from_, "to": to}
    return {"data": overview}


@router.get("/statistics/jobs", response_model=schemas.DataEnvelope[schemas.JobStats])
def statistics_jobs(db: Session = Depends(get_db)):
    by_type = _counts_by(db, models.Job.type, [t.value for t in schemas.JobType])
    return {"data": {"total": sum(by_type.values()), "by_type": by_type}}


@router.get("/statistics/drones", response_model=schemas.DataEnvelope[schemas.DroneStats])
def statistics_drones(db: Session = Depends(get_db)):
    by_status = _counts_by(db, models.Drone.status, [s.value for s in schemas.DroneStatus])
    return {"data": {"total": sum(by_status.values()), "by_status": by_status}}
