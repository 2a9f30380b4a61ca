"""Python client for the DroneDesk API.

``ApiClient`` is the transport: a cookie-carrying ``requests.Session`` that
turns error responses into the API's error classes and runs the session
refresh flow. A 401 on any non-auth endpoint triggers one refresh call shared
by every request that failed while it was pending, and each request is
retried at most once afterwards. If the refresh fails the client drops its
cookies, refuses further refreshes until the next login, and every waiting
request raises ``AuthError``.

``DashboardClient`` adds the query cache. Inputs are validated locally before
anything is sent, and cached data only changes after the server confirmed a
write: the written entity is stored under its detail key and every list or
availability query that could include it is invalidated and refetched on
next read.
"""
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from . import schemas
from .config import ApiConfig
from .data_structures import TimeWindow
from .errors import (
    ApiError,
    AuthError,
    ConflictError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from .logger_service import LoggerService
from .query_cache import DroneKeys, JobKeys, QueryCache, ScheduleKeys, SiteKeys, StatisticsKeys
from .utils import parse_iso_datetime, to_iso

logger = LoggerService(__name__)


def raise_for_response(response: requests.Response) -> None:
    if response.status_code < 400:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("error") or body.get("detail") or response.reason or "Something went wrong"

    if response.status_code == 400:
        raise ValidationError(message, details=body.get("details"))
    if response.status_code == 401:
        raise AuthError(message)
    if response.status_code == 404:
        raise NotFoundError(message)
    if response.status_code == 409:
        raise ConflictError(message, resource=body.get("resource"), conflict=body.get("conflict"))
    raise ApiError(message, status_code=response.status_code)


class ApiClient:
    def __init__(
        self,
        config: Optional[ApiConfig] = None,
        session: Optional[requests.Session] = None,
        on_auth_failure: Optional[Callable[[], None]] = None,
    ):
        self.config = config or ApiConfig()
        self.session = session or requests.Session()
        self.on_auth_failure = on_auth_failure
        self._refresh_lock = threading.Lock()
        self._auth_generation = 0
        self._session_revoked = False

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def is_auth_endpoint(self, path: str) -> bool:
        return any(endpoint in path for endpoint in self.config.auth_endpoints)

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(
                method, self._url(path), timeout=self.config.request_timeout_seconds, **kwargs
            )
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise NetworkError(f"Could not reach the API: {e}")

    def request(self, method: str, path: str, params: Optional[dict] = None, json: Any = None) -> Any:
        generation = self._auth_generation
        response = self._send(method, path, params=params, json=json)

        if response.status_code == 401 and not self.is_auth_endpoint(path):
            self._refresh_session(generation)
            response = self._send(method, path, params=params, json=json)

        raise_for_response(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _refresh_session(self, seen_generation: int) -> None:
        with self._refresh_lock:
            if self._session_revoked:
                raise AuthError("Session expired, please log in again")
            if self._auth_generation != seen_generation:
                # another request refreshed while this one was in flight
                return

            try:
                response = self._send("POST", f"{self.config.prefix}/auth/refresh")
                raise_for_response(response)
            except ApiError as e:
                self._auth_generation += 1
                self._session_revoked = True
                self.session.cookies.clear()
                logger.warning(f"Session refresh failed ({e}), re-authentication required")
                if self.on_auth_failure:
                    self.on_auth_failure()
                raise AuthError("Session expired, please log in again")

            self._auth_generation += 1
            logger.debug("Session refreshed")

    def mark_authenticated(self) -> None:
        with self._refresh_lock:
            self._session_revoked = False
            self._auth_generation += 1

    def get(self, path: str, params: Optional[dict] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json)

    def patch(self, path: str, json: Any = None) -> Any:
        return self.request("PATCH", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)


def _camel(part) -> str:
    part = str(part)
    return to_camel(part) if "_" in part else part


def validate_input(model: type, data: dict) -> BaseModel:
    """Validate form input locally; failures never reach the network."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        details = []
        for error in e.errors():
            path = ".".join(_camel(part) for part in error.get("loc", ()))
            message = error.get("msg", "Invalid value")
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            details.append({"path": path, "message": message})
        raise ValidationError(details=details)


def _wire_body(model: BaseModel) -> dict:
    body = model.model_dump(mode="json", by_alias=True, exclude_unset=True)
    for field in ("start_at", "end_at"):
        value = getattr(model, field, None)
        if isinstance(value, datetime):
            body[_camel(field)] = to_iso(value)
    return body


def _query_params(params: Dict[str, Any]) -> Dict[str, Any]:
    wire = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, datetime):
            value = to_iso(value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        elif hasattr(value, "value"):
            value = value.value
        wire[_camel(key.rstrip("_"))] = value
    return wire


class DashboardClient:
    def __init__(self, api: Optional[ApiClient] = None, cache: Optional[QueryCache] = None,
                 config: Optional[ApiConfig] = None):
        self.config = config or (api.config if api else ApiConfig())
        self.api = api or ApiClient(self.config, on_auth_failure=self._on_auth_failure)
        if api and api.on_auth_failure is None:
            api.on_auth_failure = self._on_auth_failure
        self.cache = cache or QueryCache()
        self.user: Optional[dict] = None

    def _path(self, path: str) -> str:
        return f"{self.config.prefix}{path}"

    def _on_auth_failure(self) -> None:
        self.user = None
        self.cache.clear()

    # --- auth --------------------------------------------------------------

    def login(self, email: str, password: str) -> dict:
        payload = validate_input(schemas.LoginInput, {"email": email, "password": password})
        data = self.api.post(self._path("/auth/login"), json=_wire_body(payload))
        self.api.mark_authenticated()
        self.user = data["data"]["user"]
        return self.user

    def register(self, name: str, email: str, phone: str, password: str) -> dict:
        payload = validate_input(
            schemas.RegisterInput, {"name": name, "email": email, "phone": phone, "password": password}
        )
        data = self.api.post(self._path("/auth/register"), json=_wire_body(payload))
        self.api.mark_authenticated()
        self.user = data["data"]["user"]
        return self.user

    def logout(self) -> None:
        self.api.post(self._path("/auth/logout"))
        self.user = None
        self.cache.clear()

    def me(self) -> Optional[dict]:
        try:
            data = self.api.get(self._path("/auth/me"))
        except AuthError:
            return None
        self.user = data["data"]["user"]
        return self.user

    # --- schedules ---------------------------------------------------------

    def list_schedules(self, page: int = 1, page_size: int = 20, **filters) -> dict:
        params = _query_params({"page": page, "page_size": page_size, **filters})
        return self.cache.fetch(
            ScheduleKeys.list(params),
            lambda: self.api.get(self._path("/schedule"), params=params)["data"],
            self.config.list_stale_seconds,
        )

    def get_schedule(self, schedule_id: str) -> dict:
        key = ScheduleKeys.detail(schedule_id)
        try:
            return self.cache.fetch(
                key,
                lambda: self.api.get(self._path(f"/schedule/{schedule_id}"))["data"]["schedule"],
                self.config.detail_stale_seconds,
            )
        except NotFoundError:
            self.cache.remove(key)
            raise

    def schedules_by_job(self, job_id: str) -> list:
        return self.cache.fetch(
            ScheduleKeys.by_job(job_id),
            lambda: self.api.get(self._path(f"/job/{job_id}/schedule"))["data"]["items"],
            self.config.list_stale_seconds,
        )

    def availability(self, start_at, end_at) -> dict:
        window = TimeWindow(parse_iso_datetime(start_at, "startAt"), parse_iso_datetime(end_at, "endAt"))
        start_iso, end_iso = to_iso(window.start), to_iso(window.end)
        return self.cache.fetch(
            ScheduleKeys.availability(start_iso, end_iso),
            lambda: self.api.get(
                self._path("/availability"), params={"startAt": start_iso, "endAt": end_iso}
            )["data"],
            self.config.availability_stale_seconds,
        )

    def _invalidate_schedule_queries(self, job_id: Optional[str]) -> None:
        self.cache.invalidate(ScheduleKeys.lists())
        self.cache.invalidate(ScheduleKeys.availabilities())
        self.cache.invalidate(ScheduleKeys.by_jobs())
        if job_id:
            self.cache.invalidate(JobKeys.detail(job_id))
        self.cache.invalidate(JobKeys.lists())
        self.cache.invalidate(SiteKeys.all)
        # drone details embed their schedules
        self.cache.invalidate(DroneKeys.all)
        self.cache.invalidate(StatisticsKeys.all)

    def create_schedule(self, **fields) -> dict:
        payload = validate_input(schemas.ScheduleCreate, fields)
        TimeWindow(payload.start_at, payload.end_at)

        data = self.api.post(self._path("/schedule"), json=_wire_body(payload))
        schedule = data["data"]["schedule"]
        self.cache.set(ScheduleKeys.detail(schedule["id"]), schedule)
        self._invalidate_schedule_queries(schedule.get("jobId"))
        logger.info(f"Schedule {schedule['id']} created")
        return schedule

    def update_schedule(self, schedule_id: str, **changes) -> dict:
        payload = validate_input(schemas.ScheduleUpdate, changes)
        if payload.start_at is not None and payload.end_at is not None:
            TimeWindow(payload.start_at, payload.end_at)

        try:
            data = self.api.patch(self._path(f"/schedule/{schedule_id}"), json=_wire_body(payload))
        except NotFoundError:
            self.cache.remove(ScheduleKeys.detail(schedule_id))
            raise
        schedule = data["data"]["schedule"]
        self.cache.set(ScheduleKeys.detail(schedule["id"]), schedule)
        self._invalidate_schedule_queries(schedule.get("jobId"))
        logger.info(f"Schedule {schedule_id} updated")
        return schedule

    def delete_schedule(self, schedule_id: str) -> None:
        try:
            self.api.delete(self._path(f"/schedule/{schedule_id}"))
        except NotFoundError:
            self.cache.remove(ScheduleKeys.detail(schedule_id))
            raise
        self.cache.remove(ScheduleKeys.detail(schedule_id))
        self.cache.invalidate(ScheduleKeys.all)
        self.cache.invalidate(JobKeys.all)
        self.cache.invalidate(SiteKeys.all)
        self.cache.invalidate(DroneKeys.all)
        self.cache.invalidate(StatisticsKeys.all)
        logger.info(f"Schedule {schedule_id} deleted")

    # --- jobs / drones / sites ---------------------------------------------

    def _list(self, keys, path: str, page: int, page_size: int, filters: dict) -> dict:
        params = _query_params({"page": page, "page_size": page_size, **filters})
        return self.cache.fetch(
            keys.list(params),
            lambda: self.api.get(self._path(path), params=params)["data"],
            self.config.list_stale_seconds,
        )

    def _detail(self, keys, path: str, entity_id: str, field: str) -> dict:
        key = keys.detail(entity_id)
        try:
            return self.cache.fetch(
                key,
                lambda: self.api.get(self._path(f"{path}/{entity_id}"))["data"][field],
                self.config.detail_stale_seconds,
            )
        except NotFoundError:
            self.cache.remove(key)
            raise

    def _written(self, keys, field: str, data: dict) -> dict:
        entity = data["data"][field]
        self.cache.set(keys.detail(entity["id"]), entity)
        self.cache.invalidate(keys.lists())
        self.cache.invalidate(ScheduleKeys.lists())
        self.cache.invalidate(StatisticsKeys.all)
        return entity

    def _deleted(self, keys, entity_id: str) -> None:
        self.cache.remove(keys.detail(entity_id))
        self.cache.invalidate(keys.all)
        self.cache.invalidate(ScheduleKeys.lists())
        self.cache.invalidate(StatisticsKeys.all)

    def list_jobs(self, page: int = 1, page_size: int = 20, **filters) -> dict:
        return self._list(JobKeys, "/job", page, page_size, filters)

    def get_job(self, job_id: str) -> dict:
        return self._detail(JobKeys, "/job", job_id, "job")

    def create_job(self, **fields) -> dict:
        payload = validate_input(schemas.JobCreate, fields)
        job = self._written(JobKeys, "job", self.api.post(self._path("/job"), json=_wire_body(payload)))
        self.cache.invalidate(SiteKeys.all)
        return job

    def update_job(self, job_id: str, **changes) -> dict:
        payload = validate_input(schemas.JobUpdate, changes)
        data = self.api.patch(self._path(f"/job/{job_id}"), json=_wire_body(payload))
        job = self._written(JobKeys, "job", data)
        self.cache.invalidate(SiteKeys.full_details())
        return job

    def delete_job(self, job_id: str) -> None:
        self.api.delete(self._path(f"/job/{job_id}"))
        self._deleted(JobKeys, job_id)
        self.cache.invalidate(SiteKeys.all)

    def list_drones(self, page: int = 1, page_size: int = 20, **filters) -> dict:
        return self._list(DroneKeys, "/drone", page, page_size, filters)

    def get_drone(self, drone_id: str) -> dict:
        return self._detail(DroneKeys, "/drone", drone_id, "drone")

    def create_drone(self, **fields) -> dict:
        payload = validate_input(schemas.DroneCreate, fields)
        return self._written(DroneKeys, "drone", self.api.post(self._path("/drone"), json=_wire_body(payload)))

    def update_drone(self, drone_id: str, **changes) -> dict:
        payload = validate_input(schemas.DroneUpdate, changes)
        data = self.api.patch(self._path(f"/drone/{drone_id}"), json=_wire_body(payload))
        self.cache.invalidate(ScheduleKeys.availabilities())
        return self._written(DroneKeys, "drone", data)

    def delete_drone(self, drone_id: str) -> None:
        self.api.delete(self._path(f"/drone/{drone_id}"))
        self._deleted(DroneKeys, drone_id)
        self.cache.invalidate(ScheduleKeys.availabilities())

    def list_sites(self, page: int = 1, page_size: int = 20, **filters) -> dict:
        return self._list(SiteKeys, "/site", page, page_size, filters)

    def get_site(self, site_id: str) -> dict:
        return self._detail(SiteKeys, "/site", site_id, "site")

    def create_site(self, **fields) -> dict:
        payload = validate_input(schemas.SiteCreate, fields)
        return self._written(SiteKeys, "site", self.api.post(self._path("/site"), json=_wire_body(payload)))

    def update_site(self, site_id: str, **changes) -> dict:
        payload = validate_input(schemas.SiteUpdate, changes)
        data = self.api.patch(self._path(f"/site/{site_id}"), json=_wire_body(payload))
        site = self._written(SiteKeys, "site", data)
        self.cache.invalidate(SiteKeys.full_detail(site_id))
        return site

    def delete_site(self, site_id: str) -> None:
        self.api.delete(self._path(f"/site/{site_id}"))
        self._deleted(SiteKeys, site_id)

    def get_site_details(self, site_id: str) -> dict:
        """Site with its jobs and each job's schedules."""
        key = SiteKeys.full_detail(site_id)
        try:
            return self.cache.fetch(
                key,
                lambda: self.api.get(self._path(f"/site/{site_id}/details"))["data"]["site"],
                self.config.detail_stale_seconds,
            )
        except NotFoundError:
            self.cache.remove(key)
            raise

    def site_jobs_count(self, site_id: str) -> int:
        return self.cache.fetch(
            SiteKeys.jobs_count(site_id),
            lambda: self.api.get(self._path(f"/site/{site_id}/jobs-count"))["data"]["count"],
            self.config.detail_stale_seconds,
        )

    # --- statistics --------------------------------------------------------

    def statistics_overview(self, from_=None, to=None) -> dict:
        params = _query_params({"from_": from_, "to": to})
        return self.cache.fetch(
            StatisticsKeys.overview(params),
            lambda: self.api.get(self._path("/statistics/overview"), params=params)["data"],
            self.config.list_stale_seconds,
        )

    def job_statistics(self) -> dict:
        return self.cache.fetch(
            StatisticsKeys.jobs(),
            lambda: self.api.get(self._path("/statistics/jobs"))["data"],
            self.config.list_stale_seconds,
        )

    def drone_statistics(self) -> dict:
        return self.cache.fetch(
            StatisticsKeys.drones(),
            lambda: self.api.get(self._path("/statistics/drones"))["data"],
            self.config.list_stale_seconds,
        )
