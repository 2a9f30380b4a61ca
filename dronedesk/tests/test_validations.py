import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

from dronedesk import models
from dronedesk.data_structures import TimeWindow
from dronedesk.errors import ConflictError, InvalidRangeError, NotFoundError, ValidationError
from dronedesk.validations import (
    check_schedule_conflict,
    detect_schedule_conflict,
    first_conflict,
    get_or_404,
    guard_drone_delete,
    guard_job_delete,
    guard_serial_number,
    guard_site_delete,
    schedule_needs_conflict_check,
    validate_schedule_update,
    validate_status_transition,
    validate_window,
)


def utc(hour, minute=0):
    return datetime(2025, 1, 15, hour, minute, tzinfo=timezone.utc)


class TestScheduleConflict:
    def setup_method(self):
        self.db = Mock()
        self.pilot_id = "pilot-1"
        self.drone_id = "drone-1"

    def create_mock_schedule(self, schedule_id, start, end, pilot_id="pilot-1", drone_id="drone-1",
                             status="ASSIGNED", job_id="job-1"):
        schedule = Mock(spec=models.Schedule)
        schedule.id = schedule_id
        schedule.job_id = job_id
        schedule.pilot_id = pilot_id
        schedule.drone_id = drone_id
        schedule.start_at = start
        schedule.end_at = end
        schedule.status = status
        return schedule

    def test_overlap_on_same_pilot_detected(self):
        existing = self.create_mock_schedule("s-1", utc(9), utc(11))

        conflict = check_schedule_conflict(existing, TimeWindow(utc(10), utc(12)), "pilot", self.pilot_id)

        assert conflict is not None
        assert conflict.resource == "pilot"
        assert conflict.schedule_id == "s-1"
        assert conflict.overlap.total_seconds() == 3600

    def test_touching_schedule_is_not_a_conflict(self):
        existing = self.create_mock_schedule("s-1", utc(9), utc(11))

        assert check_schedule_conflict(existing, TimeWindow(utc(11), utc(12)), "pilot", self.pilot_id) is None

    def test_cancelled_schedule_ignored(self):
        existing = self.create_mock_schedule("s-1", utc(9), utc(11), status="CANCELLED")

        assert check_schedule_conflict(existing, TimeWindow(utc(10), utc(12)), "pilot", self.pilot_id) is None

    def test_other_resource_ignored(self):
        existing = self.create_mock_schedule("s-1", utc(9), utc(11), pilot_id="pilot-2")

        assert check_schedule_conflict(existing, TimeWindow(utc(10), utc(12)), "pilot", self.pilot_id) is None

    def test_pilot_reported_before_drone(self):
        drone_clash = self.create_mock_schedule("s-drone", utc(8), utc(10), pilot_id="pilot-9")
        pilot_clash = self.create_mock_schedule("s-pilot", utc(9), utc(11), drone_id="drone-9")

        conflict = first_conflict(
            [drone_clash, pilot_clash], TimeWindow(utc(9), utc(10)), self.pilot_id, self.drone_id
        )

        assert conflict.resource == "pilot"
        assert conflict.schedule_id == "s-pilot"

    def test_drone_conflict_reported_when_pilot_free(self):
        drone_clash = self.create_mock_schedule("s-drone", utc(8), utc(10), pilot_id="pilot-9")

        conflict = first_conflict([drone_clash], TimeWindow(utc(9), utc(10)), self.pilot_id, self.drone_id)

        assert conflict.resource == "drone"

    def test_detect_raises_conflict_with_payload(self):
        existing = self.create_mock_schedule("s-1", utc(9), utc(11), job_id="job-7")
        self.db.query.return_value.filter.return_value.order_by.return_value.all.return_value = [existing]

        with pytest.raises(ConflictError) as exc_info:
            detect_schedule_conflict(self.db, TimeWindow(utc(10), utc(12)), self.pilot_id, self.drone_id)

        assert exc_info.value.status_code == 409
        assert exc_info.value.payload() == {
            "error": "Pilot is blocked by schedule s-1, from 2025-01-15T09:00:00Z to 2025-01-15T11:00:00Z",
            "resource": "pilot",
            "conflict": {
                "id": "s-1",
                "startAt": "2025-01-15T09:00:00Z",
                "endAt": "2025-01-15T11:00:00Z",
                "jobId": "job-7",
            },
        }

    def test_detect_passes_when_no_candidates(self):
        self.db.query.return_value.filter.return_value.order_by.return_value.all.return_value = []

        detect_schedule_conflict(self.db, TimeWindow(utc(10), utc(12)), self.pilot_id, self.drone_id)


class TestWindowValidation:
    def test_missing_bounds_listed(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_window(None, None)

        assert [d["path"] for d in exc_info.value.details] == ["startAt", "endAt"]

    def test_inverted_range(self):
        with pytest.raises(InvalidRangeError):
            validate_window(utc(12), utc(10))


class TestScheduleUpdate:
    def setup_method(self):
        self.db = Mock()
        self.schedule = Mock(spec=models.Schedule)
        self.schedule.id = "s-1"
        self.schedule.pilot_id = "pilot-1"
        self.schedule.drone_id = "drone-1"
        self.schedule.start_at = utc(9)
        self.schedule.end_at = utc(11)
        self.schedule.status = "ASSIGNED"

    def test_explicit_null_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_schedule_update(self.db, self.schedule, {"start_at": None})

        assert exc_info.value.details[0]["path"] == "start_at"

    def test_new_end_before_existing_start(self):
        with pytest.raises(InvalidRangeError):
            validate_schedule_update(self.db, self.schedule, {"end_at": utc(8)})

    def test_strict_transition_rejected(self):
        with pytest.raises(ConflictError) as exc_info:
            validate_status_transition("CANCELLED", "ASSIGNED", strict=True)

        assert exc_info.value.status_code == 409
        assert exc_info.value.resource == "status"

    def test_lenient_transition_allowed(self):
        validate_status_transition("CANCELLED", "ASSIGNED", strict=False)

    def test_status_only_update_skips_conflict_check(self):
        assert not schedule_needs_conflict_check(self.schedule, {"status": "IN_PROGRESS"})

    def test_moving_window_needs_conflict_check(self):
        assert schedule_needs_conflict_check(self.schedule, {"end_at": utc(12)})

    def test_unchanged_values_skip_conflict_check(self):
        assert not schedule_needs_conflict_check(self.schedule, {"pilot_id": "pilot-1"})

    def test_cancelling_skips_conflict_check(self):
        assert not schedule_needs_conflict_check(self.schedule, {"status": "CANCELLED", "end_at": utc(12)})

    def test_reactivation_needs_conflict_check(self):
        self.schedule.status = "CANCELLED"
        assert schedule_needs_conflict_check(self.schedule, {"status": "ASSIGNED"})


class TestDeleteGuards:
    def setup_method(self):
        self.db = Mock()

    def test_get_or_404(self):
        self.db.query.return_value.filter.return_value.first.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            get_or_404(self.db, models.Job, "missing", "Job")

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Job not found"

    def test_job_with_schedules_blocked(self):
        self.db.query.return_value.filter.return_value.count.return_value = 2
        job = Mock(spec=models.Job)
        job.id = "job-1"
        job.name = "Facade wash"

        with pytest.raises(ConflictError) as exc_info:
            guard_job_delete(self.db, job)

        assert exc_info.value.resource == "job"
        assert "2 schedule(s)" in exc_info.value.detail

    def test_drone_without_schedules_allowed(self):
        self.db.query.return_value.filter.return_value.count.return_value = 0
        drone = Mock(spec=models.Drone)
        drone.id = "drone-1"
        drone.name = "Falcon"

        guard_drone_delete(self.db, drone)

    def test_site_with_jobs_blocked(self):
        self.db.query.return_value.filter.return_value.count.return_value = 1
        site = Mock(spec=models.Site)
        site.id = "site-1"
        site.name = "Marina Tower"

        with pytest.raises(ConflictError) as exc_info:
            guard_site_delete(self.db, site)

        assert exc_info.value.resource == "site"

    def test_duplicate_serial_number(self):
        self.db.query.return_value.filter.return_value.first.return_value = Mock(spec=models.Drone)

        with pytest.raises(ConflictError) as exc_info:
            guard_serial_number(self.db, "FAL-001")

        assert "FAL-001" in exc_info.value.detail
