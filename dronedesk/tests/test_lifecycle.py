from dronedesk.lifecycle import (
    ScheduleStatus,
    can_transition,
    is_active,
    is_terminal,
    reactivates,
)


class TestScheduleLifecycle:
    def test_active_and_terminal_sets(self):
        assert is_active("ASSIGNED")
        assert is_active(ScheduleStatus.IN_PROGRESS)
        assert is_terminal("COMPLETED")
        assert is_terminal("CANCELLED")
        assert not is_active("CANCELLED")

    def test_lenient_mode_allows_any_move(self):
        assert can_transition("COMPLETED", "ASSIGNED")
        assert can_transition("CANCELLED", "IN_PROGRESS")

    def test_strict_mode_is_forward_only(self):
        assert can_transition("ASSIGNED", "IN_PROGRESS", strict=True)
        assert can_transition("IN_PROGRESS", "COMPLETED", strict=True)
        assert not can_transition("IN_PROGRESS", "ASSIGNED", strict=True)
        assert not can_transition("CANCELLED", "ASSIGNED", strict=True)

    def test_same_status_always_allowed(self):
        assert can_transition("COMPLETED", "COMPLETED", strict=True)

    def test_reactivation(self):
        assert reactivates("CANCELLED", "ASSIGNED")
        assert not reactivates("ASSIGNED", "IN_PROGRESS")
        assert not reactivates("COMPLETED", "CANCELLED")
