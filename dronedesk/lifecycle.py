from enum import Enum
from typing import Dict, Set, Union


class ScheduleStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


ACTIVE_STATUSES: Set[ScheduleStatus] = {ScheduleStatus.ASSIGNED, ScheduleStatus.IN_PROGRESS}
TERMINAL_STATUSES: Set[ScheduleStatus] = {ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED}

# forward-only machine, used when strict transitions are switched on
ALLOWED_TRANSITIONS: Dict[ScheduleStatus, Set[ScheduleStatus]] = {
    ScheduleStatus.ASSIGNED: {
        ScheduleStatus.IN_PROGRESS,
        ScheduleStatus.COMPLETED,
        ScheduleStatus.CANCELLED,
    },
    ScheduleStatus.IN_PROGRESS: {
        ScheduleStatus.COMPLETED,
        ScheduleStatus.CANCELLED,
    },
    ScheduleStatus.COMPLETED: set(),
    ScheduleStatus.CANCELLED: set(),
}


def _status(value: Union[str, ScheduleStatus]) -> ScheduleStatus:
    return value if isinstance(value, ScheduleStatus) else ScheduleStatus(value)


def is_active(status: Union[str, ScheduleStatus]) -> bool:
    return _status(status) in ACTIVE_STATUSES


def is_terminal(status: Union[str, ScheduleStatus]) -> bool:
    return _status(status) in TERMINAL_STATUSES


def can_transition(source: Union[str, ScheduleStatus], target: Union[str, ScheduleStatus], strict: bool = False) -> bool:
    source, target = _status(source), _status(target)
    if source == target:
        return True
    if not strict:
        return True
    return target in ALLOWED_TRANSITIONS.get(source, set())


def reactivates(source: Union[str, ScheduleStatus], target: Union[str, ScheduleStatus]) -> bool:
    """True when a terminal schedule is moved back into an active status."""
    return is_terminal(source) and is_active(target)
