from __future__ import annotations


class TimelineError(Exception):
    """Base class for named planner failures."""


class OutOfOrderApply(TimelineError):
    """Raised when a range is applied anywhere but the next unset week."""

    def __init__(self, expected: int, got: int) -> None:
        super().__init__(f"Weeks must be applied from abs-week {expected}; got {got}.")
        self.expected = expected
        self.got = got


class EmptyRuleList(TimelineError):
    """Raised when a week is activated while the plan has no weekly rules."""

    def __init__(self) -> None:
        super().__init__("Cannot activate a week: the plan has no weekly rules.")


class OverwriteAttempt(TimelineError):
    """Raised when month flags disagree with an already fixed week."""

    def __init__(self, abs_week: int) -> None:
        super().__init__(f"Abs-week {abs_week} is already fixed and cannot be changed.")
        self.abs_week = abs_week


class InvalidSkipFlags(TimelineError, ValueError):
    pass


class InvalidImport(TimelineError, ValueError):
    pass


class InvalidMonth(TimelineError, ValueError):
    pass


class InvalidCalendar(TimelineError, ValueError):
    pass


class CalendarExists(TimelineError):
    pass


class InvalidName(TimelineError, ValueError):
    pass


class InvalidAssignment(TimelineError, ValueError):
    pass


class PlanNotFound(TimelineError, LookupError):
    pass


class UnknownGroup(TimelineError, LookupError):
    pass


class UnknownMember(TimelineError, LookupError):
    pass


class UnknownRule(TimelineError, LookupError):
    pass
