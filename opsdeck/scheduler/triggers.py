"""Trigger specifications and next-fire-time evaluation.

A trigger is one of three variants: a cron expression, a fixed interval in
minutes, or a single absolute instant. ``next_fire_after`` is a pure function
of the trigger and a reference instant; the engine decides which reference
to pass (the current time on arm, the completion time after a run).

All datetimes are naive UTC.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from croniter import croniter

from opsdeck.scheduler.exceptions import JobValidationError


class TriggerType(str, Enum):
    """Kind of trigger attached to a job."""

    CRON = "CRON"
    INTERVAL = "INTERVAL"
    ONE_TIME = "ONE_TIME"


# Aliases expanded before handing the expression to croniter
CRON_ALIASES = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}


@dataclass(frozen=True)
class CronSpec:
    """Fire whenever the five-field cron expression matches (UTC)."""

    expression: str

    @property
    def normalized(self) -> str:
        expr = self.expression.strip()
        return CRON_ALIASES.get(expr.lower(), expr)


@dataclass(frozen=True)
class IntervalSpec:
    """Fire every ``minutes`` after the previous run completed."""

    minutes: int


@dataclass(frozen=True)
class OneTimeSpec:
    """Fire once at ``at``."""

    at: datetime


TriggerSpec = Union[CronSpec, IntervalSpec, OneTimeSpec]


def trigger_type_of(trigger: TriggerSpec) -> TriggerType:
    """Map a trigger variant to its ``TriggerType``."""
    if isinstance(trigger, CronSpec):
        return TriggerType.CRON
    if isinstance(trigger, IntervalSpec):
        return TriggerType.INTERVAL
    if isinstance(trigger, OneTimeSpec):
        return TriggerType.ONE_TIME
    raise TypeError(f"Unknown trigger spec: {trigger!r}")


def is_valid_cron(expression: str) -> bool:
    """Check a five-field cron expression (or alias)."""
    normalized = CronSpec(expression).normalized
    if len(normalized.split()) != 5:
        return False
    return croniter.is_valid(normalized)


def next_fire_after(trigger: TriggerSpec, reference: datetime) -> Optional[datetime]:
    """Compute the next fire time strictly after ``reference``.

    Args:
        trigger: The trigger to evaluate
        reference: Reference instant (naive UTC)

    Returns:
        The next fire time, or None when the trigger has no future occurrence
    """
    if isinstance(trigger, CronSpec):
        return croniter(trigger.normalized, reference).get_next(datetime)
    if isinstance(trigger, IntervalSpec):
        return reference + timedelta(minutes=trigger.minutes)
    if isinstance(trigger, OneTimeSpec):
        return trigger.at if trigger.at > reference else None
    raise TypeError(f"Unknown trigger spec: {trigger!r}")


def resume_fire_time(
    trigger: TriggerSpec,
    stored_next: Optional[datetime],
    now: datetime,
) -> datetime:
    """Pick the fire time to arm when the engine (re)starts.

    Missed occurrences are caught up at most once: a stored instant that is
    already in the past is returned as-is, so the engine fires immediately and
    recomputes strictly forward from the completion of that run. Older missed
    ticks are never backfilled.

    A one-time job only leaves ACTIVE once its scheduled fire has run, so an
    ACTIVE one keeps its instant regardless of any manual runs in between.

    Args:
        trigger: The job's trigger (of an ACTIVE job)
        stored_next: ``next_execution_at`` as persisted before the restart
        now: Current time

    Returns:
        The instant to arm (possibly in the past)
    """
    if isinstance(trigger, OneTimeSpec):
        return stored_next if stored_next is not None else trigger.at

    if stored_next is None:
        return next_fire_after(trigger, now)

    return stored_next


def parse_trigger(
    trigger_type: Union[str, TriggerType, None],
    cron_expression: Optional[str] = None,
    interval_minutes: Optional[int] = None,
    scheduled_at: Optional[datetime] = None,
) -> TriggerSpec:
    """Build a trigger from raw create/update fields.

    Raises:
        JobValidationError: If the trigger type is unknown or the field it
            requires is missing or invalid
    """
    if not trigger_type:
        raise JobValidationError("Trigger type is required", field="trigger_type")

    try:
        kind = TriggerType(str(getattr(trigger_type, "value", trigger_type)).upper())
    except ValueError:
        valid = ", ".join(t.value for t in TriggerType)
        raise JobValidationError(
            f"Invalid trigger type '{trigger_type}'. Choose from: {valid}",
            field="trigger_type",
        )

    if kind is TriggerType.CRON:
        if not cron_expression or not cron_expression.strip():
            raise JobValidationError(
                "Cron expression required for CRON trigger type",
                field="cron_expression",
            )
        if not is_valid_cron(cron_expression):
            raise JobValidationError(
                f"Invalid cron expression: '{cron_expression}'",
                field="cron_expression",
            )
        return CronSpec(cron_expression.strip())

    if kind is TriggerType.INTERVAL:
        if interval_minutes is None:
            raise JobValidationError(
                "Interval minutes required for INTERVAL trigger type",
                field="interval_minutes",
            )
        if isinstance(interval_minutes, bool) or int(interval_minutes) != interval_minutes:
            raise JobValidationError(
                "Interval minutes must be a whole number", field="interval_minutes"
            )
        if interval_minutes <= 0:
            raise JobValidationError(
                "Interval minutes must be greater than zero", field="interval_minutes"
            )
        return IntervalSpec(int(interval_minutes))

    if scheduled_at is None:
        raise JobValidationError(
            "Scheduled time required for ONE_TIME trigger type", field="scheduled_at"
        )
    if scheduled_at.tzinfo is not None:
        scheduled_at = scheduled_at.astimezone(timezone.utc).replace(tzinfo=None)
    return OneTimeSpec(scheduled_at)


def describe_trigger(trigger: TriggerSpec) -> str:
    """Short human-readable description used in listings."""
    if isinstance(trigger, CronSpec):
        return f"cron '{trigger.expression}'"
    if isinstance(trigger, IntervalSpec):
        unit = "minute" if trigger.minutes == 1 else "minutes"
        return f"every {trigger.minutes} {unit}"
    return f"once at {trigger.at.strftime('%Y-%m-%d %H:%M:%S')} UTC"
