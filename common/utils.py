import datetime
import decimal
import uuid
from dataclasses import dataclass
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from sync.models import ChangeEvent


def _to_json_compatible(value):
    if isinstance(value, dict):
        return {key: _to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def emit_change(entity, entity_id, op, payload=None):
    """Append a row to the change feed; call inside the writer's transaction."""
    return ChangeEvent.objects.create(
        entity=entity,
        entity_id=str(entity_id),
        op=op,
        payload=_to_json_compatible(dict(payload or {})),
    )


def uuid_query_param(params, name):
    """Read an optional UUID filter from the query string; malformed ids are a 400."""
    raw = params.get(name)
    if not raw:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise ValidationError({name: "Must be a valid UUID."})


def store_timezone():
    """Timezone that defines a calendar day for invoices and reports."""
    return ZoneInfo(settings.POS_STORE_TIMEZONE)


def local_date(value=None):
    value = value or timezone.now()
    return value.astimezone(store_timezone()).date()


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of store-local calendar days."""

    start: datetime.date
    end: datetime.date

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError("start must be on or before end.")

    @classmethod
    def single_day(cls, day):
        return cls(day, day)

    @classmethod
    def last_days(cls, count, today=None):
        today = today or local_date()
        return cls(today - datetime.timedelta(days=count - 1), today)

    def bounds(self):
        """Aware ``[start, end)`` datetimes covering the whole range."""
        tz = store_timezone()
        start = datetime.datetime.combine(self.start, datetime.time.min).replace(tzinfo=tz)
        end = datetime.datetime.combine(self.end + datetime.timedelta(days=1), datetime.time.min).replace(tzinfo=tz)
        return start, end

    def days(self):
        day = self.start
        while day <= self.end:
            yield day
            day += datetime.timedelta(days=1)
