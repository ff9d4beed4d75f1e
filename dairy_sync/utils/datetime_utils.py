# dairy_sync/utils/datetime_utils.py
"""
Centralized time handling for the sync core.

Why this module exists:
1. Local cache timestamps are epoch milliseconds, remote rows carry ISO strings
2. Firestore stores timezone-aware datetimes, Supabase stores TIMESTAMPTZ text
3. Last-writer-wins comparisons need both sides on the same scale
"""

import logging
import time as _time
from datetime import datetime, date, timezone, time, timedelta
from typing import Any, Union

from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)


class DateTimeUtils:
    """Time/date helpers shared by the offline store, the gateways and the coordinator."""

    @staticmethod
    def now() -> datetime:
        """Current time as a UTC timezone-aware datetime."""
        return datetime.now(timezone.utc)

    @staticmethod
    def now_ms() -> int:
        """Current time as Unix epoch milliseconds."""
        return int(_time.time() * 1000)

    @staticmethod
    def today() -> date:
        return datetime.now(timezone.utc).date()

    @staticmethod
    def days_ago(days: int) -> date:
        """Start of the window used for time-series pulls and cache cleanup."""
        return DateTimeUtils.today() - timedelta(days=days)

    @staticmethod
    def parse_iso_datetime(iso_string: str) -> datetime:
        """
        Parse an ISO string into a UTC datetime.

        Supported formats:
        - 2024-01-15T10:30:00Z
        - 2024-01-15T10:30:00+05:00
        - 2024-01-15T10:30:00.123456Z
        - 2024-01-15T10:30:00 (assumed UTC)
        - 2024-01-15 10:30:00 (Postgres text form)
        """
        try:
            if not iso_string:
                raise ValueError("Cannot parse an empty string")

            if iso_string.endswith('Z'):
                iso_string = iso_string[:-1] + '+00:00'

            dt = dateutil_parser.isoparse(iso_string)

            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)

            return dt.astimezone(timezone.utc)

        except Exception as e:
            logger.error(f"ISO datetime parse failed: {iso_string} - {e}")
            raise ValueError(f"Invalid ISO datetime: {iso_string}")

    @staticmethod
    def to_iso_string(dt: datetime) -> str:
        """Render a datetime as an ISO string with a Z suffix."""
        try:
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            else:
                dt = dt.astimezone(timezone.utc)

            return dt.isoformat().replace('+00:00', 'Z')

        except Exception as e:
            logger.error(f"ISO string conversion failed: {dt} - {e}")
            raise ValueError(f"Cannot convert to ISO string: {dt}")

    @staticmethod
    def to_date_string(d: date) -> str:
        """YYYY-MM-DD, the format of the `date` column on time-series tables."""
        return d.strftime('%Y-%m-%d')

    @staticmethod
    def from_timestamp_ms(timestamp_ms: int) -> datetime:
        """
        Convert Unix epoch milliseconds to a UTC datetime.

        Args:
            timestamp_ms: Unix timestamp in milliseconds

        Returns:
            UTC timezone-aware datetime
        """
        try:
            if isinstance(timestamp_ms, bool) or not isinstance(timestamp_ms, (int, float)):
                raise ValueError("timestamp_ms must be a number")

            return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)

        except Exception as e:
            logger.error(f"timestamp_ms conversion failed: {timestamp_ms} - {e}")
            raise ValueError(f"Invalid timestamp: {timestamp_ms}")

    @staticmethod
    def ms_to_iso(timestamp_ms: int) -> str:
        return DateTimeUtils.to_iso_string(DateTimeUtils.from_timestamp_ms(timestamp_ms))

    @staticmethod
    def to_timestamp_ms(value: Union[datetime, str, int, float, Any]) -> int:
        """
        Convert whatever a remote row carries in `updated_at` into epoch milliseconds.

        Accepts datetimes (including Firestore DatetimeWithNanoseconds),
        ISO strings and numbers that are already epoch milliseconds.
        """
        try:
            if isinstance(value, bool):
                raise ValueError("bool is not a timestamp")

            if isinstance(value, (int, float)):
                return int(value)

            if isinstance(value, str):
                value = DateTimeUtils.parse_iso_datetime(value)

            if isinstance(value, datetime):
                if value.tzinfo is None:
                    value = value.replace(tzinfo=timezone.utc)
                return int(value.timestamp() * 1000)

            # Firestore timestamp objects
            if hasattr(value, 'timestamp'):
                return int(value.timestamp() * 1000)

            raise ValueError(f"Unsupported timestamp type: {type(value)}")

        except Exception as e:
            logger.error(f"timestamp_ms conversion failed: {value} - {e}")
            raise ValueError(f"Cannot convert to timestamp: {value}")

    @staticmethod
    def for_firestore(obj: Any) -> Any:
        """
        Convert date/datetime values for Firestore storage.

        Rules:
        - date -> datetime (00:00:00 UTC)
        - naive datetime -> UTC aware datetime
        - dict/list converted recursively
        """
        if isinstance(obj, date) and not isinstance(obj, datetime):
            return datetime.combine(obj, time.min).replace(tzinfo=timezone.utc)

        elif isinstance(obj, datetime):
            if obj.tzinfo is None:
                return obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc)

        elif isinstance(obj, dict):
            return {k: DateTimeUtils.for_firestore(v) for k, v in obj.items()}

        elif isinstance(obj, list):
            return [DateTimeUtils.for_firestore(item) for item in obj]

        return obj

    @staticmethod
    def from_firestore(obj: Any) -> Any:
        """
        Normalize values read from Firestore: datetimes become ISO strings so
        rows look the same no matter which database they came from.
        """
        if isinstance(obj, datetime):
            return DateTimeUtils.to_iso_string(obj)

        elif isinstance(obj, dict):
            return {k: DateTimeUtils.from_firestore(v) for k, v in obj.items()}

        elif isinstance(obj, list):
            return [DateTimeUtils.from_firestore(item) for item in obj]

        return obj
