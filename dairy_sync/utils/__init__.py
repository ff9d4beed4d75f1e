# dairy_sync/utils/__init__.py
"""
Utility package

Helpers shared across the offline store, the migration layer and the API.
"""

from .datetime_utils import DateTimeUtils
from .casing import to_camel_case, to_snake_case, keys_to_camel, keys_to_snake

__all__ = [
    'DateTimeUtils',
    'to_camel_case', 'to_snake_case', 'keys_to_camel', 'keys_to_snake'
]
