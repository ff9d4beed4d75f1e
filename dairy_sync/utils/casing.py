# dairy_sync/utils/casing.py
import re
from typing import Any, Dict

_CAMEL_BOUNDARY = re.compile(r'_([a-z0-9])')
_SNAKE_BOUNDARY = re.compile(r'([A-Z])')


def to_camel_case(key: str) -> str:
    """milk_logs -> milkLogs, tenant_id -> tenantId"""
    return _CAMEL_BOUNDARY.sub(lambda m: m.group(1).upper(), key)


def to_snake_case(key: str) -> str:
    """animalId -> animal_id"""
    return _SNAKE_BOUNDARY.sub(lambda m: '_' + m.group(1).lower(), key)


def keys_to_camel(data: Dict[str, Any]) -> Dict[str, Any]:
    # Only top-level keys; nested dicts (custom_fields) keep user-defined keys.
    return {to_camel_case(k): v for k, v in data.items()}


def keys_to_snake(data: Dict[str, Any]) -> Dict[str, Any]:
    return {to_snake_case(k): v for k, v in data.items()}
