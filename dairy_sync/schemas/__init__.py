# dairy_sync/schemas/__init__.py
from .records import (
    AnimalSchema, MilkLogSchema, HealthRecordSchema,
    RECORD_SCHEMAS, schema_for, validate_payload
)

__all__ = [
    'AnimalSchema', 'MilkLogSchema', 'HealthRecordSchema',
    'RECORD_SCHEMAS', 'schema_for', 'validate_payload'
]
