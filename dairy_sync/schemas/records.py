# dairy_sync/schemas/records.py
from typing import Any, Dict

from marshmallow import Schema, fields, validate, EXCLUDE

from dairy_sync.core.errors import UnknownTableError
from dairy_sync.models.sync import SyncTable, MutationOperation

DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'


class RecordBaseSchema(Schema):
    """Fields shared by every synced record. tenant_id is never taken from the payload."""
    class Meta:
        unknown = EXCLUDE

    id = fields.Str()
    created_at = fields.Raw(allow_none=True)
    updated_at = fields.Raw(allow_none=True)


class AnimalSchema(RecordBaseSchema):
    """`animals` row."""
    tag = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    name = fields.Str(allow_none=True)
    species = fields.Str(
        load_default='cow',
        validate=validate.OneOf(['cow', 'buffalo', 'chicken', 'goat', 'sheep', 'horse'])
    )
    breed = fields.Str(allow_none=True)
    date_of_birth = fields.Str(allow_none=True, validate=validate.Regexp(DATE_PATTERN))
    gender = fields.Str(load_default='female', validate=validate.OneOf(['male', 'female']))
    photo_url = fields.Str(allow_none=True)
    status = fields.Str(
        load_default='active',
        validate=validate.OneOf(['active', 'sold', 'deceased', 'sick'])
    )
    purchase_date = fields.Str(allow_none=True, validate=validate.Regexp(DATE_PATTERN))
    purchase_price = fields.Float(allow_none=True, validate=validate.Range(min=0))
    current_weight = fields.Float(allow_none=True, validate=validate.Range(min=0))
    parent_id = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    custom_fields = fields.Dict(allow_none=True)


class MilkLogSchema(RecordBaseSchema):
    """`milk_logs` row. `date` drives the pull window."""
    animal_id = fields.Str(required=True)
    date = fields.Str(required=True, validate=validate.Regexp(DATE_PATTERN))
    session = fields.Str(required=True, validate=validate.OneOf(['morning', 'afternoon', 'evening']))
    quantity = fields.Float(required=True, validate=validate.Range(min=0))
    quality = fields.Str(allow_none=True, validate=validate.OneOf(['excellent', 'good', 'average', 'poor']))
    fat = fields.Float(allow_none=True, validate=validate.Range(min=0, max=100))
    snf = fields.Float(allow_none=True, validate=validate.Range(min=0, max=100))
    notes = fields.Str(allow_none=True)
    recorded_by = fields.Str(allow_none=True)


class HealthRecordSchema(RecordBaseSchema):
    """`health_records` row."""
    animal_id = fields.Str(required=True)
    date = fields.Str(required=True, validate=validate.Regexp(DATE_PATTERN))
    record_type = fields.Str(
        required=True,
        validate=validate.OneOf([
            'checkup', 'vaccination', 'treatment', 'surgery',
            'deworming', 'injury', 'disease', 'other'
        ])
    )
    description = fields.Str(required=True)
    diagnosis = fields.Str(allow_none=True)
    treatment = fields.Str(allow_none=True)
    medication = fields.Str(allow_none=True)
    dosage = fields.Str(allow_none=True)
    cost = fields.Float(allow_none=True, validate=validate.Range(min=0))
    vet_name = fields.Str(allow_none=True)
    next_checkup = fields.Str(allow_none=True, validate=validate.Regexp(DATE_PATTERN))
    recorded_by = fields.Str(allow_none=True)


RECORD_SCHEMAS = {
    SyncTable.ANIMALS.value: AnimalSchema,
    SyncTable.MILK_LOGS.value: MilkLogSchema,
    SyncTable.HEALTH_RECORDS.value: HealthRecordSchema,
}


def schema_for(table: str) -> Schema:
    try:
        return RECORD_SCHEMAS[table]()
    except KeyError:
        raise UnknownTableError(table)


def validate_payload(table: str, operation: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a mutation payload for (table, operation).

    - create: the full record
    - update: a partial record (only the fields being changed)
    - delete: no payload; the record id travels on the mutation itself

    Raises marshmallow.ValidationError or UnknownTableError.
    """
    schema = schema_for(table)
    operation = MutationOperation(operation).value

    if operation == MutationOperation.DELETE.value:
        return {}
    if operation == MutationOperation.UPDATE.value:
        return schema.load(data or {}, partial=True)
    return schema.load(data or {})
