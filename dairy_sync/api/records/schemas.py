# dairy_sync/api/records/schemas.py
from marshmallow import Schema, fields, validate, EXCLUDE


class RecordsQuerySchema(Schema):
    """GET /api/records/<table> query parameters."""
    class Meta:
        unknown = EXCLUDE

    since_date = fields.Str(validate=validate.Regexp(r'^\d{4}-\d{2}-\d{2}$'))
    updated_after = fields.Str()  # ISO timestamp


class DualWriteResultSchema(Schema):
    success = fields.Bool()
    write_targets = fields.List(fields.Str())
    supabase_result = fields.Dict(allow_none=True)
    firebase_result = fields.Dict(allow_none=True)
    errors = fields.List(fields.Str())
    rolled_back = fields.List(fields.Str())
    attempts = fields.Int()
