# dairy_sync/api/migration/schemas.py
from marshmallow import Schema, fields, validate

from dairy_sync.migration.feature_flags import MIGRATION_PHASES


class PhaseUpdateSchema(Schema):
    phase = fields.Str(required=True, validate=validate.OneOf(list(MIGRATION_PHASES)))


class FlagUpdateSchema(Schema):
    """PUT /api/migration/feature-flags/<key>. At least one field must be sent."""
    enabled = fields.Bool()
    rollout_percentage = fields.Int(validate=validate.Range(min=0, max=100))
    description = fields.Str()
    target_users = fields.List(fields.Str(), allow_none=True)
    target_tenants = fields.List(fields.Str(), allow_none=True)


class ReconcileRequestSchema(Schema):
    tenant_ids = fields.List(fields.Str(), load_default=None)
    sync = fields.Bool(load_default=False)
    by_row_id = fields.Bool(load_default=False)


class RecoveryRequestSchema(Schema):
    alert_type = fields.Str(required=True)
