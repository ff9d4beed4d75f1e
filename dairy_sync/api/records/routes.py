# dairy_sync/api/records/routes.py
import logging
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from marshmallow import ValidationError

from dairy_sync.api.records.schemas import RecordsQuerySchema, DualWriteResultSchema
from dairy_sync.core.errors import RemoteDatabaseError, UnknownTableError
from dairy_sync.schemas.records import validate_payload, schema_for

records_bp = Blueprint('records_bp', __name__)


def _tenant_id():
    return request.headers.get('X-Tenant-Id')


def _missing_tenant():
    return jsonify({"error_code": "TENANT_REQUIRED", "message": "X-Tenant-Id header is required"}), 400


def _unknown_table(table: str):
    return jsonify({"error_code": "UNKNOWN_TABLE", "message": f"Unknown table: {table}"}), 404


def _write_response(result, success_status: int):
    body = DualWriteResultSchema().dump(result)
    if result.success:
        return jsonify(body), success_status
    # 502: the remote databases rejected the write; clients retry
    return jsonify({"error_code": "DUAL_WRITE_FAILED", "message": "; ".join(result.errors), **body}), 502


@records_bp.route('/<string:table>', methods=['POST'])
@jwt_required()
def create_record(table: str):
    """Create a record in every active write target."""
    tenant_id = _tenant_id()
    if not tenant_id:
        return _missing_tenant()

    coordinator = current_app.services['dual_write']
    try:
        data = validate_payload(table, 'create', request.get_json() or {})
        result = coordinator.create_record(table, data, tenant_id, user_id=get_jwt_identity())
        return _write_response(result, 201)
    except UnknownTableError:
        return _unknown_table(table)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except Exception as e:
        logging.error(f"Record create API error ({table}, tenant: {tenant_id}): {e}", exc_info=True)
        return jsonify({"error_code": "RECORD_CREATION_FAILED", "message": "Error while creating record"}), 500


@records_bp.route('/<string:table>/<string:record_id>', methods=['PUT'])
@jwt_required()
def update_record(table: str, record_id: str):
    tenant_id = _tenant_id()
    if not tenant_id:
        return _missing_tenant()

    coordinator = current_app.services['dual_write']
    try:
        changes = validate_payload(table, 'update', request.get_json() or {})
        result = coordinator.update_record(table, record_id, changes, tenant_id, user_id=get_jwt_identity())
        return _write_response(result, 200)
    except UnknownTableError:
        return _unknown_table(table)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except Exception as e:
        logging.error(f"Record update API error ({table}/{record_id}, tenant: {tenant_id}): {e}", exc_info=True)
        return jsonify({"error_code": "RECORD_UPDATE_FAILED", "message": "Error while updating record"}), 500


@records_bp.route('/<string:table>/<string:record_id>', methods=['DELETE'])
@jwt_required()
def delete_record(table: str, record_id: str):
    tenant_id = _tenant_id()
    if not tenant_id:
        return _missing_tenant()

    coordinator = current_app.services['dual_write']
    try:
        schema_for(table)
        result = coordinator.delete_record(table, record_id, tenant_id, user_id=get_jwt_identity())
        return _write_response(result, 200)
    except UnknownTableError:
        return _unknown_table(table)
    except Exception as e:
        logging.error(f"Record delete API error ({table}/{record_id}, tenant: {tenant_id}): {e}", exc_info=True)
        return jsonify({"error_code": "RECORD_DELETE_FAILED", "message": "Error while deleting record"}), 500


@records_bp.route('/<string:table>', methods=['GET'])
@jwt_required()
def get_records(table: str):
    """
    Read a tenant's records from the current read source.

    Query parameters:
    - since_date: only rows with `date` >= since_date (YYYY-MM-DD)
    - updated_after: only rows changed after this ISO timestamp
    """
    tenant_id = _tenant_id()
    if not tenant_id:
        return _missing_tenant()

    coordinator = current_app.services['dual_write']
    try:
        schema_for(table)
        params = RecordsQuerySchema().load(request.args)
        records = coordinator.select(
            table, tenant_id,
            since_date=params.get('since_date'),
            updated_after=params.get('updated_after'),
            user_id=get_jwt_identity()
        )
        return jsonify({"records": records, "meta": {"total_count": len(records)}}), 200
    except UnknownTableError:
        return _unknown_table(table)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except RemoteDatabaseError as e:
        logging.error(f"Record fetch failed ({table}, tenant: {tenant_id}): {e}")
        return jsonify({"error_code": "FETCH_FAILED", "message": str(e)}), 502
    except Exception as e:
        logging.error(f"Record fetch API error ({table}, tenant: {tenant_id}): {e}", exc_info=True)
        return jsonify({"error_code": "FETCH_FAILED", "message": "Error while fetching records"}), 500
