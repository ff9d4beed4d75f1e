# dairy_sync/api/migration/routes.py
import logging
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError

from dairy_sync.api.migration.schemas import (
    PhaseUpdateSchema,
    FlagUpdateSchema,
    ReconcileRequestSchema,
    RecoveryRequestSchema
)
from dairy_sync.utils.datetime_utils import DateTimeUtils

migration_bp = Blueprint('migration_bp', __name__)


@migration_bp.route('/status', methods=['GET'])
@jwt_required()
def get_status():
    """Phase, evaluated flags, write mode, read source and a milk_logs count check."""
    try:
        return jsonify(current_app.services['dual_write'].migration_status()), 200
    except Exception as e:
        logging.error(f"Migration status API error: {e}", exc_info=True)
        return jsonify({"error_code": "STATUS_FAILED", "message": "Error while reading migration status"}), 500


@migration_bp.route('/phase', methods=['PUT'])
@jwt_required()
def set_phase():
    flag_manager = current_app.services['feature_flags']
    try:
        data = PhaseUpdateSchema().load(request.get_json() or {})
        flags = flag_manager.set_phase(data['phase'])
        return jsonify({"phase": data['phase'], "flags": flags.to_dict()}), 200
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except Exception as e:
        logging.error(f"Migration phase API error: {e}", exc_info=True)
        return jsonify({"error_code": "PHASE_UPDATE_FAILED", "message": "Error while switching phase"}), 500


@migration_bp.route('/feature-flags', methods=['GET'])
@jwt_required()
def list_feature_flags():
    """Stored flags plus their evaluation for the X-Tenant-Id tenant (if sent)."""
    flag_manager = current_app.services['feature_flags']
    try:
        tenant_id = request.headers.get('X-Tenant-Id')
        return jsonify({
            "flags": [f.to_dict() for f in flag_manager.list_flags()],
            "evaluated": flag_manager.get_flags(tenant_id=tenant_id).to_dict(),
        }), 200
    except Exception as e:
        logging.error(f"Feature flag list API error: {e}", exc_info=True)
        return jsonify({"error_code": "FETCH_FAILED", "message": "Error while reading feature flags"}), 500


@migration_bp.route('/feature-flags/<string:key>', methods=['PUT'])
@jwt_required()
def update_feature_flag(key: str):
    flag_manager = current_app.services['feature_flags']
    try:
        updates = FlagUpdateSchema().load(request.get_json() or {})
        if not updates:
            return jsonify({"error_code": "VALIDATION_ERROR", "details": {"_schema": ["No changes sent."]}}), 400
        flag = flag_manager.update_flag(key, **updates)
        return jsonify(flag.to_dict()), 200
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except Exception as e:
        logging.error(f"Feature flag update API error ({key}): {e}", exc_info=True)
        return jsonify({"error_code": "FLAG_UPDATE_FAILED", "message": "Error while updating feature flag"}), 500


@migration_bp.route('/reconcile', methods=['POST'])
@jwt_required()
def reconcile():
    """Run a reconciliation sweep; `sync: true` also copies rows to the lagging side."""
    job = current_app.services['reconciliation']
    try:
        data = ReconcileRequestSchema().load(request.get_json(silent=True) or {})
        report = job.run(tenant_ids=data['tenant_ids'])
        body = report.to_dict()
        if data['sync'] and report.discrepancies:
            body['synced_rows'] = job.sync_discrepancies(report.discrepancies, by_row_id=data['by_row_id'])
        return jsonify(body), 200
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except Exception as e:
        logging.error(f"Reconciliation API error: {e}", exc_info=True)
        return jsonify({"error_code": "RECONCILIATION_FAILED", "message": "Error while reconciling data"}), 500


@migration_bp.route('/schedule', methods=['GET'])
def scheduled_run():
    """Cron entry point: metrics, reconciliation and automatic resync. Authenticated by X-Cron-Secret."""
    cron_secret = current_app.config.get('CRON_SECRET')
    if not cron_secret or request.headers.get('X-Cron-Secret') != cron_secret:
        return jsonify({"error_code": "UNAUTHORIZED", "message": "Unauthorized cron request"}), 401

    monitor = current_app.services['monitor']
    job = current_app.services['reconciliation']
    try:
        metrics = monitor.collect_metrics(run_reconciliation=True)
        report = job.last_report
        synced_rows = 0
        if report is not None and report.discrepancies:
            logging.info(f"Found {len(report.discrepancies)} discrepancies, starting auto-sync")
            synced_rows = job.sync_discrepancies(report.discrepancies)

        return jsonify({
            "metrics": metrics.to_dict(),
            "reconciliation": report.to_dict() if report else None,
            "synced_rows": synced_rows,
            "timestamp": DateTimeUtils.to_iso_string(DateTimeUtils.now()),
        }), 200
    except Exception as e:
        logging.error(f"Scheduled migration job failed: {e}", exc_info=True)
        return jsonify({"error_code": "SCHEDULED_JOB_FAILED", "message": str(e)}), 500


@migration_bp.route('/recover', methods=['POST'])
@jwt_required()
def recover():
    monitor = current_app.services['monitor']
    try:
        data = RecoveryRequestSchema().load(request.get_json() or {})
        recovered = monitor.attempt_automated_recovery(data['alert_type'])
        if recovered:
            return jsonify({"recovery_success": True,
                            "message": f"Automated recovery initiated for {data['alert_type']}"}), 200
        return jsonify({"recovery_success": False,
                        "message": f"Could not automatically recover from {data['alert_type']}"}), 200
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except Exception as e:
        logging.error(f"Recovery API error: {e}", exc_info=True)
        return jsonify({"error_code": "RECOVERY_FAILED", "message": "Error while running recovery"}), 500


@migration_bp.route('/health', methods=['GET'])
@jwt_required()
def health():
    result = current_app.services['monitor'].health_check()
    status_code = 503 if result['status'] == 'CRITICAL' else 200
    return jsonify(result), status_code
