"""
Backup routes - Inventory, retention plan, cycle history and manual triggers.
"""

from flask import Blueprint, current_app, jsonify, request

from dbkeeper import db
from dbkeeper.auth import require_api_token
from dbkeeper.config import BackupSettings
from dbkeeper.models import BackupCycle
from dbkeeper.backup.executor import utc_now
from dbkeeper.backup.inventory import list_backups, group_by_tier
from dbkeeper.backup.planner import ideal_slots
from dbkeeper.backup.reconciler import find_gaps, plan_fills
from dbkeeper.backup.retention import prunable_backups
from dbkeeper.backup.storage import create_storage, StorageError
from dbkeeper.scheduler import get_backup_scheduler


bp = Blueprint('backups', __name__, url_prefix='/api/backups')


def _record_to_dict(record):
    return {
        'key': record.key,
        'tier': record.tier.value,
        'target_date': record.target_date.isoformat(),
        'timestamp': record.timestamp.isoformat()
    }


def _slot_to_dict(slot):
    return {
        'tier': slot.tier.value,
        'target_date': slot.target_date.isoformat(),
        'valid_until': slot.valid_until.isoformat()
    }


def _load_inventory():
    settings = BackupSettings.from_config(current_app.config)
    storage = create_storage(settings)
    return settings, list_backups(storage)


@bp.route('', methods=['GET'])
@require_api_token
def get_inventory():
    """
    List existing backups grouped by tier.

    Returns:
        JSON with backups per tier and the retention policy
    """
    try:
        settings, existing = _load_inventory()
    except StorageError as e:
        current_app.logger.error(f"Failed to list backups: {e}")
        return jsonify({'error': f'Failed to list backups: {e}'}), 502

    groups = group_by_tier(existing)
    return jsonify({
        'retention': settings.retention.as_dict(),
        'total': len(existing),
        'backups': {
            tier.value: [_record_to_dict(r) for r in records]
            for tier, records in groups.items()
        }
    })


@bp.route('/plan', methods=['GET'])
@require_api_token
def get_plan():
    """
    Dry run of the next cycle's fill and prune steps against current storage.

    Returns:
        JSON with ideal slots, open gaps, planned fills and prune targets
    """
    try:
        settings, existing = _load_inventory()
    except StorageError as e:
        current_app.logger.error(f"Failed to list backups: {e}")
        return jsonify({'error': f'Failed to list backups: {e}'}), 502

    now = utc_now()
    slots = ideal_slots(now, settings.retention)
    fills = plan_fills(existing, slots)

    return jsonify({
        'now': now.isoformat(),
        'slots': [_slot_to_dict(s) for s in slots],
        'gaps': [_slot_to_dict(s) for s in find_gaps(existing, slots)],
        'fills': [{'source_key': p.source_key, 'dest_key': p.dest_key} for p in fills],
        'prune': [r.key for r in prunable_backups(existing, settings.retention)]
    })


@bp.route('/run', methods=['POST'])
@require_api_token
def run_now():
    """
    Trigger a backup cycle immediately.

    Returns:
        202 when queued, 503 if the scheduler is not running
    """
    backup_scheduler = get_backup_scheduler(current_app)
    if backup_scheduler is None or not backup_scheduler.running:
        return jsonify({'error': 'Backup scheduler is not running'}), 503

    backup_scheduler.trigger_now()
    return jsonify({
        'message': 'Backup cycle triggered',
        'cycle_in_progress': backup_scheduler.cycle_in_progress
    }), 202


@bp.route('/cycles', methods=['GET'])
@require_api_token
def list_cycles():
    """
    Get recent backup cycles, newest first.

    Query params:
        - status: Filter by status
        - limit: Max number of records (default: 20, max: 200)
    """
    status_filter = request.args.get('status')
    limit = request.args.get('limit', 20, type=int)
    limit = max(1, min(limit, 200))

    query = BackupCycle.query
    if status_filter:
        if status_filter not in ['running', 'success', 'partial', 'failed']:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter(BackupCycle.status == status_filter)

    cycles = query.order_by(BackupCycle.started_at.desc(), BackupCycle.id.desc()).limit(limit).all()
    return jsonify({
        'cycles': [cycle.to_dict() for cycle in cycles]
    })


@bp.route('/cycles/<int:cycle_id>', methods=['GET'])
@require_api_token
def get_cycle(cycle_id):
    """Get one backup cycle including its log lines."""
    cycle = db.session.get(BackupCycle, cycle_id)
    if cycle is None:
        return jsonify({'error': 'Backup cycle not found'}), 404
    return jsonify(cycle.to_dict(include_logs=True))


@bp.route('/scheduler', methods=['GET'])
@require_api_token
def get_scheduler_status():
    """Get scheduler diagnostics."""
    backup_scheduler = get_backup_scheduler(current_app)
    if backup_scheduler is None:
        return jsonify({'running': False, 'state': 'NOT_INITIALIZED'})
    return jsonify(backup_scheduler.get_diagnostics())
