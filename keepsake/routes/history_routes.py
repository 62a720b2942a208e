"""
Cycle history routes - view backup, prune and restore executions.
"""

from datetime import datetime, timedelta
from flask import Blueprint, jsonify, request
from flask_login import login_required

from keepsake.models import CycleHistory


bp = Blueprint('history', __name__, url_prefix='/api/history')

VALID_STATUSES = ['running', 'success', 'warning', 'failed', 'skipped']
VALID_KINDS = ['backup', 'prune', 'restore']


def _record_to_dict(record: CycleHistory, include_logs: bool = False) -> dict:
    data = {
        'id': record.id,
        'kind': record.kind,
        'trigger': record.trigger,
        'status': record.status,
        'started_at': record.started_at.isoformat(),
        'completed_at': record.completed_at.isoformat() if record.completed_at else None,
        'file_name': record.file_name,
        'local_removed': record.local_removed,
        'remote_removed': record.remote_removed,
        'error_message': record.error_message
    }
    if include_logs:
        data['logs'] = record.logs
    return data


@bp.route('', methods=['GET'])
@login_required
def list_history():
    """
    Get cycle history with filtering and pagination.

    Query params:
        - status: Filter by status
        - kind: Filter by cycle kind (backup/prune/restore)
        - days: Only show cycles from last N days
        - limit: Max number of records (default: 50, max: 200)
        - offset: Number of records to skip (default: 0)

    Returns:
        JSON with history records and metadata
    """
    status_filter = request.args.get('status')
    kind_filter = request.args.get('kind')
    days_filter = request.args.get('days', type=int)
    limit = min(request.args.get('limit', 50, type=int), 200)
    offset = max(request.args.get('offset', 0, type=int), 0)

    query = CycleHistory.query

    if status_filter:
        if status_filter not in VALID_STATUSES:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter(CycleHistory.status == status_filter)

    if kind_filter:
        if kind_filter not in VALID_KINDS:
            return jsonify({'error': 'Invalid kind filter'}), 400
        query = query.filter(CycleHistory.kind == kind_filter)

    if days_filter and days_filter > 0:
        cutoff_date = datetime.utcnow() - timedelta(days=days_filter)
        query = query.filter(CycleHistory.started_at >= cutoff_date)

    total_count = query.count()

    records = query.order_by(
        CycleHistory.started_at.desc(), CycleHistory.id.desc()
    ).limit(limit).offset(offset).all()

    return jsonify({
        'history': [_record_to_dict(record) for record in records],
        'total': total_count,
        'limit': limit,
        'offset': offset
    })


@bp.route('/<int:history_id>', methods=['GET'])
@login_required
def get_history(history_id):
    """
    Get a single cycle record including its logs.

    Args:
        history_id: CycleHistory ID

    Returns:
        JSON with record details
    """
    record = CycleHistory.query.get_or_404(history_id)
    return jsonify(_record_to_dict(record, include_logs=True))
