from datetime import datetime, timezone
from dbkeeper import db


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BackupCycle(db.Model):
    """Backup cycle execution history and logs"""
    __tablename__ = 'backup_cycles'

    id = db.Column(db.Integer, primary_key=True)
    trigger = db.Column(db.String(20), nullable=False, default='scheduled')  # scheduled, manual
    status = db.Column(db.String(20), nullable=False)  # running, success, partial, failed
    started_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    daily_key = db.Column(db.String(500))  # Daily backup created by this cycle, if any
    filled_count = db.Column(db.Integer, default=0, nullable=False)
    pruned_count = db.Column(db.Integer, default=0, nullable=False)
    error_count = db.Column(db.Integer, default=0, nullable=False)
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)  # Detailed execution logs

    def to_dict(self, include_logs=False):
        data = {
            'id': self.id,
            'trigger': self.trigger,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'daily_key': self.daily_key,
            'filled_count': self.filled_count,
            'pruned_count': self.pruned_count,
            'error_count': self.error_count,
            'error_message': self.error_message
        }
        if include_logs:
            data['logs'] = self.logs.split('\n') if self.logs else []
        return data

    def __repr__(self):
        return f'<BackupCycle id={self.id} trigger={self.trigger} status={self.status}>'
