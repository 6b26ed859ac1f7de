import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

from dbkeeper.backup.compression import extension_for_format
from dbkeeper.backup.retention import RetentionPolicy


def _env_bool(name, default='false'):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


def _env_list(name):
    value = os.environ.get(name, '')
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration"""

    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-not-secret'

    # Database holding backup cycle history
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/dbkeeper.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'
    TEMP_DIR = os.environ.get('TEMP_DIR') or '/data/temp'
    LOCAL_BACKUP_DIR = os.environ.get('LOCAL_BACKUP_DIR') or '/data/local_backups'

    # Backups
    BACKUP_ENABLED = _env_bool('BACKUP_ENABLED')
    BACKUP_DATABASES = _env_list('BACKUP_DATABASES')
    BACKUP_STORAGE = os.environ.get('BACKUP_STORAGE') or 's3'  # 's3' or 'local'
    BACKUP_PREFIX = os.environ.get('BACKUP_PREFIX') or 'db-'
    BACKUP_ARCHIVE_FORMAT = os.environ.get('BACKUP_ARCHIVE_FORMAT') or 'tar.zst'

    BACKUPS_BUCKET_NAME = os.environ.get('BACKUPS_BUCKET_NAME')
    BACKUPS_BUCKET_REGION = os.environ.get('BACKUPS_BUCKET_REGION') or 'us-east-1'
    BACKUPS_BUCKET_KEY = os.environ.get('BACKUPS_BUCKET_KEY')
    BACKUPS_BUCKET_SECRET = os.environ.get('BACKUPS_BUCKET_SECRET')
    BACKUPS_ENDPOINT_URL = os.environ.get('BACKUPS_ENDPOINT_URL')

    BACKUP_RETENTION_DAILY = int(os.environ.get('BACKUP_RETENTION_DAILY', 7))
    BACKUP_RETENTION_WEEKLY = int(os.environ.get('BACKUP_RETENTION_WEEKLY', 4))
    BACKUP_RETENTION_MONTHLY = int(os.environ.get('BACKUP_RETENTION_MONTHLY', 12))
    BACKUP_RETENTION_YEARLY = int(os.environ.get('BACKUP_RETENTION_YEARLY', 2))

    # We back up daily but check more often to recover from failed cycles
    BACKUP_INTERVAL_HOURS = float(os.environ.get('BACKUP_INTERVAL_HOURS', 2))
    # Avoid overlapping with blue/green deploys and other startup jobs
    BACKUP_START_DELAY_MINUTES = float(os.environ.get('BACKUP_START_DELAY_MINUTES', 30))

    BACKUP_API_TOKEN = os.environ.get('BACKUP_API_TOKEN')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "dbkeeper.db")}'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOCAL_BACKUP_DIR = os.path.join(DATA_DIR, 'local_backups')
    BACKUP_STORAGE = os.environ.get('BACKUP_STORAGE') or 'local'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    DATA_DIR = os.path.join(tempfile.gettempdir(), 'dbkeeper-test')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOCAL_BACKUP_DIR = os.path.join(DATA_DIR, 'local_backups')
    BACKUP_ENABLED = False
    BACKUP_STORAGE = 'local'
    BACKUP_DATABASES = []
    BACKUP_API_TOKEN = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


@dataclass(frozen=True)
class BackupSettings:
    """Backup settings resolved from the Flask configuration."""

    enabled: bool = False
    databases: Tuple[str, ...] = ()
    storage: str = 's3'
    prefix: str = 'db-'
    archive_format: str = 'tar.zst'
    bucket_name: Optional[str] = None
    bucket_region: str = 'us-east-1'
    bucket_key: Optional[str] = None
    bucket_secret: Optional[str] = None
    endpoint_url: Optional[str] = None
    local_storage_dir: Optional[str] = None
    temp_dir: Optional[str] = None
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    interval_hours: float = 2
    start_delay_minutes: float = 30

    def __post_init__(self):
        if self.storage not in ('s3', 'local'):
            raise ValueError(f"Invalid storage type: {self.storage}")
        if self.storage == 's3' and self.enabled and not self.bucket_name:
            raise ValueError("BACKUPS_BUCKET_NAME is required for s3 storage")
        if self.storage == 'local' and not self.local_storage_dir:
            raise ValueError("LOCAL_BACKUP_DIR is required for local storage")
        if self.interval_hours <= 0:
            raise ValueError(f"Backup interval must be positive, got {self.interval_hours}")
        if self.start_delay_minutes < 0:
            raise ValueError(f"Backup start delay must not be negative, got {self.start_delay_minutes}")
        # Raises ValueError for unknown formats
        extension_for_format(self.archive_format)

    @property
    def extension(self) -> str:
        return extension_for_format(self.archive_format)

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> 'BackupSettings':
        """
        Build settings from a Flask config mapping.

        Args:
            cfg: app.config or any mapping with the same keys

        Raises:
            ValueError: If a value is invalid
        """
        return cls(
            enabled=bool(cfg.get('BACKUP_ENABLED', False)),
            databases=tuple(cfg.get('BACKUP_DATABASES') or ()),
            storage=cfg.get('BACKUP_STORAGE', 's3'),
            prefix=cfg.get('BACKUP_PREFIX', 'db-'),
            archive_format=cfg.get('BACKUP_ARCHIVE_FORMAT', 'tar.zst'),
            bucket_name=cfg.get('BACKUPS_BUCKET_NAME'),
            bucket_region=cfg.get('BACKUPS_BUCKET_REGION') or 'us-east-1',
            bucket_key=cfg.get('BACKUPS_BUCKET_KEY'),
            bucket_secret=cfg.get('BACKUPS_BUCKET_SECRET'),
            endpoint_url=cfg.get('BACKUPS_ENDPOINT_URL'),
            local_storage_dir=cfg.get('LOCAL_BACKUP_DIR'),
            temp_dir=cfg.get('TEMP_DIR'),
            retention=RetentionPolicy(
                daily=int(cfg.get('BACKUP_RETENTION_DAILY', 7)),
                weekly=int(cfg.get('BACKUP_RETENTION_WEEKLY', 4)),
                monthly=int(cfg.get('BACKUP_RETENTION_MONTHLY', 12)),
                yearly=int(cfg.get('BACKUP_RETENTION_YEARLY', 2)),
            ),
            interval_hours=float(cfg.get('BACKUP_INTERVAL_HOURS', 2)),
            start_delay_minutes=float(cfg.get('BACKUP_START_DELAY_MINUTES', 30)),
        )
