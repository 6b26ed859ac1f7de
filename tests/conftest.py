"""
Shared pytest fixtures for dbkeeper tests.

This module provides fixtures for:
- Flask app and test client
- Database setup with in-memory SQLite
- Local and mocked S3 storage
- Sample SQLite databases to snapshot
- Backup record factories
"""

import os
import sqlite3
from datetime import date, datetime

import pytest
import boto3
from moto import mock_aws

from dbkeeper import create_app, db as _db
from dbkeeper.backup.naming import BackupRecord, Tier, format_key
from dbkeeper.backup.storage import LocalStorage


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches for real ones."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite for cycle history and a temporary directory as the
    backup bucket.
    """
    app = create_app('testing')

    app.config.update({
        'TEMP_DIR': str(tmp_path / 'temp'),
        'LOCAL_BACKUP_DIR': str(tmp_path / 'bucket'),
        'BACKUP_STORAGE': 'local',
    })

    os.makedirs(app.config['TEMP_DIR'], exist_ok=True)
    os.makedirs(app.config['LOCAL_BACKUP_DIR'], exist_ok=True)

    yield app

    app.extensions['backup_scheduler'].stop()


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def local_storage(app):
    """LocalStorage rooted at the app's LOCAL_BACKUP_DIR."""
    return LocalStorage(app.config['LOCAL_BACKUP_DIR'])


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


def _create_database(path, rows=50):
    conn = sqlite3.connect(str(path))
    try:
        conn.execute('CREATE TABLE docs (id INTEGER PRIMARY KEY, name TEXT, body BLOB)')
        conn.executemany(
            'INSERT INTO docs (name, body) VALUES (?, ?)',
            [(f'doc-{i}', os.urandom(1000)) for i in range(rows)]
        )
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def sample_databases(tmp_path):
    """
    Create two SQLite databases with some content.

    Returns:
        List of database paths (app.db.sqlite, cache.db.sqlite)
    """
    data_dir = tmp_path / 'databases'
    data_dir.mkdir()
    return [
        str(_create_database(data_dir / 'app.db.sqlite', rows=200)),
        str(_create_database(data_dir / 'cache.db.sqlite', rows=20)),
    ]


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - test_file1.txt
    - test_file2.log
    - nested/test_file3.txt
    """
    (tmp_path / 'test_file1.txt').write_text('Test content 1')
    (tmp_path / 'test_file2.log').write_text('Test log content')

    nested_dir = tmp_path / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    return tmp_path


def make_record(tier, target_date, timestamp=None, prefix='db-', extension='.tar.zst'):
    """
    Build a BackupRecord with a key that matches its fields.

    Args:
        tier: Tier or tier name
        target_date: date or 'YYYY-MM-DD'
        timestamp: datetime or 'YYYY-MM-DDTHH:MM:SS' (default: target date at 13:00)
    """
    tier = Tier(tier)
    if isinstance(target_date, str):
        target_date = date.fromisoformat(target_date)
    if timestamp is None:
        timestamp = datetime(target_date.year, target_date.month, target_date.day, 13, 0, 0)
    elif isinstance(timestamp, str):
        timestamp = datetime.fromisoformat(timestamp)

    return BackupRecord(
        key=format_key(tier, prefix, target_date, timestamp, extension),
        tier=tier,
        prefix=prefix,
        target_date=target_date,
        timestamp=timestamp,
        extension=extension,
    )


@pytest.fixture
def record_factory():
    """Factory fixture for BackupRecord instances."""
    return make_record


def put_backup(storage_dir, key, content=b'backup'):
    """Write an object directly into a LocalStorage directory."""
    path = os.path.join(str(storage_dir), key)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'wb') as f:
        f.write(content)
    return key


@pytest.fixture
def put_local_backup(app):
    """Put an object into the app's local backup bucket."""
    def _put(key, content=b'backup'):
        return put_backup(app.config['LOCAL_BACKUP_DIR'], key, content)
    return _put
