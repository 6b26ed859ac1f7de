"""
Object storage clients for backup archives.

Both clients expose the same narrow interface used by the backup cycle:

- list_objects(prefix) -> [{'Key', 'LastModified', 'Size'}]
- upload(local_path, key)
- copy_object(source_key, dest_key)
- delete(key)

Supports:
- S3Storage: AWS S3 or any S3 compatible service (custom endpoint)
- LocalStorage: A local directory laid out like a bucket
"""

import os
import shutil
import logging
from pathlib import Path
from datetime import datetime
from typing import Optional, List, Dict, Any
import boto3
from botocore.exceptions import ClientError, BotoCoreError


logger = logging.getLogger(__name__)

# Archives above this size are sent with multipart upload
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


def _client_error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for backup objects in an S3 compatible bucket.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize S3 storage handler.

        Args:
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket name
            region: Region (default: us-east-1)
            endpoint_url: Endpoint of an S3 compatible provider (None for AWS)
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def upload(self, local_path: str, key: str) -> str:
        """
        Upload a local file to the bucket.

        Args:
            local_path: Path to local archive file
            key: Destination object key

        Returns:
            Object key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, key)
            else:
                self._simple_upload(local_path, key)

            return key

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")

    def _simple_upload(self, local_path: str, key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, key: str):
        """
        Upload large file using multipart upload.

        The upload is aborted on any error so no partial object is left behind.

        Args:
            local_path: Path to local file
            key: Object key
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload for {key}: {abort_error}")
            raise

    def copy_object(self, source_key: str, dest_key: str):
        """
        Copy an object to a new key inside the bucket.

        Args:
            source_key: Existing object key
            dest_key: New object key

        Raises:
            StorageError: If copy fails
        """
        try:
            self.s3_client.copy_object(
                Bucket=self.bucket_name,
                CopySource={'Bucket': self.bucket_name, 'Key': source_key},
                Key=dest_key
            )
        except ClientError as e:
            raise StorageError(f"S3 copy failed ({_client_error_code(e)}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to copy {source_key} to {dest_key}: {e}")

    def delete(self, key: str):
        """
        Delete an object from the bucket.

        Args:
            key: Object key to delete

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_client_error_code(e)}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_objects(self, prefix: str = '') -> List[Dict[str, Any]]:
        """
        List objects in the bucket with given prefix.

        Args:
            prefix: Key prefix to filter by ('' lists the whole bucket)

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_client_error_code(e)}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list S3 objects: {e}")


class LocalStorage:
    """
    Handler for backup objects kept in a local directory.

    Object keys map to relative paths below ``base_path``, so
    ``daily/db-2024-09-14@2024-09-14T20:36:55.tar.zst`` lives at
    ``{base_path}/daily/db-2024-09-14@2024-09-14T20:36:55.tar.zst``.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory acting as the bucket
        """
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def _path_for(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise StorageError(f"Key escapes storage directory: {key}")
        return path

    def upload(self, local_path: str, key: str) -> str:
        """
        Copy a local file into storage under ``key``.

        Raises:
            StorageError: If storage fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        dest_path = self._path_for(key)

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, dest_path)
            return key
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except Exception as e:
            raise StorageError(f"Failed to store locally: {e}")

    def copy_object(self, source_key: str, dest_key: str):
        """
        Copy a stored object to a new key.

        Raises:
            StorageError: If the source is missing or the copy fails
        """
        source_path = self._path_for(source_key)
        if not source_path.is_file():
            raise StorageError(f"Source object not found: {source_key}")

        dest_path = self._path_for(dest_key)

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source_path, dest_path)
        except Exception as e:
            raise StorageError(f"Failed to copy {source_key} to {dest_key}: {e}")

    def delete(self, key: str):
        """
        Delete a stored object. Missing objects are ignored.

        Raises:
            StorageError: If deletion fails
        """
        full_path = self._path_for(key)

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete local file: {e}")

    def list_objects(self, prefix: str = '') -> List[Dict[str, Any]]:
        """
        List stored objects whose key starts with ``prefix``.

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []

            for file_path in sorted(self.base_path.rglob('*')):
                if not file_path.is_file():
                    continue

                key = file_path.relative_to(self.base_path).as_posix()
                if not key.startswith(prefix):
                    continue

                stat = file_path.stat()
                objects.append({
                    'Key': key,
                    'LastModified': datetime.fromtimestamp(stat.st_mtime),
                    'Size': stat.st_size
                })

            return objects

        except Exception as e:
            raise StorageError(f"Failed to list local files: {e}")


def create_storage(settings):
    """
    Factory function to create the configured storage client.

    Args:
        settings: BackupSettings instance

    Returns:
        S3Storage or LocalStorage instance

    Raises:
        ValueError: If the storage type is invalid
        StorageError: If the client cannot be created
    """
    if settings.storage == 's3':
        return S3Storage(
            access_key=settings.bucket_key,
            secret_key=settings.bucket_secret,
            bucket_name=settings.bucket_name,
            region=settings.bucket_region,
            endpoint_url=settings.endpoint_url
        )
    elif settings.storage == 'local':
        return LocalStorage(settings.local_storage_dir)
    else:
        raise ValueError(f"Invalid storage type: {settings.storage}")
