"""
Object storage service for EduStream Backend
Handles original uploads and HLS renditions on S3-compatible storage
"""

import io
import logging
import os
import tempfile

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from core.exceptions import (
    InvalidInput,
    NotFound,
    PermissionDenied,
    StorageRejected,
    StorageUnavailable,
)
from shared.aws import get_s3_client

logger = logging.getLogger(__name__)

ALLOWED_PREFIXES = ('originals/', 'hls/')
MAX_SIGNED_URL_TTL = 7 * 24 * 3600

_NOT_FOUND_CODES = {'NoSuchKey', 'NotFound', '404'}
_DENIED_CODES = {'AccessDenied', 'Forbidden', '403', 'InvalidAccessKeyId', 'SignatureDoesNotMatch'}
_TRANSIENT_CODES = {'SlowDown', 'ServiceUnavailable', 'InternalError', 'RequestTimeout', '503', '500'}


class ObjectStore:
    """Byte-level put/get/delete against the video bucket"""

    def __init__(self, bucket_name=None, client=None):
        self.bucket_name = bucket_name or getattr(settings, 'VIDEO_STORAGE_BUCKET', '')
        self.region = getattr(settings, 'AWS_S3_REGION_NAME', 'us-east-1')
        self.cdn_domain = getattr(settings, 'VIDEO_CDN_DOMAIN', '')
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    def is_configured(self):
        return bool(self.bucket_name)

    def _require_bucket(self):
        if not self.bucket_name:
            raise StorageUnavailable("Object storage bucket is not configured")

    @staticmethod
    def _check_key(key):
        if not key or not key.startswith(ALLOWED_PREFIXES):
            raise InvalidInput(f"Object key must live under {' or '.join(ALLOWED_PREFIXES)}: {key!r}")

    def _translate_error(self, error, key, action):
        """Map a boto error onto the storage error kinds"""
        if isinstance(error, ClientError):
            error_info = error.response.get('Error', {})
            code = str(error_info.get('Code', ''))
            status_code = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
            message = error_info.get('Message') or str(error)

            if code in _NOT_FOUND_CODES or status_code == 404:
                return NotFound(f"Object not found: {key}")
            if code in _DENIED_CODES or status_code == 403:
                return PermissionDenied(f"Storage access denied for {key}")
            if code in _TRANSIENT_CODES or (status_code and status_code >= 500):
                return StorageUnavailable(f"Failed to {action} {key}: {message}")
            return StorageRejected(f"Failed to {action} {key}: {message}", details={'code': code})

        if isinstance(error, (S3UploadFailedError, BotoCoreError)):
            return StorageUnavailable(f"Failed to {action} {key}: {str(error)}")

        return StorageRejected(f"Failed to {action} {key}: {str(error)}")

    def put(self, key, data, content_type='application/octet-stream'):
        """Upload bytes or a file object and return the object URL"""
        self._require_bucket()
        self._check_key(key)

        fileobj = io.BytesIO(data) if isinstance(data, (bytes, bytearray)) else data
        try:
            self.client.upload_fileobj(
                fileobj,
                self.bucket_name,
                key,
                ExtraArgs={'ContentType': content_type},
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise self._translate_error(e, key, 'upload') from e

        logger.debug(f"Stored object {key} ({content_type})")
        return self.public_url(key)

    def put_file(self, key, local_path, content_type='application/octet-stream'):
        """Upload a local file and return the object URL"""
        self._require_bucket()
        self._check_key(key)

        try:
            self.client.upload_file(
                str(local_path),
                self.bucket_name,
                key,
                ExtraArgs={'ContentType': content_type},
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise self._translate_error(e, key, 'upload') from e

        return self.public_url(key)

    def delete(self, key):
        """Delete a single object"""
        self._require_bucket()
        self._check_key(key)

        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, key, 'delete') from e
        return True

    def delete_prefix(self, prefix):
        """Delete every object under a prefix; returns the number of deleted keys"""
        self._require_bucket()
        self._check_key(prefix)

        deleted = 0
        try:
            paginator = self.client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                keys = [{'Key': obj['Key']} for obj in page.get('Contents', [])]
                # delete_objects accepts at most 1000 keys per call
                for start in range(0, len(keys), 1000):
                    batch = keys[start:start + 1000]
                    self.client.delete_objects(
                        Bucket=self.bucket_name,
                        Delete={'Objects': batch, 'Quiet': True},
                    )
                    deleted += len(batch)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, prefix, 'delete prefix') from e

        logger.info(f"Deleted {deleted} objects under {prefix}")
        return deleted

    def signed_stream_url(self, key, ttl_seconds=3600):
        """Generate a presigned GET URL valid for exactly ``ttl_seconds``"""
        self._require_bucket()
        self._check_key(key)

        ttl_seconds = int(ttl_seconds)
        if ttl_seconds <= 0 or ttl_seconds > MAX_SIGNED_URL_TTL:
            raise InvalidInput(f"Signed URL TTL must be between 1 and {MAX_SIGNED_URL_TTL} seconds")

        try:
            return self.client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': key},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, key, 'sign') from e

    def public_url(self, key):
        """URL of an object for public or CDN delivery"""
        if self.cdn_domain:
            return f"https://{self.cdn_domain.rstrip('/')}/{key}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"

    def download_to_temp(self, key, directory=None):
        """Download an object into a temporary file and return its path"""
        self._require_bucket()
        self._check_key(key)

        suffix = os.path.splitext(key)[1]
        handle, path = tempfile.mkstemp(suffix=suffix, dir=directory)
        try:
            with os.fdopen(handle, 'wb') as fh:
                self.client.download_fileobj(self.bucket_name, key, fh)
        except (ClientError, BotoCoreError) as e:
            os.remove(path)
            raise self._translate_error(e, key, 'download') from e

        return path

    def head(self, key):
        """Object metadata"""
        self._require_bucket()
        self._check_key(key)

        try:
            response = self.client.head_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, key, 'inspect') from e

        return {
            'size': response.get('ContentLength'),
            'content_type': response.get('ContentType'),
            'last_modified': response.get('LastModified'),
        }

    def exists(self, key):
        try:
            self.head(key)
        except NotFound:
            return False
        return True


def get_object_store():
    """Object store bound to the configured bucket"""
    return ObjectStore()
