import os
import logging
import boto3
from typing import Optional, Sequence
from .base import CHUNK_EXISTS, ChunkStore, FinalStorage
from chunked_upload.core.config import settings
from chunked_upload.core.status import BackendStatus
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# delete_objects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000

# error codes of a conditional put whose key is already taken
CONDITIONAL_PUT_CONFLICTS = ("PreconditionFailed", "ConditionalRequestConflict")


def make_s3_client():
    return boto3.client(
        's3',
        aws_access_key_id=settings.S3_ACCESS_KEY or None,
        aws_secret_access_key=settings.S3_SECRET_KEY or None,
        endpoint_url=settings.S3_ENDPOINT_URL or None,
        region_name=settings.S3_REGION_NAME
    )


class S3ChunkStore(ChunkStore):
    """Chunk zone in an S3 bucket. S3 gives read-after-write consistency for new objects."""

    def __init__(self, s3_client=None, bucket: Optional[str] = None, prefix: Optional[str] = None):
        self.s3_client = s3_client or make_s3_client()
        self.bucket = bucket or settings.S3_BUCKET_NAME
        self.prefix = settings.S3_CHUNK_PREFIX if prefix is None else prefix

    def object_key(self, key: str) -> str:
        return f"{self.prefix}{self.hashed_location(key)}"

    def write(self, key: str, data: bytes) -> BackendStatus:
        object_key = self.object_key(key)
        try:
            self.s3_client.put_object(Bucket=self.bucket, Key=object_key, Body=data, IfNoneMatch="*")
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in CONDITIONAL_PUT_CONFLICTS:
                return BackendStatus.new_fatal(CHUNK_EXISTS, object_key)
            return BackendStatus.new_fatal("backend-fail-store", object_key, e)
        except BotoCoreError as e:
            return BackendStatus.new_fatal("backend-fail-store", object_key, e)
        logger.debug(f"Chunk saved successfully: s3://{self.bucket}/{object_key} ({len(data)} bytes)")
        return BackendStatus.good(object_key)

    def read(self, key: str) -> bytes:
        response = self.s3_client.get_object(Bucket=self.bucket, Key=self.object_key(key))
        return response["Body"].read()

    def concatenate(self, keys: Sequence[str], dest_path: str, delete_sources: bool = False) -> BackendStatus:
        object_keys = [self.object_key(key) for key in keys]
        dest_path = str(dest_path)
        staging_path = f"{dest_path}.staging"
        try:
            with open(staging_path, "wb") as merged:
                for object_key in object_keys:
                    self.s3_client.download_fileobj(self.bucket, object_key, merged)
            os.replace(staging_path, dest_path)
        except (Boto3Error, BotoCoreError, ClientError, OSError) as e:
            return BackendStatus.new_fatal("backend-fail-concatenate", dest_path, e)
        finally:
            if os.path.exists(staging_path):
                os.remove(staging_path)

        logger.info(f"Merged {len(object_keys)} chunks from s3://{self.bucket} into {dest_path}")

        status = BackendStatus.good(dest_path)
        if delete_sources:
            for entry in self._delete_objects(object_keys).entries:
                status.warning(entry.message, *entry.params)
        return status

    def delete(self, keys: Sequence[str]) -> BackendStatus:
        return self._delete_objects([self.object_key(key) for key in keys])

    def _delete_objects(self, object_keys: Sequence[str]) -> BackendStatus:
        status = BackendStatus()
        for start in range(0, len(object_keys), DELETE_BATCH_SIZE):
            batch = object_keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                for object_key in batch:
                    status.fatal("backend-fail-delete", object_key, e)
                continue
            for error in response.get("Errors", []):
                status.fatal("backend-fail-delete", error.get("Key", ""), error.get("Message", ""))
        return status


class S3FinalStorage(FinalStorage):
    def __init__(self, s3_client=None, bucket: Optional[str] = None):
        self.s3_client = s3_client or make_s3_client()
        self.bucket = bucket or settings.S3_BUCKET_NAME

    def promote(self, file_path: str, dest_name: str) -> str:
        self.s3_client.upload_file(str(file_path), self.bucket, dest_name)
        os.remove(file_path)
        logger.info(f"Promoted {file_path} to s3://{self.bucket}/{dest_name}")
        if settings.S3_ENDPOINT_URL:
            return f"{settings.S3_ENDPOINT_URL}/{self.bucket}/{dest_name}"
        return f"s3://{self.bucket}/{dest_name}"
