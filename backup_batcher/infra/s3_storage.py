"""S3 storage operations."""
import boto3
from botocore.exceptions import ClientError
from typing import Optional

from backup_batcher.infra.common.errors import PreconditionFailedError


class S3Storage:
    """S3 storage adapter."""

    def __init__(self, bucket: str, region: Optional[str] = None):
        """
        Initialize S3 storage.

        Args:
            bucket: S3 bucket name
            region: AWS region (defaults to boto3 default)
        """
        self.bucket = bucket
        self.s3_client = boto3.client("s3", region_name=region)

    @staticmethod
    def is_not_found_error(error: ClientError) -> bool:
        """Check if ClientError is a 404/NoSuchKey error."""
        error_code = error.response.get("Error", {}).get("Code", "")
        return error_code in ("404", "NoSuchKey", "NotFound")

    def get_object(self, key: str) -> bytes:
        """Get object from S3."""
        response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read()

    def get_object_with_etag(self, key: str) -> tuple[bytes, str]:
        """Get object body together with the ETag it was read at."""
        response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read(), response["ETag"].strip('"')

    def put_object(
        self,
        key: str,
        body: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        if_match: Optional[str] = None,
        if_none_match: bool = False,
    ) -> str:
        """
        Put object to S3 with optional conditional checks.

        Args:
            key: S3 key
            body: Object body
            content_type: Content type
            metadata: User metadata stored with the object
            if_match: ETag the current object must have
            if_none_match: If True, the object must not exist yet

        Returns:
            ETag of uploaded object

        Raises:
            PreconditionFailedError: If a conditional check fails
        """
        extra_args = {}
        if if_match:
            extra_args["IfMatch"] = f'"{if_match}"'
        elif if_none_match:
            extra_args["IfNoneMatch"] = "*"
        if content_type:
            extra_args["ContentType"] = content_type
        if metadata:
            extra_args["Metadata"] = metadata

        try:
            response = self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                **extra_args
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if error_code in ("412", "PreconditionFailed", "ConditionalRequestConflict") or status == 412:
                raise PreconditionFailedError(f"Conditional PUT failed for {key}") from e
            if if_match and self.is_not_found_error(e):
                raise PreconditionFailedError(f"Conditional PUT failed: {key} no longer exists") from e
            raise
        return response["ETag"].strip('"')

    def head_object(self, key: str) -> Optional[dict]:
        """
        Head object to get metadata.

        Returns:
            Dict with ETag, ContentLength and Metadata, or None if not found
        """
        try:
            response = self.s3_client.head_object(Bucket=self.bucket, Key=key)
            return {
                "ETag": response["ETag"].strip('"'),
                "ContentLength": response["ContentLength"],
                "Metadata": response.get("Metadata", {}),
            }
        except ClientError as e:
            if self.is_not_found_error(e):
                return None
            raise

    def exists(self, key: str) -> bool:
        """Check whether a key exists."""
        return self.head_object(key) is not None

    def delete_object(self, key: str) -> None:
        """Delete object from S3."""
        self.s3_client.delete_object(Bucket=self.bucket, Key=key)

    def list_objects(self, prefix: str) -> list[str]:
        """List objects with prefix."""
        keys = []
        paginator = self.s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            if "Contents" in page:
                keys.extend([obj["Key"] for obj in page["Contents"]])
        return keys
