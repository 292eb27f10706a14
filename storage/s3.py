"""S3 object storage driver (boto3)."""
import logging
from pathlib import Path
from typing import List, Union

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from config import S3Config
from storage.base import ProviderDriver, RemoteEntry, atomic_local_file, normalize_path
from storage.exceptions import (
    AuthError,
    NetworkError,
    NotFoundError,
    ProviderError,
    UnknownProviderError,
)

logger = logging.getLogger(__name__)

AUTH_ERROR_CODES = {
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "AccessDenied",
    "ExpiredToken",
    "InvalidToken",
    "403",
}
NOT_FOUND_ERROR_CODES = {"NoSuchBucket", "NoSuchKey", "NotFound", "404"}


class S3Driver(ProviderDriver):
    """
    S3 provider driver.

    Directories are inferred from key structure; ensure_directory writes an
    empty "dir/" marker object so empty directories survive a round trip.
    """

    def __init__(self, config: S3Config, s3_client=None):
        """
        Initialize S3 driver.

        Args:
            config: S3 provider configuration
            s3_client: Pre-built boto3 client (tests); built from config if None
        """
        super().__init__(config.path_prefix)
        self.config = config
        self.bucket = config.bucket

        if s3_client is None:
            session_kwargs = {}
            if config.access_key_id:
                session_kwargs["aws_access_key_id"] = config.access_key_id
            if config.secret_access_key:
                session_kwargs["aws_secret_access_key"] = config.secret_access_key
            if config.region:
                session_kwargs["region_name"] = config.region

            s3_client = boto3.client("s3", **session_kwargs, endpoint_url=config.endpoint)

        self.s3_client = s3_client

    @property
    def backend_type(self) -> str:
        return "s3"

    def _classify(self, error: Exception, context: str) -> ProviderError:
        """Translate a boto3/botocore exception into a classified error."""
        if isinstance(error, ProviderError):
            return error
        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return AuthError(f"S3 authentication failed ({context}): {error}")
        if isinstance(error, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
            return NetworkError(
                f"Could not reach S3 endpoint {self.config.endpoint or 'AWS default'} "
                f"({context}): {error}"
            )
        if isinstance(error, ClientError):
            code = str(error.response.get("Error", {}).get("Code", ""))
            if code in AUTH_ERROR_CODES:
                return AuthError(
                    f"S3 authentication failed ({context}). "
                    f"Check Access Key ID and Secret Access Key."
                )
            if code in NOT_FOUND_ERROR_CODES:
                return NotFoundError(f"S3 object or bucket not found ({context}): {code}")
        if isinstance(error, BotoCoreError):
            return NetworkError(f"S3 transport error ({context}): {error}")
        return UnknownProviderError(f"S3 operation failed ({context}): {error}")

    def _list_prefix(self, relative_path: str) -> str:
        key = self.remote_path(relative_path)
        return f"{key}/" if key else ""

    def _test_connection(self) -> None:
        logger.info(f"[S3Driver] Testing connection to bucket: {self.bucket}")
        try:
            self.s3_client.list_objects_v2(
                Bucket=self.bucket,
                Prefix=self._list_prefix(""),
                MaxKeys=1,
            )
        except Exception as e:
            raise self._classify(e, f"bucket {self.bucket}") from e

    def ensure_directory(self, relative_path: str) -> None:
        if not normalize_path(relative_path):
            return  # Root always exists
        dir_key = self._list_prefix(relative_path)
        try:
            try:
                self.s3_client.head_object(Bucket=self.bucket, Key=dir_key)
                return
            except ClientError as e:
                if str(e.response.get("Error", {}).get("Code", "")) not in NOT_FOUND_ERROR_CODES:
                    raise
            self.s3_client.put_object(Bucket=self.bucket, Key=dir_key, Body=b"")
        except Exception as e:
            raise self._classify(e, f"ensure directory {dir_key}") from e

    def upload_file(self, local_path: Union[str, Path], relative_path: str) -> None:
        key = self.remote_path(relative_path)
        logger.debug(f"[S3Driver] Uploading {local_path} -> s3://{self.bucket}/{key}")
        try:
            self.s3_client.upload_file(str(local_path), self.bucket, key)
        except Exception as e:
            raise self._classify(e, f"upload {key}") from e

    def download_file(self, relative_path: str, local_path: Union[str, Path]) -> None:
        key = self.remote_path(relative_path)
        logger.debug(f"[S3Driver] Downloading s3://{self.bucket}/{key} -> {local_path}")
        try:
            with atomic_local_file(local_path) as tmp_path:
                self.s3_client.download_file(self.bucket, key, str(tmp_path))
        except Exception as e:
            raise self._classify(e, f"download {key}") from e

    def list_files(self, relative_path: str = "") -> List[RemoteEntry]:
        prefix = self._list_prefix(relative_path)
        result = []
        paginator = self.s3_client.get_paginator("list_objects_v2")

        try:
            for page in paginator.paginate(
                Bucket=self.bucket,
                Prefix=prefix,
                Delimiter="/"
            ):
                for common in page.get("CommonPrefixes", []):
                    dir_path = self.relative_to_root(common["Prefix"])
                    if not dir_path:
                        continue
                    result.append(RemoteEntry(
                        name=dir_path.rsplit("/", 1)[-1],
                        path=dir_path,
                        is_directory=True,
                    ))

                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    # Skip directory markers, including the listed directory itself
                    if key == prefix or key.endswith("/"):
                        continue
                    file_path = self.relative_to_root(key)
                    result.append(RemoteEntry(
                        name=file_path.rsplit("/", 1)[-1],
                        path=file_path,
                        is_directory=False,
                        size=obj.get("Size"),
                        modified_at=obj.get("LastModified"),
                    ))
        except Exception as e:
            raise self._classify(e, f"list {prefix or '/'}") from e

        return result
