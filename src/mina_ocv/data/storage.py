"""
Object storage clients that supply raw staking-ledger archives.

Two providers are supported:
- AwsS3Provider: S3 bucket of ``.tar.gz`` archives, authenticated through the
  boto3 credential chain.
- GcsProvider: GCS bucket of plain ``.json`` ledgers. Tries the authenticated
  google-cloud-storage client first and falls back to anonymous HTTP against
  the public JSON API.

Providers never retry. Failures surface as StorageError and the caller
(LedgerLoader) decides whether to try again.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage as gcs

from ..errors import InvalidInputError, StorageError

logger = logging.getLogger(__name__)

GCS_API_BASE = "https://storage.googleapis.com/storage/v1"
GCS_DOWNLOAD_BASE = "https://storage.googleapis.com"


class ArchiveFormat(Enum):
    """How a ledger object is packaged in the bucket."""

    TAR_GZ = "tar.gz"
    JSON = "json"


@dataclass(frozen=True)
class StorageObject:
    """A single object listed in a bucket."""

    key: str
    size: int
    provider_name: str


def unique_keys(objects: Iterable[StorageObject]) -> List[str]:
    """Return object keys in listing order with duplicates removed."""
    seen = set()
    keys = []
    for obj in objects:
        if obj.key not in seen:
            seen.add(obj.key)
            keys.append(obj.key)
    return keys


class StorageProvider(ABC):
    """Read-only view over a bucket of ledger objects."""

    provider_name: str = "storage"
    archive_format: ArchiveFormat = ArchiveFormat.JSON

    @abstractmethod
    def describe_objects(
        self, bucket: str, prefix: Optional[str] = None
    ) -> List[StorageObject]:
        """List every object in the bucket, following all result pages."""

    @abstractmethod
    def get_object(self, bucket: str, key: str) -> bytes:
        """Download the object's full contents."""

    def list_objects(self, bucket: str, prefix: Optional[str] = None) -> List[str]:
        """
        List object keys in a bucket.

        Args:
            bucket: Bucket name
            prefix: Optional key prefix to restrict the listing

        Returns:
            Fully materialized, deduplicated list of keys
        """
        objects = self.describe_objects(bucket, prefix)
        keys = unique_keys(objects)
        logger.debug(f"{self.provider_name}: listed {len(keys)} objects in {bucket}")
        return keys

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.provider_name}>"


class AwsS3Provider(StorageProvider):
    """S3 provider using the boto3 SDK credential chain."""

    provider_name = "AWS S3"
    archive_format = ArchiveFormat.TAR_GZ

    def __init__(self, region: str, client: Any = None, timeout: float = 30.0):
        """
        Initialize the S3 provider.

        Args:
            region: AWS region of the bucket
            client: Preconfigured boto3 S3 client (built from the region if None)
            timeout: Connect/read timeout in seconds
        """
        self.region = region
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                config=Config(connect_timeout=timeout, read_timeout=timeout),
            )
        self._client = client

    def describe_objects(
        self, bucket: str, prefix: Optional[str] = None
    ) -> List[StorageObject]:
        request: Dict[str, Any] = {"Bucket": bucket}
        if prefix:
            request["Prefix"] = prefix

        objects = []
        pages = 0
        while True:
            try:
                response = self._client.list_objects_v2(**request)
            except (BotoCoreError, ClientError) as e:
                raise StorageError(self.provider_name, "list_objects", e) from e
            pages += 1

            for item in response.get("Contents", []):
                objects.append(
                    StorageObject(
                        key=item["Key"],
                        size=int(item.get("Size", 0)),
                        provider_name=self.provider_name,
                    )
                )

            token = response.get("NextContinuationToken")
            if not response.get("IsTruncated") or not token:
                break
            request["ContinuationToken"] = token

        logger.debug(f"S3 listing of {bucket} took {pages} page(s)")
        return objects

    def get_object(self, bucket: str, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise StorageError(self.provider_name, "get_object", e) from e


class GcsProvider(StorageProvider):
    """
    Google Cloud Storage provider.

    Each operation first goes through the authenticated client. If there is no
    usable client, or the call fails with an auth/API error, the same operation
    is retried once anonymously over the public JSON API.
    """

    provider_name = "Google Cloud Storage"
    archive_format = ArchiveFormat.JSON

    def __init__(
        self,
        project_id: str,
        service_account_key_path: Optional[str] = None,
        client: Any = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the GCS provider.

        Args:
            project_id: GCP project that owns the bucket
            service_account_key_path: Optional service account JSON key file
            client: Preconfigured google.cloud.storage.Client (skips auth setup)
            session: requests session used for anonymous access
            timeout: HTTP timeout in seconds for anonymous requests
        """
        self.project_id = project_id
        self.timeout = timeout
        self._session = session or requests.Session()
        self._client = client if client is not None else self._build_client(
            project_id, service_account_key_path
        )

    @staticmethod
    def _build_client(project_id: str, key_path: Optional[str]):
        try:
            if key_path:
                return gcs.Client.from_service_account_json(key_path, project=project_id)
            return gcs.Client(project=project_id)
        except (GoogleAuthError, OSError, ValueError) as e:
            logger.warning(
                f"GCS credentials unavailable ({type(e).__name__}), using anonymous access"
            )
            return None

    @property
    def authenticated(self) -> bool:
        return self._client is not None

    def describe_objects(
        self, bucket: str, prefix: Optional[str] = None
    ) -> List[StorageObject]:
        if self._client is not None:
            try:
                return self._describe_authenticated(bucket, prefix)
            except (GoogleAPIError, GoogleAuthError, requests.RequestException) as e:
                logger.warning(
                    f"Authenticated GCS listing failed ({type(e).__name__}), "
                    "retrying anonymously"
                )
        return self._describe_anonymous(bucket, prefix)

    def get_object(self, bucket: str, key: str) -> bytes:
        if self._client is not None:
            try:
                return self._client.bucket(bucket).blob(key).download_as_bytes()
            except (GoogleAPIError, GoogleAuthError, requests.RequestException) as e:
                logger.warning(
                    f"Authenticated GCS download failed ({type(e).__name__}), "
                    "retrying anonymously"
                )
        return self._get_anonymous(bucket, key)

    def _describe_authenticated(
        self, bucket: str, prefix: Optional[str]
    ) -> List[StorageObject]:
        # The blob iterator follows nextPageToken on its own.
        blobs = self._client.list_blobs(bucket, prefix=prefix)
        return [
            StorageObject(
                key=blob.name, size=int(blob.size or 0), provider_name=self.provider_name
            )
            for blob in blobs
        ]

    def _describe_anonymous(
        self, bucket: str, prefix: Optional[str]
    ) -> List[StorageObject]:
        url = f"{GCS_API_BASE}/b/{quote(bucket, safe='')}/o"
        params: Dict[str, str] = {}
        if prefix:
            params["prefix"] = prefix

        objects = []
        while True:
            try:
                response = self._session.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                payload = response.json()
            except (requests.RequestException, ValueError) as e:
                raise StorageError(self.provider_name, "list_objects", e) from e

            for item in payload.get("items", []):
                objects.append(
                    StorageObject(
                        key=item["name"],
                        size=int(item.get("size", 0)),
                        provider_name=self.provider_name,
                    )
                )

            token = payload.get("nextPageToken")
            if not token:
                break
            params["pageToken"] = token

        return objects

    def _get_anonymous(self, bucket: str, key: str) -> bytes:
        url = f"{GCS_DOWNLOAD_BASE}/{quote(bucket, safe='')}/{quote(key)}"
        try:
            response = self._session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise StorageError(self.provider_name, "get_object", e) from e
        return response.content


SUPPORTED_PROVIDERS = ("aws", "gcs")


def create_storage_provider(config) -> StorageProvider:
    """
    Build the storage provider selected by the configuration.

    Args:
        config: OcvConfig (or any object with the same storage attributes)

    Returns:
        Configured StorageProvider
    """
    name = (config.storage_provider or "").lower()
    if name == "aws":
        logger.info(f"Initializing AWS S3 storage provider with region: {config.aws_region}")
        return AwsS3Provider(config.aws_region)
    if name == "gcs":
        if not config.gcs_project_id:
            raise InvalidInputError("GCS_PROJECT_ID required when using GCS provider")
        logger.info(
            f"Initializing GCS storage provider with project: {config.gcs_project_id}"
        )
        return GcsProvider(config.gcs_project_id, config.gcs_service_account_key_path)
    raise InvalidInputError(
        f"Unsupported storage provider: {config.storage_provider}. "
        f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
    )
