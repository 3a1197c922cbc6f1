"""
Runtime configuration read from environment variables.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from .data.ledger import LedgerLoader
from .data.storage import StorageProvider, create_storage_provider
from .errors import InvalidInputError

logger = logging.getLogger(__name__)


class Network(Enum):
    MAINNET = "mainnet"
    DEVNET = "devnet"


class ReleaseStage(Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _enum_value(enum_cls, raw: Optional[str], variable: str):
    if raw is None:
        raise InvalidInputError(f"{variable} is required")
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise InvalidInputError(f"Invalid {variable}: {raw!r} (expected one of {choices})")


@dataclass
class OcvConfig:
    network: Network
    release_stage: ReleaseStage
    bucket_name: str
    ledger_storage_path: str = "/tmp/ledgers"  # nosec B108
    storage_provider: str = "gcs"
    gcs_project_id: Optional[str] = None
    gcs_service_account_key_path: Optional[str] = None
    aws_region: str = "us-west-2"
    ledger_download_retries: int = 3

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OcvConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Validated OcvConfig
        """
        env = os.environ if environ is None else environ

        bucket_name = env.get("BUCKET_NAME")
        if not bucket_name:
            raise InvalidInputError("BUCKET_NAME is required")

        retries_raw = env.get("LEDGER_DOWNLOAD_RETRIES", "3")
        try:
            retries = int(retries_raw)
        except ValueError:
            raise InvalidInputError(f"Invalid LEDGER_DOWNLOAD_RETRIES: {retries_raw!r}")

        config = cls(
            network=_enum_value(Network, env.get("NETWORK"), "NETWORK"),
            release_stage=_enum_value(
                ReleaseStage, env.get("RELEASE_STAGE"), "RELEASE_STAGE"
            ),
            bucket_name=bucket_name,
            ledger_storage_path=env.get("LEDGER_STORAGE_PATH", "/tmp/ledgers"),  # nosec B108
            storage_provider=env.get("STORAGE_PROVIDER", "gcs").strip().lower(),
            gcs_project_id=env.get("GCS_PROJECT_ID") or None,
            gcs_service_account_key_path=env.get("GCS_SERVICE_ACCOUNT_KEY_PATH") or None,
            aws_region=env.get("AWS_REGION", "us-west-2"),
            ledger_download_retries=retries,
        )
        config.validate()
        return config

    def validate(self):
        """Reject unusable settings before any provider is constructed."""
        if self.storage_provider not in ("aws", "gcs"):
            raise InvalidInputError(
                f"Unsupported storage provider: {self.storage_provider}. "
                "Supported providers: aws, gcs"
            )
        if self.storage_provider == "gcs" and not self.gcs_project_id:
            raise InvalidInputError("GCS_PROJECT_ID required when using GCS provider")
        if self.ledger_download_retries < 1:
            raise InvalidInputError("LEDGER_DOWNLOAD_RETRIES must be at least 1")

    def create_loader(self, provider: Optional[StorageProvider] = None) -> LedgerLoader:
        """
        Build the ledger loader, creating the cache directory.

        Args:
            provider: Storage provider to use instead of the configured one
        """
        self.validate()
        Path(self.ledger_storage_path).mkdir(parents=True, exist_ok=True)
        if provider is None:
            provider = create_storage_provider(self)
        logger.info(
            f"Ledger cache at {self.ledger_storage_path}, bucket {self.bucket_name} "
            f"via {provider.provider_name}"
        )
        return LedgerLoader(
            provider,
            self.bucket_name,
            self.ledger_storage_path,
            max_retries=self.ledger_download_retries,
        )
