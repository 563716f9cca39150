"""Azure Blob Storage client."""

import logging
from typing import Optional

from azure.core.exceptions import AzureError
from azure.identity.aio import DefaultAzureCredential
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient

from src.config.settings import Settings

logger = logging.getLogger(__name__)


class BlobStorageClient:
    """Azure Blob Storage client used as the durable artifact store."""

    def __init__(self, settings: Settings):
        """Initialize blob storage client.

        Args:
            settings: Application settings containing Azure Storage configuration
        """
        self.settings = settings
        self.credential: Optional[DefaultAzureCredential] = None
        self._client: Optional[BlobServiceClient] = None

    def _get_client(self) -> BlobServiceClient:
        """
        Get or create the BlobServiceClient instance.

        Raises:
            ValueError: If neither connection string nor account URL is configured
        """
        if self._client is not None:
            return self._client

        # Prefer connection string if available
        if self.settings.azure_storage_connection_string:
            logger.debug("Using connection string for blob storage")
            self._client = BlobServiceClient.from_connection_string(
                self.settings.azure_storage_connection_string
            )
            return self._client

        # Use account URL with credential
        if self.settings.azure_storage_account_url:
            logger.debug(
                f"Using account URL with credential: {self.settings.azure_storage_account_url}"
            )
            self.credential = DefaultAzureCredential()
            self._client = BlobServiceClient(
                account_url=self.settings.azure_storage_account_url,
                credential=self.credential,
            )
            return self._client

        raise ValueError(
            "Azure Storage configuration required. "
            "Set either 'azure_storage_connection_string' or 'azure_storage_account_url' in settings."
        )

    async def upload_blob(
        self,
        container_name: str,
        blob_name: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        """
        Upload blob to Azure Storage.

        Args:
            container_name: Container name (defaults to settings.azure_storage_container_name)
            blob_name: Blob name
            data: Blob data as bytes
            content_type: Content type (e.g., 'image/png', 'text/csv')

        Returns:
            URL to the uploaded blob

        Raises:
            ValueError: If storage configuration is missing or data is empty
            AzureError: If upload fails
        """
        if not data:
            raise ValueError("Blob data cannot be empty")

        if not container_name:
            container_name = self.settings.azure_storage_container_name or "charts"

        try:
            client = self._get_client()
            blob_client = client.get_blob_client(container=container_name, blob=blob_name)

            upload_kwargs = {}
            if content_type:
                upload_kwargs["content_settings"] = ContentSettings(content_type=content_type)

            logger.debug(f"Uploading blob '{blob_name}' to container '{container_name}'")
            await blob_client.upload_blob(data, overwrite=True, **upload_kwargs)

            blob_url = blob_client.url
            logger.info(f"Blob uploaded successfully: {blob_url}")
            return blob_url

        except ValueError as e:
            logger.error(f"Configuration error: {e}")
            raise
        except AzureError as e:
            logger.error(f"Azure Storage upload error: {e}", exc_info=True)
            raise

    async def persist(self, data: bytes, content_type: str, name: str) -> str:
        """Persist bytes under `name` in the default container and return a retrievable URL."""
        return await self.upload_blob(
            container_name=self.settings.azure_storage_container_name,
            blob_name=name,
            data=data,
            content_type=content_type,
        )

    async def close(self):
        """Close the blob storage client."""
        if self._client:
            await self._client.close()
            self._client = None
        if self.credential:
            await self.credential.close()
            self.credential = None
