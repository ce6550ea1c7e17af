"""
Generation Provider Client
Submits image jobs to the external generation provider. Results come back
later through the signed webhook, never through polling.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from app.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class GenerationProviderError(Exception):
    """The provider refused or never acknowledged a submission."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationProviderClient:
    """Thin httpx wrapper around the provider's job-submission endpoint."""

    SUBMIT_PATH = "/ai-headshot-generator"

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or default_settings
        self.http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.GENERATION_API_KEY)

    async def submit_job(self, source_asset_url: str, parameters: Optional[Dict[str, Any]] = None) -> str:
        """
        Submit a generation job.

        Args:
            source_asset_url: Input image the provider should read
            parameters: Provider options; `prompt` and `name` are recognised

        Returns:
            The provider's job id
        """
        if not self.is_configured:
            raise GenerationProviderError("GENERATION_API_KEY is not configured")

        parameters = parameters or {}
        body = {
            "name": parameters.get("name") or f"job-{datetime.utcnow().strftime('%Y%m%dT%H%M%S')}",
            "style": {"prompt": parameters.get("prompt", "")},
            "assets": {"image_file_path": source_asset_url},
        }
        url = self.settings.GENERATION_API_URL.rstrip("/") + self.SUBMIT_PATH
        headers = {"Authorization": f"Bearer {self.settings.GENERATION_API_KEY}"}

        client = self.http_client or httpx.AsyncClient()
        owns_client = self.http_client is None
        try:
            response = await client.post(url, json=body, headers=headers,
                                         timeout=self.settings.GENERATION_API_TIMEOUT)
        except httpx.HTTPError as e:
            raise GenerationProviderError(f"Could not reach generation provider: {e}") from e
        finally:
            if owns_client:
                await client.aclose()

        if response.status_code >= 400:
            raise GenerationProviderError(
                f"Generation provider returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        provider_job_id = data.get("id") if isinstance(data, dict) else None
        if not provider_job_id:
            raise GenerationProviderError("Generation provider response carried no job id",
                                          status_code=response.status_code)

        logger.info(f"[Generation] Submitted job {provider_job_id} for {source_asset_url}")
        return str(provider_job_id)
