"""HTTP client for the Basics gateway used by every integration action."""

import time
from typing import Any, Dict, Optional

import httpx

from core.logging import get_logger, log_api_call
from services.automation.exceptions import ExternalServiceError
from services.actions.base import Tenant

logger = get_logger(__name__)

MAX_ERROR_TEXT = 500


class BasicsClient:
    """Thin async client for ``BASICOS_API_URL``.

    Every call authenticates with the tenant's key. Non-2xx responses and
    transport failures become ExternalServiceError.
    """

    def __init__(self, base_url: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def post(self, tenant: Tenant, path: str, payload: Dict[str, Any],
                   service: str, failure: str) -> Any:
        """POST JSON and return the decoded body (None for an empty body).

        Args:
            tenant: Tenant whose key authenticates the call
            path: Gateway path, e.g. ``/v1/email/send``
            payload: JSON body
            service: Service label for logs and errors
            failure: Error message prefix, e.g. ``Email send failed``
        """
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {tenant.api_key}",
        }
        start_time = time.time()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            log_api_call(logger, service, path, False, error="timeout")
            raise ExternalServiceError(service, f"{failure}: timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            log_api_call(logger, service, path, False, error=str(e))
            raise ExternalServiceError(service, f"{failure}: {e}") from e

        duration = round(time.time() - start_time, 4)
        if response.is_error:
            text = response.text[:MAX_ERROR_TEXT]
            log_api_call(logger, service, path, False,
                         status_code=response.status_code, duration=duration)
            raise ExternalServiceError(
                service, f"{failure} ({response.status_code}): {text}", response.status_code
            )

        log_api_call(logger, service, path, True,
                     status_code=response.status_code, duration=duration)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(
                service, f"{failure}: invalid JSON response", response.status_code
            ) from e
