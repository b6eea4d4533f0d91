# tenant_plexus/provisioning/management_api.py
import logging
from typing import Any, Optional

import httpx

from ..errors import ManagementApiError

logger = logging.getLogger(__name__)


class ManagementApiClient:
    """
    Client for the remote management API's SQL endpoint.

    Each call submits one SQL batch for one project, authorized by a bearer
    token scoped to that project. Batches larger than `max_batch_bytes` are
    rejected before any request is made.
    """

    def __init__(
        self,
        base_url: str,
        default_timeout: float = 30.0,
        max_batch_bytes: int = 2 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.default_timeout = default_timeout
        self.max_batch_bytes = max_batch_bytes
        self._transport = transport

    async def run_query(
        self,
        access_token: str,
        project_ref: str,
        sql: str,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Execute a SQL batch and return the decoded response (rows for a SELECT).

        Raises:
            ManagementApiError: On size-limit violations, transport failures,
                timeouts, or an error response from the API
        """
        size = len(sql.encode("utf-8"))
        if size > self.max_batch_bytes:
            raise ManagementApiError(
                f"SQL batch of {size} bytes exceeds the {self.max_batch_bytes} byte limit"
            )

        effective_timeout = timeout or self.default_timeout
        url = f"/v1/projects/{project_ref}/database/query"
        logger.info(f"Submitting {size} byte SQL batch to project {project_ref} (timeout {effective_timeout}s)")

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=effective_timeout,
            transport=self._transport
        ) as client:
            try:
                response = await client.post(
                    url,
                    json={"query": sql},
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json",
                    }
                )
            except httpx.TimeoutException as e:
                raise ManagementApiError(
                    f"Management API request timed out after {effective_timeout}s"
                ) from e
            except httpx.HTTPError as e:
                raise ManagementApiError(f"Management API request failed: {e}") from e

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.error(f"Management API returned {response.status_code} for project {project_ref}: {message or payload}")
            raise ManagementApiError(
                message or f"Management API returned HTTP {response.status_code}",
                status_code=response.status_code,
                payload=payload
            )

        if not response.content:
            return []
        try:
            payload = response.json()
        except ValueError:
            return response.text

        # The API can report a failed statement inside a 2xx body
        if isinstance(payload, dict) and payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.error(f"Management API reported an error for project {project_ref}: {message}")
            raise ManagementApiError(
                message or "Management API reported an error",
                status_code=response.status_code,
                payload=payload
            )
        return payload
