"""Client for the user service's total-user count."""

import logging
from datetime import datetime

import httpx

from feedback_analytics.core.config import settings

logger = logging.getLogger(__name__)

USER_COUNT_PATH = "/api/v1/users/count"


class UserDirectoryClient:
    """Fetches registered-user totals from the user service.

    ``count_users`` returns ``None`` whenever the service is not configured or
    the call fails, so callers can fall back to their own estimate.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url if base_url is not None else settings.USER_SERVICE_URL
        self.timeout = timeout or settings.USER_SERVICE_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def count_users(self, before: datetime, company_id: str | None = None) -> int | None:
        if not self.enabled:
            return None

        params = {"before": before.isoformat()}
        if company_id:
            params["companyId"] = company_id

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,  # type: ignore[arg-type]
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(USER_COUNT_PATH, params=params)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("User service count failed (company=%s): %s", company_id, exc)
            return None

        total = payload.get("total") if isinstance(payload, dict) else None
        if isinstance(total, bool) or not isinstance(total, int) or total < 0:
            logger.warning("User service returned an unusable count: %r", payload)
            return None
        return total
