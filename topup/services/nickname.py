"""
Mobile Legends account lookup.

Lets the shopper confirm the in-game name before paying.
"""

import httpx
from pydantic import ValidationError
from structlog import get_logger

from topup.exceptions import NicknameLookupError
from topup.models.api import NicknameResponse

logger = get_logger(__name__)


class NicknameService:
    """Client for the public nickname lookup API."""

    LOOKUP_PATH = "/nickname/ml"

    def __init__(
        self,
        base_url: str,
        timeout: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client
        self._closed = False

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._closed:
            raise NicknameLookupError("Nickname lookup client is closed")
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def aclose(self) -> None:
        self._closed = True
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def lookup(self, user_id: str, zone_id: str) -> NicknameResponse:
        """
        Resolve a Mobile Legends account name.

        Returns ``success=False`` when the account does not exist.

        Raises:
            NicknameLookupError: If the lookup service is unreachable or broken
        """
        url = f"{self.base_url}{self.LOOKUP_PATH}"
        try:
            response = await self.http_client.get(url, params={"id": user_id, "zone": zone_id})
            response.raise_for_status()
            result = NicknameResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.warning("nickname_lookup_failed", user_id=user_id, error=str(exc))
            raise NicknameLookupError(str(exc)) from exc

        if not result.success:
            logger.info("nickname_not_found", user_id=user_id, zone_id=zone_id)
            return NicknameResponse(success=False, name="")
        return result
