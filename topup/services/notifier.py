"""
Completion Notifier - one-time order confirmation through the relay.

The hosted backend mints a short-lived token bound to the order payload
(``create_payment_token`` RPC); the relay only accepts orders carrying one.
"""

import json

import httpx
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from topup.exceptions import NotificationError
from topup.models.api import NotificationResponse, OrderInfo
from topup.observability.metrics import metrics

logger = get_logger(__name__)

CREATE_TOKEN_SQL = text("SELECT create_payment_token(CAST(:order_info AS jsonb))")


class RelayNotifier:
    """Mints an order token and posts it to the notification relay."""

    NOTIFY_PATH = "/api/telegram"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        base_url: str,
        timeout: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client
        self._closed = False

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._closed:
            raise NotificationError("Notification relay client is closed")
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def aclose(self) -> None:
        self._closed = True
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def mint_token(self, order: OrderInfo) -> str:
        """
        Ask the hosted backend for a token bound to this order.

        Raises:
            NotificationError: If the RPC fails or returns nothing
        """
        order_info = json.dumps(order.model_dump(by_alias=True, mode="json"))
        try:
            async with self.session_factory() as session:
                result = await session.execute(CREATE_TOKEN_SQL, {"order_info": order_info})
                token = result.scalar_one_or_none()
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "payment_token_rpc_failed",
                transaction_id=order.transaction_id,
                error=str(exc),
            )
            raise NotificationError("Failed to generate payment token") from exc

        if not token:
            raise NotificationError("Failed to generate payment token")
        return str(token)

    async def notify(self, order: OrderInfo) -> None:
        """
        Send the order confirmation.

        Raises:
            NotificationError: If minting or relaying fails
        """
        try:
            client = self.http_client
            token = await self.mint_token(order)
            url = f"{self.base_url}{self.NOTIFY_PATH}"
            try:
                response = await client.post(
                    url, json={}, headers={"Authorization": f"Bearer {token}"}
                )
                response.raise_for_status()
                result = NotificationResponse.model_validate(response.json())
            except (httpx.HTTPError, ValueError) as exc:
                logger.error(
                    "notification_relay_failed",
                    transaction_id=order.transaction_id,
                    error=str(exc),
                )
                raise NotificationError("Failed to send order confirmation") from exc

            if not result.success:
                raise NotificationError("Relay rejected order confirmation")
        except NotificationError:
            metrics.record_notification(False)
            raise

        metrics.record_notification(True)
        logger.info(
            "order_notification_sent",
            transaction_id=order.transaction_id,
            order_id=order.order_id,
            game=order.game.value,
        )
