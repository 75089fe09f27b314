"""
KHQR Provider Implementation.

Talks to the payment proxy that wraps the Bakong KHQR API:
- POST /api/khqr            generate a payment code
- POST /api/verify-payment  check whether the code was paid
"""

import time

import httpx
from pydantic import ValidationError
from structlog import get_logger

from topup.exceptions import PaymentProviderError
from topup.models.api import (
    CodeGenerationRequest,
    CodeGenerationResponse,
    VerificationRequest,
    VerificationResponse,
)
from topup.observability.metrics import metrics
from topup.observability.tracing import trace_operation

logger = get_logger(__name__)


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Pull the proxy's ``message`` out of an error body, if it sent one."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return fallback


class KHQRProvider:
    """KHQR payment proxy client."""

    GENERATE_PATH = "/api/khqr"
    VERIFY_PATH = "/api/verify-payment"

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
        """Get HTTP client."""
        if self._closed:
            raise PaymentProviderError("Payment provider client is closed")
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def aclose(self) -> None:
        self._closed = True
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def generate_code(self, request: CodeGenerationRequest) -> CodeGenerationResponse:
        """
        Generate a KHQR payment code.

        Args:
            request: Destination account and amount

        Returns:
            Usable response carrying the code image and its md5 fingerprint

        Raises:
            PaymentProviderError: On network failure, non-2xx status or an
                unusable response
        """
        url = f"{self.base_url}{self.GENERATE_PATH}"
        payload = request.model_dump(by_alias=True, mode="json")

        with trace_operation("khqr_generate", amount=str(request.amount)):
            try:
                response = await self.http_client.post(url, json=payload)
            except httpx.HTTPError as exc:
                logger.error("khqr_generate_network_error", error=str(exc))
                raise PaymentProviderError("Network error. Please try again.") from exc

            if response.status_code not in (200, 201):
                message = _error_message(
                    response, f"Server returned status {response.status_code}"
                )
                logger.error(
                    "khqr_generate_failed",
                    status_code=response.status_code,
                    error=message,
                )
                raise PaymentProviderError(message)

            try:
                result = CodeGenerationResponse.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                logger.error("khqr_generate_unparseable", error=str(exc))
                raise PaymentProviderError("Invalid response from QR code generator") from exc

            if not result.is_usable:
                logger.error(
                    "khqr_generate_unusable",
                    success=result.success,
                    has_image=bool(result.code_image),
                    has_fingerprint=bool(result.fingerprint),
                )
                raise PaymentProviderError(
                    result.message or "Invalid response from QR code generator"
                )

        logger.info("khqr_code_generated", amount=str(request.amount))
        return result

    async def verify_code(self, fingerprint: str) -> VerificationResponse:
        """
        Check settlement of a payment code by its md5 fingerprint.

        Raises:
            PaymentProviderError: On network failure, non-2xx status or an
                unparseable body
        """
        url = f"{self.base_url}{self.VERIFY_PATH}"
        payload = VerificationRequest(md5=fingerprint).model_dump()
        start = time.monotonic()

        with trace_operation("khqr_verify"):
            try:
                response = await self.http_client.post(url, json=payload)
                response.raise_for_status()
                result = VerificationResponse.model_validate(response.json())
            except httpx.HTTPStatusError as exc:
                logger.error(
                    "khqr_verify_failed",
                    status_code=exc.response.status_code,
                )
                metrics.record_error("HTTPStatusError", "khqr_verify")
                raise PaymentProviderError(
                    _error_message(exc.response, "Payment verification failed")
                ) from exc
            except httpx.HTTPError as exc:
                logger.error("khqr_verify_network_error", error=str(exc))
                metrics.record_error(type(exc).__name__, "khqr_verify")
                raise PaymentProviderError("Network error. Please try again.") from exc
            except (ValueError, ValidationError) as exc:
                logger.error("khqr_verify_unparseable", error=str(exc))
                raise PaymentProviderError("Invalid response from payment verification") from exc
            finally:
                duration = time.monotonic() - start

        metrics.record_verification(result.status.value, duration)
        logger.debug(
            "khqr_code_checked",
            response_code=result.response_code,
            status=result.status.value,
        )
        return result
