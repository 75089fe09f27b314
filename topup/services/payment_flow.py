"""
Payment Confirmation Flow - one checkout from selected product to a confirmed
purchase or an actionable error.

States:
    pending -> checking -> success | error

``success`` and ``error`` are terminal. A flow generates one KHQR payment
code, polls its settlement on a timer and fires the order notification at
most once. Every timer belongs to the flow's own scheduler and is released
through ``cancel_all`` on close, success, error and shutdown.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import uuid4

from structlog import get_logger

from topup.config import Settings
from topup.exceptions import (
    AmountTooSmallError,
    CatalogError,
    CheckoutError,
    CodeExpiredError,
    CooldownActiveError,
    InvalidFlowStateError,
    NotificationError,
    PaymentProviderError,
    PriceMismatchError,
    VerificationError,
    VerificationTimeoutError,
)
from topup.models.api import (
    CheckoutResponse,
    CodeGenerationRequest,
    FlowStatus,
    PollingPhase,
    VerificationStatus,
)
from topup.models.domain import (
    MINIMUM_AMOUNT,
    PRICE_TOLERANCE,
    CompletionRecord,
    DestinationConfig,
    PaymentCode,
    PurchaseIntent,
    VerificationAttempt,
    compute_amount,
)
from topup.observability.metrics import metrics
from topup.services.orders import build_order_info, new_order_id, new_transaction_id
from topup.services.payment_provider import (
    CompletionNotifier,
    PaymentCodeProvider,
    PriceSource,
)
from topup.services.scheduler import Scheduler

logger = get_logger(__name__)

TIMER_COOLDOWN = "cooldown"
TIMER_FIRST_CHECK = "first_check"
TIMER_INTERVAL = "verification_interval"
TIMER_CEILING = "verification_ceiling"
TIMER_EXPIRY = "code_expiry"
TIMER_COUNTDOWN = "check_countdown"


@dataclass(frozen=True)
class FlowTimings:
    """Cadence of the confirmation flow, in seconds."""

    cooldown_seconds: float = 180
    validity_seconds: float = 300
    initial_delay_seconds: float = 7
    interval_seconds: float = 5
    timeout_seconds: float = 60
    max_attempts: int = 12
    tick_seconds: float = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "FlowTimings":
        return cls(
            cooldown_seconds=settings.code_cooldown_seconds,
            validity_seconds=settings.code_validity_seconds,
            initial_delay_seconds=settings.initial_check_delay_seconds,
            interval_seconds=settings.check_interval_seconds,
            timeout_seconds=settings.verification_timeout_seconds,
            max_attempts=settings.max_verification_attempts,
        )


# ============================================================================
# Flow State
# ============================================================================


@dataclass(frozen=True)
class Pending:
    """No payment code requested yet."""

    status: ClassVar[FlowStatus] = FlowStatus.PENDING


@dataclass(frozen=True)
class Checking:
    """Code requested (``code`` is None until it arrives) or being verified."""

    code: PaymentCode | None = None
    status: ClassVar[FlowStatus] = FlowStatus.CHECKING


@dataclass(frozen=True)
class Succeeded:
    record: CompletionRecord
    status: ClassVar[FlowStatus] = FlowStatus.SUCCESS


@dataclass(frozen=True)
class Failed:
    error: CheckoutError
    status: ClassVar[FlowStatus] = FlowStatus.ERROR


FlowState = Pending | Checking | Succeeded | Failed

_ALLOWED_TRANSITIONS: dict[FlowStatus, frozenset[FlowStatus]] = {
    FlowStatus.PENDING: frozenset({FlowStatus.CHECKING, FlowStatus.ERROR}),
    FlowStatus.CHECKING: frozenset({FlowStatus.CHECKING, FlowStatus.SUCCESS, FlowStatus.ERROR}),
    # Only the notification flag changes after success
    FlowStatus.SUCCESS: frozenset({FlowStatus.SUCCESS}),
    FlowStatus.ERROR: frozenset(),
}

_TERMINAL = frozenset({FlowStatus.SUCCESS, FlowStatus.ERROR})


class GenerationCooldown:
    """
    Last payment code generation time for one buyer.

    Outlives individual flows so closing and reopening a checkout does not
    reset the cooldown.
    """

    def __init__(self, period_seconds: float) -> None:
        self.period_seconds = period_seconds
        self.last_generated_at: float | None = None

    def remaining(self, now: float) -> int:
        """Whole seconds left before another code may be generated."""
        if self.last_generated_at is None:
            return 0
        left = self.period_seconds - (now - self.last_generated_at)
        return math.ceil(left) if left > 0 else 0

    def record(self, now: float) -> None:
        self.last_generated_at = now


class PaymentConfirmationFlow:
    """
    Drives one checkout through code generation, polling and confirmation.

    Not thread-safe; all methods run on one event loop. Build a fresh
    instance per purchase attempt.
    """

    def __init__(
        self,
        intent: PurchaseIntent,
        *,
        provider: PaymentCodeProvider,
        price_source: PriceSource,
        notifier: CompletionNotifier,
        destination: DestinationConfig,
        scheduler: Scheduler,
        cooldown: GenerationCooldown,
        timings: FlowTimings | None = None,
        checkout_id: str | None = None,
        on_finished: Callable[["PaymentConfirmationFlow"], None] | None = None,
    ) -> None:
        self.intent = intent
        self.provider = provider
        self.price_source = price_source
        self.notifier = notifier
        self.destination = destination
        self.scheduler = scheduler
        self.cooldown = cooldown
        self.timings = timings or FlowTimings(cooldown_seconds=cooldown.period_seconds)
        self.checkout_id = checkout_id or uuid4().hex
        self.on_finished = on_finished

        self._state: FlowState = Pending()
        self._phase = PollingPhase.IDLE
        self._code: PaymentCode | None = None
        self._fingerprint: str | None = None
        self._attempts: list[VerificationAttempt] = []
        self._polling_started_at: float | None = None
        self._completion: CompletionRecord | None = None
        self._notification_error: NotificationError | None = None

        # Guards
        self._closed = False
        self._generating = False
        self._in_flight = False
        self._confirmed_once = False

        self.cooldown_remaining = 0
        self.next_check_in = 0

        self._log = logger.bind(
            checkout_id=self.checkout_id,
            game=intent.product.game.value,
            product_id=intent.product.id,
        )

    # ------------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------------

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def status(self) -> FlowStatus:
        return self._state.status

    @property
    def polling_phase(self) -> PollingPhase:
        return self._phase

    @property
    def amount(self) -> Decimal:
        """Discounted amount, recomputed from the intent on every read."""
        return self.intent.amount

    @property
    def code(self) -> PaymentCode | None:
        return self._code

    @property
    def attempts(self) -> tuple[VerificationAttempt, ...]:
        return tuple(self._attempts)

    @property
    def completion(self) -> CompletionRecord | None:
        return self._completion

    @property
    def error(self) -> CheckoutError | None:
        if isinstance(self._state, Failed):
            return self._state.error
        return None

    @property
    def notification_error(self) -> NotificationError | None:
        return self._notification_error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        return self._closed or self.status in _TERMINAL

    @property
    def _accepting_results(self) -> bool:
        return (
            not self._closed
            and isinstance(self._state, Checking)
            and not self._confirmed_once
        )

    def view(self) -> CheckoutResponse:
        """Snapshot for the storefront."""
        error = self.error or self._notification_error
        record = self._completion
        return CheckoutResponse(
            checkout_id=self.checkout_id,
            status=self.status,
            polling=self._phase,
            amount=self.amount,
            currency=self.destination.currency,
            code_image=self._code.image if self._code else None,
            cooldown_remaining=self.cooldown_remaining,
            next_check_in=self.next_check_in,
            attempts=len(self._attempts),
            transaction_id=record.transaction_id if record else None,
            order_id=record.order_id if record else None,
            notification_sent=record.notification_sent if record else False,
            error_reason=error.reason if error else None,
            error_message=str(error) if error else None,
            closed=self._closed,
        )

    # ------------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------------

    async def request_code(self) -> PaymentCode:
        """
        Generate the payment code for this checkout and start polling.

        Returns the existing code if one was already issued.

        Raises:
            AmountTooSmallError: Amount below 0.01; no network call is made
            CooldownActiveError: A code was generated too recently; the request
                is retried automatically when the cooldown ends
            PaymentProviderError: The provider failed
            InvalidFlowStateError: The checkout is closed, finished or busy
        """
        self._ensure_open("request a payment code")

        # Minimum applies before rounding to cents
        if self.intent.unrounded_amount < MINIMUM_AMOUNT:
            error = AmountTooSmallError(self.intent.unrounded_amount, MINIMUM_AMOUNT)
            metrics.record_code_request("amount_too_small")
            self._fail(error)
            raise error

        if self._code is not None:
            return self._code
        if self._generating:
            raise InvalidFlowStateError("Payment code generation already in progress")

        remaining = self.cooldown.remaining(self.scheduler.now())
        if remaining > 0:
            metrics.record_code_request("cooldown")
            self._start_cooldown_tick(remaining)
            self._log.info("payment_code_cooldown", remaining_seconds=remaining)
            raise CooldownActiveError(remaining)

        amount = self.amount
        self._generating = True
        self._transition(Checking())
        request = CodeGenerationRequest(
            account_id=self.destination.account_id,
            account_name=self.destination.account_name,
            account_information=self.destination.account_information,
            currency=self.destination.currency,
            amount=amount,
            address=self.destination.address,
        )
        try:
            response = await self.provider.generate_code(request)
            if not response.is_usable:
                raise PaymentProviderError("Invalid response from QR code generator")
        except PaymentProviderError as exc:
            metrics.record_code_request("provider_error")
            self._fail(exc)
            raise
        finally:
            self._generating = False

        now = self.scheduler.now()
        self.cooldown.record(now)
        if self._closed:
            self._log.info("payment_code_discarded")
            raise InvalidFlowStateError("Checkout was closed while the code was generated")

        code = PaymentCode(
            image=str(response.code_image),
            fingerprint=str(response.fingerprint),
            amount=amount,
            generated_at=now,
        )
        self._code = code
        self._transition(Checking(code=code))
        metrics.record_code_request("issued", float(amount))
        self._log.info("payment_code_generated", amount=str(amount))

        self.start_polling(code.fingerprint)
        return code

    def start_polling(self, fingerprint: str) -> None:
        """
        Arm the verification timers for a freshly issued code.

        First check after the initial delay (the provider needs time to index
        the code), then one check per interval until the attempt cap or the
        polling ceiling. The expiry timer tracks code validity independently.
        Calling it again is a no-op.
        """
        if self._phase is not PollingPhase.IDLE or not self._accepting_results:
            return

        t = self.timings
        self._fingerprint = fingerprint
        self._phase = PollingPhase.AWAITING_FIRST_CHECK
        self.next_check_in = math.ceil(t.initial_delay_seconds)

        self.scheduler.schedule_once(TIMER_FIRST_CHECK, t.initial_delay_seconds, self._first_check)
        self.scheduler.schedule_once(TIMER_EXPIRY, t.validity_seconds, self._expire)
        self.scheduler.schedule_repeating(TIMER_COUNTDOWN, t.tick_seconds, self._tick_countdown)
        self._log.info(
            "verification_polling_armed",
            initial_delay_seconds=t.initial_delay_seconds,
            validity_seconds=t.validity_seconds,
        )

    async def poll_once(self, fingerprint: str | None = None) -> VerificationStatus | None:
        """
        Run one verification call.

        Returns None without calling the provider while another call is
        outstanding or once the flow stopped accepting results; a result that
        arrives after the flow finished is ignored the same way.

        Raises:
            VerificationError: Provider failure or a response that is neither
                confirmed nor not-found
        """
        fingerprint = fingerprint or self._fingerprint
        if fingerprint is None or self._in_flight or not self._accepting_results:
            return None

        self._in_flight = True
        index = len(self._attempts) + 1
        try:
            response = await self.provider.verify_code(fingerprint)
        except PaymentProviderError as exc:
            if not self._accepting_results:
                self._log.info("verification_result_ignored", attempt=index)
                return None
            self._record_attempt(index, VerificationStatus.ERROR, exc.message)
            error = VerificationError(exc.message)
            self._fail(error)
            raise error from exc
        finally:
            self._in_flight = False

        if not self._accepting_results:
            self._log.info("verification_result_ignored", attempt=index)
            return None

        status = response.status
        self._record_attempt(index, status, response.message)

        if status is VerificationStatus.CONFIRMED:
            await self.on_confirmed()
            return status
        if status is VerificationStatus.NOT_FOUND:
            return status

        error = VerificationError(
            response.message or f"unexpected response code {response.response_code}"
        )
        self._fail(error)
        raise error

    async def on_confirmed(self) -> CompletionRecord | None:
        """
        Finish a paid checkout; runs its side effects at most once.

        Re-checks the live price and promo discount against the quoted amount,
        records the completion and sends the order notification. Later calls
        return the existing record without side effects.

        Raises:
            PriceMismatchError: The live price no longer matches the quote; no
                notification is sent
            NotificationError: The notification failed; the checkout stays
                successful because the payment is already confirmed
        """
        if self._confirmed_once:
            self._log.info("duplicate_confirmation_ignored")
            return self._completion
        if self._closed or not isinstance(self._state, Checking):
            raise InvalidFlowStateError("Checkout is not awaiting payment confirmation")

        self._confirmed_once = True
        self._release_timers()
        self._phase = PollingPhase.STOPPED

        quoted = self._code.amount if self._code else self.amount
        try:
            expected = await self._live_amount()
        except CatalogError as exc:
            error = PriceMismatchError(quoted, None)
            self._fail(error)
            raise error from exc

        if expected is None or abs(expected - quoted) > PRICE_TOLERANCE:
            error = PriceMismatchError(quoted, expected)
            self._fail(error)
            raise error

        now = datetime.now(UTC)
        record = CompletionRecord(
            transaction_id=new_transaction_id(),
            order_id=new_order_id(now),
            final_amount=quoted,
        )
        self._completion = record
        self._transition(Succeeded(record))
        metrics.record_checkout_finished("success")
        self._log.info(
            "payment_confirmed",
            transaction_id=record.transaction_id,
            amount=str(quoted),
            attempts=len(self._attempts),
        )

        try:
            await self.notifier.notify(build_order_info(self.intent, record, now))
        except NotificationError as exc:
            self._notification_error = exc
            self._log.error(
                "order_notification_failed",
                transaction_id=record.transaction_id,
                error=str(exc),
            )
            raise

        record = replace(record, notification_sent=True)
        self._completion = record
        self._transition(Succeeded(record))
        return record

    def cancel(self) -> None:
        """Close the checkout and release every timer; safe to repeat."""
        if self._closed:
            return
        self._closed = True
        self._release_timers()
        if self.status not in _TERMINAL:
            if self._phase is not PollingPhase.IDLE:
                self._phase = PollingPhase.STOPPED
            metrics.record_checkout_finished("closed")
        self._log.info("checkout_closed", status=self.status.value)

    # ------------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------------

    async def _first_check(self) -> None:
        if not self._accepting_results:
            return
        t = self.timings
        self._phase = PollingPhase.POLLING
        self._polling_started_at = self.scheduler.now()
        self.scheduler.schedule_repeating(TIMER_INTERVAL, t.interval_seconds, self._scheduled_poll)
        self.scheduler.schedule_once(TIMER_CEILING, t.timeout_seconds, self._timeout)
        await self._scheduled_poll()

    async def _scheduled_poll(self) -> None:
        if not self._accepting_results:
            return
        if len(self._attempts) >= self.timings.max_attempts:
            self._timeout()
            return

        # Restart the countdown in step with the check
        self.next_check_in = math.ceil(self.timings.interval_seconds)
        self.scheduler.schedule_repeating(
            TIMER_COUNTDOWN, self.timings.tick_seconds, self._tick_countdown
        )
        try:
            status = await self.poll_once()
        except CheckoutError as exc:
            # Already recorded as the flow's terminal state
            self._log.info("scheduled_poll_stopped", reason=exc.reason)
            return

        if (
            status is VerificationStatus.NOT_FOUND
            and len(self._attempts) >= self.timings.max_attempts
        ):
            self._timeout()

    def _timeout(self) -> None:
        if not self._accepting_results:
            return
        now = self.scheduler.now()
        elapsed = now - (self._polling_started_at if self._polling_started_at is not None else now)
        self._fail(VerificationTimeoutError(len(self._attempts), elapsed))

    def _expire(self) -> None:
        if not self._accepting_results:
            return
        self._fail(CodeExpiredError(self.timings.validity_seconds))

    def _tick_countdown(self) -> None:
        if self.next_check_in > 1:
            self.next_check_in -= 1
        else:
            self.next_check_in = math.ceil(self.timings.interval_seconds)

    def _start_cooldown_tick(self, remaining: int) -> None:
        self.cooldown_remaining = remaining
        if TIMER_COOLDOWN not in self.scheduler.active:
            self.scheduler.schedule_repeating(
                TIMER_COOLDOWN, self.timings.tick_seconds, self._tick_cooldown
            )

    async def _tick_cooldown(self) -> None:
        remaining = self.cooldown.remaining(self.scheduler.now())
        self.cooldown_remaining = remaining
        if remaining > 0:
            return

        self.scheduler.cancel(TIMER_COOLDOWN)
        if self._closed or self.status is not FlowStatus.PENDING:
            return
        try:
            await self.request_code()
        except CheckoutError as exc:
            self._log.info("payment_code_retry_failed", reason=exc.reason)

    # ------------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------------

    def _ensure_open(self, action: str) -> None:
        if self._closed:
            raise InvalidFlowStateError(f"Cannot {action}: checkout is closed")
        if self.status in _TERMINAL:
            raise InvalidFlowStateError(f"Cannot {action}: checkout already finished")

    def _record_attempt(self, index: int, status: VerificationStatus, message: str | None) -> None:
        self._attempts.append(
            VerificationAttempt(
                index=index,
                status=status,
                checked_at=self.scheduler.now(),
                message=message,
            )
        )
        self._log.info("payment_verification_checked", attempt=index, status=status.value)

    def _transition(self, new_state: FlowState) -> None:
        current = self._state.status
        if new_state.status not in _ALLOWED_TRANSITIONS[current]:
            raise InvalidFlowStateError(
                f"Illegal transition {current.value} -> {new_state.status.value}"
            )
        self._state = new_state
        if current not in _TERMINAL and new_state.status in _TERMINAL and self.on_finished:
            self.on_finished(self)

    async def _live_amount(self) -> Decimal | None:
        """
        Amount the checkout would cost right now, or None if it can no longer
        be priced.

        The discount comes only from the live promo code; without one the
        full price applies.
        """
        live_price = await self.price_source.current_price(
            self.intent.product, self.intent.reseller
        )
        if live_price is None:
            return None
        discount = Decimal(0)
        if self.intent.promo_code:
            promo = await self.price_source.promo_discount(self.intent.promo_code)
            if promo is None:
                self._log.warning("promo_code_withdrawn", promo_code=self.intent.promo_code)
                return None
            discount = promo
        return compute_amount(live_price, discount)

    def _release_timers(self) -> None:
        self.scheduler.cancel_all()
        self.next_check_in = 0

    def _fail(self, error: CheckoutError) -> None:
        if self.status in _TERMINAL:
            return
        self._release_timers()
        if self._phase is not PollingPhase.IDLE:
            self._phase = PollingPhase.STOPPED
        self._transition(Failed(error))
        metrics.record_checkout_finished(error.reason)
        metrics.record_error(type(error).__name__, "payment_flow")
        self._log.warning("checkout_failed", reason=error.reason, error=str(error))
