"""
Checkout Registry - open payment confirmation flows for the HTTP layer.

Each buyer has at most one open checkout per game. The generation cooldown
is kept per buyer here, outside any single flow, so reopening a checkout
cannot be used to mint codes faster than the cooldown allows.

Finished checkouts stay readable for ``retention_seconds`` so the storefront
can show the outcome, then they are dropped. Cooldowns are dropped once they
have run out and no checkout of that buyer is open.
"""

from collections.abc import Callable
from functools import partial

from structlog import get_logger

from topup.exceptions import CheckoutNotFoundError
from topup.models.domain import DestinationConfig, PurchaseIntent
from topup.observability.metrics import metrics
from topup.services.payment_flow import FlowTimings, GenerationCooldown, PaymentConfirmationFlow
from topup.services.payment_provider import (
    CompletionNotifier,
    PaymentCodeProvider,
    PriceSource,
)
from topup.services.scheduler import AsyncioScheduler, Scheduler

logger = get_logger(__name__)


def _eviction_timer(checkout_id: str) -> str:
    return f"evict:{checkout_id}"


class CheckoutRegistry:
    """In-memory index of checkouts and per-buyer cooldowns."""

    def __init__(
        self,
        *,
        provider: PaymentCodeProvider,
        price_source: PriceSource,
        notifier: CompletionNotifier,
        destination: DestinationConfig,
        timings: FlowTimings,
        scheduler_factory: Callable[[], Scheduler] = AsyncioScheduler,
        retention_seconds: float = 120,
    ) -> None:
        self.provider = provider
        self.price_source = price_source
        self.notifier = notifier
        self.destination = destination
        self.timings = timings
        self.scheduler_factory = scheduler_factory
        self.retention_seconds = retention_seconds

        # Eviction timers; each flow owns a separate scheduler
        self.scheduler = scheduler_factory()

        self._flows: dict[str, PaymentConfirmationFlow] = {}
        self._open_by_buyer: dict[str, str] = {}
        self._cooldowns: dict[str, GenerationCooldown] = {}

    def __len__(self) -> int:
        return len(self._flows)

    @property
    def active_count(self) -> int:
        """Checkouts that have not finished yet."""
        return sum(1 for flow in self._flows.values() if not flow.finished)

    @property
    def cooldown_count(self) -> int:
        return len(self._cooldowns)

    def cooldown_for(self, key: str) -> GenerationCooldown:
        cooldown = self._cooldowns.get(key)
        if cooldown is None:
            cooldown = GenerationCooldown(self.timings.cooldown_seconds)
            self._cooldowns[key] = cooldown
        return cooldown

    def open(self, intent: PurchaseIntent) -> PaymentConfirmationFlow:
        """
        Start a new checkout, closing the buyer's previous one.

        The new flow shares the buyer's cooldown with every earlier flow.
        """
        key = intent.cooldown_key
        previous_id = self._open_by_buyer.get(key)
        if previous_id is not None and previous_id in self._flows:
            self.close(previous_id)
        self._prune_cooldowns()

        flow = PaymentConfirmationFlow(
            intent,
            provider=self.provider,
            price_source=self.price_source,
            notifier=self.notifier,
            destination=self.destination,
            scheduler=self.scheduler_factory(),
            cooldown=self.cooldown_for(key),
            timings=self.timings,
            on_finished=self._flow_finished,
        )
        self._flows[flow.checkout_id] = flow
        self._open_by_buyer[key] = flow.checkout_id
        self._update_gauge()

        logger.info(
            "checkout_opened",
            checkout_id=flow.checkout_id,
            game=intent.product.game.value,
            product_id=intent.product.id,
            reseller=intent.reseller,
            promo_code=intent.promo_code,
        )
        return flow

    def get(self, checkout_id: str) -> PaymentConfirmationFlow:
        """
        Look up a checkout that is open or recently finished.

        Raises:
            CheckoutNotFoundError: Unknown, closed or evicted checkout
        """
        flow = self._flows.get(checkout_id)
        if flow is None:
            raise CheckoutNotFoundError(checkout_id)
        return flow

    def close(self, checkout_id: str) -> PaymentConfirmationFlow:
        """
        Cancel a checkout and forget it. The buyer's cooldown is kept.

        Raises:
            CheckoutNotFoundError: Unknown, closed or evicted checkout
        """
        flow = self._discard(checkout_id)
        if flow is None:
            raise CheckoutNotFoundError(checkout_id)
        return flow

    def shutdown(self) -> None:
        """Cancel every checkout and pending eviction."""
        for checkout_id in list(self._flows):
            self.close(checkout_id)
        self.scheduler.cancel_all()
        logger.info("checkout_registry_shutdown")

    async def aclose(self) -> None:
        """Shut down, then wait for poll callbacks that were already running."""
        schedulers = [flow.scheduler for flow in self._flows.values()]
        self.shutdown()
        for scheduler in schedulers:
            await scheduler.drain()
        await self.scheduler.drain()

    def _flow_finished(self, flow: PaymentConfirmationFlow) -> None:
        self._update_gauge()
        self.scheduler.schedule_once(
            _eviction_timer(flow.checkout_id),
            self.retention_seconds,
            partial(self._evict, flow.checkout_id),
        )

    def _evict(self, checkout_id: str) -> None:
        flow = self._discard(checkout_id)
        if flow is not None:
            logger.info("checkout_evicted", checkout_id=checkout_id, status=flow.status.value)

    def _discard(self, checkout_id: str) -> PaymentConfirmationFlow | None:
        flow = self._flows.pop(checkout_id, None)
        if flow is None:
            return None

        flow.cancel()
        self.scheduler.cancel(_eviction_timer(checkout_id))
        key = flow.intent.cooldown_key
        if self._open_by_buyer.get(key) == checkout_id:
            del self._open_by_buyer[key]
        self._prune_cooldowns()
        self._update_gauge()
        return flow

    def _prune_cooldowns(self) -> None:
        now = self.scheduler.now()
        expired = [
            key
            for key, cooldown in self._cooldowns.items()
            if key not in self._open_by_buyer and cooldown.remaining(now) == 0
        ]
        for key in expired:
            del self._cooldowns[key]

    def _update_gauge(self) -> None:
        metrics.active_checkouts.set(self.active_count)
