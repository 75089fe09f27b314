"""
Order Builder - identifiers and messages for a confirmed top-up.

The fulfilment operator reads ``main_message`` as a bot command and
``order_message`` as the receipt.
"""

import secrets
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo

from topup.config import settings
from topup.models.api import OrderInfo
from topup.models.domain import CompletionRecord, PurchaseIntent

ORDER_DATE_FORMAT = "%m/%d/%Y, %H:%M:%S"


def new_transaction_id() -> str:
    """``tb`` followed by six random digits."""
    return f"tb{100000 + secrets.randbelow(900000)}"


def new_order_id(now: datetime) -> str:
    """Epoch milliseconds of the confirmation."""
    return str(int(now.timestamp() * 1000))


def order_command(intent: PurchaseIntent) -> str:
    """
    Fulfilment command line: ``user server item``.

    Mobile Legends orders go through the ``/br`` bot command.
    """
    command = f"{intent.buyer_account_id} {intent.server_id} {intent.product.identifier}"
    if intent.product.game.requires_server_id:
        return f"/br {command}"
    return command


def order_message(
    intent: PurchaseIntent, record: CompletionRecord, order_date: str
) -> str:
    lines = [
        "Top up successful✅",
        "",
        f"-Transaction: {record.transaction_id}",
        f"-Game: {intent.product.game.display_name}",
        f"-Amount: {record.final_amount} $",
        f"-Item: {intent.product.name}",
        f"-User ID: {intent.buyer_account_id}",
        f"-Server ID: {intent.server_id}",
        f"-Order ID: S{record.order_id}",
        f"-Order Date: {order_date}",
    ]
    return "\n".join(lines)


def format_order_date(now: datetime, tz: tzinfo | None = None) -> str:
    """Receipt date in the shop's timezone (``ORDER_TIMEZONE``)."""
    return now.astimezone(tz or ZoneInfo(settings.order_timezone)).strftime(ORDER_DATE_FORMAT)


def build_order_info(
    intent: PurchaseIntent,
    record: CompletionRecord,
    now: datetime,
    tz: tzinfo | None = None,
) -> OrderInfo:
    """Assemble the payload signed into the completion token."""
    order_date = format_order_date(now, tz)
    return OrderInfo(
        transaction_id=record.transaction_id,
        game=intent.product.game,
        amount=record.final_amount,
        item=intent.product.name,
        user_id=intent.buyer_account_id,
        server_id=intent.server_id,
        order_id=record.order_id,
        order_date=order_date,
        main_message=order_command(intent),
        order_message=order_message(intent, record, order_date),
    )
