# Module: src/assembly_stock_calculator/receiving.py
# Description: Purchase-order receipt reconciliation: remaining balances, receipt
# validation, completion percentage and the order status machine.

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from .calculator import to_decimal
from .models import (
    RECEIPT_CONDITIONS,
    LineReconciliation,
    OrderStateError,
    OrderStatus,
    PartsIndex,
    PurchaseOrder,
    PurchaseOrderLine,
    RawItemsIndex,
    Receipt,
    ReceiptItem,
    ReceiptRequest,
    ReceiptValidationError,
    ReconciliationResult,
    TransactionType,
)
from .stock import apply_stock_operation

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELLED)
RECEIPT_NUMBER_PREFIX = "RCP"


def remaining_quantity(line: PurchaseOrderLine) -> float:
    return float(to_decimal(line.quantity_ordered) - to_decimal(line.quantity_received))


def validate_receipt(line: PurchaseOrderLine, quantity_receiving: float, already_receiving: float = 0.0) -> None:
    """
    Checks a receipt against the line's remaining balance.

    `already_receiving` is the quantity accepted for the same line earlier in the
    same receipt request.

    Raises:
        ReceiptValidationError: if the quantity is not positive or exceeds what remains.
    """
    if quantity_receiving <= 0:
        raise ReceiptValidationError(
            f"Quantity receiving for line {line.id} must be positive, got {quantity_receiving}."
        )
    remaining = to_decimal(remaining_quantity(line)) - to_decimal(already_receiving)
    if to_decimal(quantity_receiving) > remaining:
        raise ReceiptValidationError(
            f"Cannot receive {quantity_receiving} items. Only {float(remaining)} remaining for this item."
        )


def apply_receipt(line: PurchaseOrderLine, quantity_receiving: float) -> None:
    """Validates and adds a receipt to the line's cumulative received quantity."""
    validate_receipt(line, quantity_receiving)
    line.quantity_received = float(to_decimal(line.quantity_received) + to_decimal(quantity_receiving))
    logger.debug(f"Line {line.id}: received {line.quantity_received} of {line.quantity_ordered}")


def completion_percentage(order: PurchaseOrder) -> int:
    """Received share of the ordered quantity across all lines, rounded half up to a whole percent."""
    if not order.lines:
        return 0
    total_ordered = sum((to_decimal(line.quantity_ordered) for line in order.lines), Decimal(0))
    total_received = sum((to_decimal(line.quantity_received) for line in order.lines), Decimal(0))
    if total_ordered <= 0:
        return 0
    percentage = (Decimal(100) * total_received / total_ordered).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(min(Decimal(100), max(Decimal(0), percentage)))


def derive_status(order: PurchaseOrder) -> OrderStatus:
    """Status implied by the received quantities. A cancelled order stays cancelled."""
    if order.status == OrderStatus.CANCELLED:
        return OrderStatus.CANCELLED
    if not order.lines:
        return OrderStatus.PENDING
    if all(remaining_quantity(line) <= 0 for line in order.lines):
        return OrderStatus.COMPLETED
    if any(line.quantity_received > 0 for line in order.lines):
        return OrderStatus.PARTIAL
    return OrderStatus.PENDING


def _order_label(order: PurchaseOrder) -> str:
    return order.order_number or order.id


def next_receipt_number(orders: Iterable[PurchaseOrder]) -> str:
    """Receipt number following the highest existing one: RCP000001, RCP000002, ..."""
    highest = 0
    for order in orders:
        for receipt in order.receipts:
            number = receipt.receipt_number or ""
            if number.startswith(RECEIPT_NUMBER_PREFIX) and number[len(RECEIPT_NUMBER_PREFIX):].isdigit():
                highest = max(highest, int(number[len(RECEIPT_NUMBER_PREFIX):]))
    return f"{RECEIPT_NUMBER_PREFIX}{highest + 1:06d}"


def receive_items(
    order: PurchaseOrder,
    requests: List[ReceiptRequest],
    parts_index: Optional[PartsIndex] = None,
    raw_items_index: Optional[RawItemsIndex] = None,
    received_date: Optional[datetime] = None,
    receiver_name: str = "system",
    receipt_number: Optional[str] = None,
    delivery_notes: Optional[str] = None,
    carrier_info: Optional[str] = None,
) -> ReconciliationResult:
    """
    Applies a set of receipts to a purchase order, all or nothing.

    Every request is validated before any line is updated. When `parts_index` is
    given, received quantities are also added to the stock of the referenced parts,
    and of the referenced raw items through `raw_items_index`. The delivery is
    recorded as a Receipt appended to `order.receipts` and returned on the result.

    Raises:
        OrderStateError: if the order is already completed or cancelled.
        ReceiptValidationError: on an empty request, unknown line, invalid quantity,
            unknown condition, negative unit cost or unresolvable part or raw item.
    """
    label = _order_label(order)
    if order.status in TERMINAL_STATUSES:
        raise OrderStateError(f"Purchase order {label} is already {order.status.value}.")
    if not requests:
        raise ReceiptValidationError("Items to receive are required.")
    track_stock = parts_index is not None or raw_items_index is not None

    # Validate everything first; repeated line ids are checked cumulatively
    receiving_by_line: Dict[str, float] = {}
    for request in requests:
        line = order.get_line(request.line_id)
        if line is None:
            raise ReceiptValidationError(f"Purchase order item not found: {request.line_id}")
        already = receiving_by_line.get(line.id, 0.0)
        validate_receipt(line, request.quantity_receiving, already_receiving=already)
        if request.condition not in RECEIPT_CONDITIONS:
            raise ReceiptValidationError(
                f"Item condition must be one of {', '.join(RECEIPT_CONDITIONS)}; got '{request.condition}'."
            )
        if line.unit_cost < 0:
            raise ReceiptValidationError(f"Unit cost for line {line.id} must not be negative, got {line.unit_cost}.")
        if track_stock:
            if line.is_raw_item and line.raw_item_id not in (raw_items_index or {}):
                raise ReceiptValidationError(f"Raw item not found: {line.raw_item_id}")
            if not line.is_raw_item and line.part_id not in (parts_index or {}):
                raise ReceiptValidationError(f"Part not found: {line.part_id}")
        receiving_by_line[line.id] = float(to_decimal(already) + to_decimal(request.quantity_receiving))

    receipt = Receipt(
        order_id=order.id,
        received_date=received_date or datetime.now(),
        receiver_name=receiver_name,
        receipt_number=receipt_number,
        delivery_notes=delivery_notes,
        carrier_info=carrier_info,
    )
    result = ReconciliationResult(order_id=order.id, receipt=receipt)
    for request in requests:
        line = order.get_line(request.line_id)
        apply_receipt(line, request.quantity_receiving)
        receipt.items.append(ReceiptItem(
            line_id=line.id,
            item_id=line.item_id,
            is_raw_item=line.is_raw_item,
            quantity_received=request.quantity_receiving,
            unit_cost=line.unit_cost,
            condition=request.condition,
            notes=request.notes,
        ))
        if track_stock:
            item = raw_items_index[line.raw_item_id] if line.is_raw_item else parts_index[line.part_id]
            result.stock_transactions.append(apply_stock_operation(
                item,
                request.quantity_receiving,
                TransactionType.DELIVERY,
                unit_price=line.unit_cost,
                reference=label,
                notes=f"Received from purchase order {label}",
            ))

    order.receipts.append(receipt)
    order.status = derive_status(order)
    result.status = order.status
    result.completion_percentage = completion_percentage(order)
    result.lines = [
        LineReconciliation(
            line_id=line.id,
            quantity_ordered=line.quantity_ordered,
            quantity_received=line.quantity_received,
            remaining=remaining_quantity(line),
        )
        for line in order.lines
    ]
    logger.info(f"Received {len(requests)} item(s) on purchase order {label} by {receiver_name}. Status: {order.status.value}, completion: {result.completion_percentage}%")
    return result


def cancel_order(order: PurchaseOrder) -> None:
    """Cancels a pending or partial order. Completed and cancelled orders cannot change."""
    if order.status in TERMINAL_STATUSES:
        raise OrderStateError(f"Cannot cancel purchase order {_order_label(order)}: it is {order.status.value}.")
    order.status = OrderStatus.CANCELLED
    logger.info(f"Purchase order {_order_label(order)} cancelled.")


def line_total(line: PurchaseOrderLine) -> float:
    return float(to_decimal(line.quantity_ordered) * to_decimal(line.unit_cost))


def order_total(order: PurchaseOrder) -> float:
    return float(sum((to_decimal(line_total(line)) for line in order.lines), Decimal(0)))


def outstanding_orders(orders: Iterable[PurchaseOrder]) -> List[PurchaseOrder]:
    """Orders still waiting on deliveries: pending ones and partially received ones."""
    return [order for order in orders if order.status in (OrderStatus.PENDING, OrderStatus.PARTIAL)]
