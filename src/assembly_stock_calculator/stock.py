# Module: src/assembly_stock_calculator/stock.py
# Description: Stock mutations (deliveries, withdrawals, scrap, assembly builds)
# and stock-level classification. Stock never goes below zero.

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Union

from .calculator import to_decimal
from .models import (
    Assembly,
    BomValidationError,
    BuildRecord,
    InsufficientStockError,
    InventoryValidationError,
    Part,
    PartConsumption,
    PartsIndex,
    RawItem,
    StockStatus,
    StockTransaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

SCRAP_REASONS = ("manufacturing", "cutting", "machining", "assembly", "other")

_OUTGOING = (TransactionType.WITHDRAWAL, TransactionType.SCRAP, TransactionType.ASSEMBLY_BUILD)

StockItem = Union[Part, RawItem]


def apply_stock_operation(
    part: StockItem,
    quantity: float,
    transaction_type: TransactionType,
    unit_price: float = 0.0,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> StockTransaction:
    """
    Adds or removes stock for a part or raw item and returns the transaction record.

    DELIVERY adds stock; WITHDRAWAL, SCRAP and ASSEMBLY_BUILD remove it. A delivery
    of a raw item also stamps its `last_restocked` time.

    Raises:
        InventoryValidationError: if quantity is not positive or unit_price is negative.
        InsufficientStockError: if removing `quantity` would make stock negative.
    """
    if quantity <= 0:
        raise InventoryValidationError(f"Quantity must be a positive number, got {quantity}.")
    if unit_price < 0:
        raise InventoryValidationError(f"Unit price must not be negative, got {unit_price}.")

    previous_stock = part.quantity_in_stock
    if transaction_type == TransactionType.DELIVERY:
        new_stock = float(to_decimal(previous_stock) + to_decimal(quantity))
        signed_quantity = quantity
    elif transaction_type in _OUTGOING:
        if previous_stock < quantity:
            logger.warning(f"Rejected {transaction_type.value} of {quantity} for part {part.name} (ID: {part.id}): only {previous_stock} in stock.")
            raise InsufficientStockError(part.id, previous_stock, quantity)
        new_stock = float(to_decimal(previous_stock) - to_decimal(quantity))
        signed_quantity = -quantity
    else:
        raise InventoryValidationError(f"Unsupported transaction type: {transaction_type}")

    part.quantity_in_stock = new_stock
    if isinstance(part, RawItem) and transaction_type == TransactionType.DELIVERY:
        part.last_restocked = datetime.now()
    transaction = StockTransaction(
        transaction_type=transaction_type,
        part_id=part.id,
        quantity=signed_quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        unit_price=unit_price,
        total_value=float(to_decimal(unit_price) * to_decimal(quantity)),
        reference=reference or transaction_type.value,
        notes=notes or f"{transaction_type.value} operation",
    )
    logger.info(f"{transaction_type.value}: part {part.name} (ID: {part.id}) {previous_stock} -> {new_stock}")
    return transaction


def scrap_part(part: StockItem, quantity: float, reason: str, notes: Optional[str] = None) -> StockTransaction:
    """Removes scrapped units of a part or raw item from stock, recording why."""
    if reason not in SCRAP_REASONS:
        raise InventoryValidationError(f"Scrap reason must be one of {', '.join(SCRAP_REASONS)}; got '{reason}'.")
    return apply_stock_operation(
        part,
        quantity,
        TransactionType.SCRAP,
        unit_price=part.cost_per_unit,
        reference=f"Scrap: {reason}",
        notes=notes or f"Scrapped during {reason}",
    )


def build_assembly(assembly: Assembly, parts_index: PartsIndex, quantity: float) -> BuildRecord:
    """
    Consumes BOM parts from stock to build `quantity` units of an assembly.

    Every line is checked before any stock is touched, so a rejected build leaves
    the snapshot unchanged.

    Raises:
        InventoryValidationError: if quantity is not positive.
        BomValidationError: if the BOM is empty, has a missing or non-positive quantity,
            or references a part that cannot be resolved.
        InventoryValidationError: also if a BOM part has a negative cost per unit.
        InsufficientStockError: if any part lacks the stock for the full build.
    """
    if quantity <= 0:
        raise InventoryValidationError(f"Build quantity must be positive, got {quantity}.")
    if not assembly.bom_items:
        raise BomValidationError(f"Assembly '{assembly.name}' has no BOM. It cannot be built.")

    # part id -> (part, total required); lines repeating a part are summed
    planned = {}
    for line in assembly.bom_items:
        if line.quantity_required is None or line.quantity_required <= 0:
            raise BomValidationError(
                f"Assembly '{assembly.name}': BOM line for part '{line.part_id}' has an invalid required quantity "
                f"({line.quantity_required})."
            )
        part = parts_index.get(line.part_id)
        if part is None:
            raise BomValidationError(f"Assembly '{assembly.name}': part '{line.part_id}' could not be resolved.")
        if part.cost_per_unit < 0:
            raise InventoryValidationError(
                f"Assembly '{assembly.name}': part {part.name} has a negative cost per unit ({part.cost_per_unit})."
            )
        _, already_planned = planned.get(part.id, (part, to_decimal(0)))
        planned[part.id] = (part, already_planned + to_decimal(line.quantity_required) * to_decimal(quantity))

    for part, required in planned.values():
        if to_decimal(part.quantity_in_stock) < required:
            raise InsufficientStockError(
                part.id, part.quantity_in_stock, float(required),
                message=(f"Insufficient stock for part {part.name} ({part.part_code or part.id}). "
                         f"Required: {float(required)}, Available: {part.quantity_in_stock}"),
            )

    record = BuildRecord(assembly_id=assembly.id, quantity=quantity)
    total_cost = to_decimal(0)
    for part, planned_quantity in planned.values():
        required = float(planned_quantity)
        transaction = apply_stock_operation(
            part,
            required,
            TransactionType.ASSEMBLY_BUILD,
            unit_price=part.cost_per_unit,
            reference=f"Assembly: {assembly.name}",
            notes=f"Part consumed for {assembly.name} assembly",
        )
        record.transactions.append(transaction)
        record.parts_used.append(PartConsumption(
            part_id=part.id,
            part_name=part.name,
            quantity_consumed=required,
            cost_per_unit=part.cost_per_unit,
            total_cost=transaction.total_value,
            previous_stock=transaction.previous_stock,
            new_stock=transaction.new_stock,
        ))
        total_cost += to_decimal(transaction.total_value)

    record.total_parts_cost = float(total_cost)
    record.cost_per_unit = float(total_cost / to_decimal(quantity))
    assembly.ready_built = float(to_decimal(assembly.ready_built) + to_decimal(quantity))
    logger.info(f"Built {quantity} x '{assembly.name}'. Parts cost: {record.total_parts_cost:.2f}, ready built: {assembly.ready_built}")
    return record


def stock_status(part: StockItem) -> StockStatus:
    if part.quantity_in_stock <= 0:
        return StockStatus.OUT_OF_STOCK
    if part.quantity_in_stock <= part.min_stock_level:
        return StockStatus.LOW_STOCK
    # Raw items have no maximum level
    max_stock_level = getattr(part, "max_stock_level", None)
    if max_stock_level and part.quantity_in_stock >= max_stock_level:
        return StockStatus.OVERSTOCKED
    return StockStatus.NORMAL


def is_low_stock(part: StockItem) -> bool:
    return part.quantity_in_stock <= part.min_stock_level


def low_stock_items(items: Iterable[StockItem]) -> List[StockItem]:
    """Active parts or raw items at or below their minimum stock level, sorted by name."""
    return sorted((i for i in items if i.is_active and is_low_stock(i)), key=lambda i: i.name)


def stock_value(part: StockItem) -> float:
    return float(to_decimal(part.quantity_in_stock) * to_decimal(part.cost_per_unit))
