# Module: src/assembly_stock_calculator/snapshot.py
# Description: Point-in-time inventory data: raw API/JSON records, part and raw item
# resolution and conversion into the domain models the calculations operate on.

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from typing_extensions import Annotated

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, model_validator

from .models import (
    RECEIPT_CONDITIONS,
    Assembly,
    BomLine,
    OrderStatus,
    Part,
    PartsIndex,
    PurchaseOrder,
    PurchaseOrderLine,
    RawItem,
    RawItemsIndex,
    Receipt,
    ReceiptItem,
)

logger = logging.getLogger(__name__)


class SnapshotError(Exception):
    """Custom exception for unreadable or invalid snapshot data."""
    pass


def _id_to_str(value: Any) -> Any:
    # Ids may arrive as ints in hand written snapshots
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


IdStr = Annotated[str, BeforeValidator(_id_to_str)]
NonNegative = Annotated[float, Field(ge=0)]


# --- Raw records (shape of the inventory API / JSON snapshot) ---

class PartRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: IdStr = Field(validation_alias=AliasChoices("id", "_id"))
    name: str = "Unknown Part"
    part_code: Optional[IdStr] = Field(default=None, validation_alias=AliasChoices("part_code", "part_id"))
    quantity_in_stock: NonNegative = 0.0
    min_stock_level: NonNegative = 0.0
    max_stock_level: Optional[NonNegative] = None
    cost_per_unit: NonNegative = 0.0
    unit: str = "pcs"
    is_active: bool = True


class RawItemRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: IdStr = Field(validation_alias=AliasChoices("id", "_id"))
    name: str = "Unknown Raw Item"
    item_code: Optional[IdStr] = Field(default=None, validation_alias=AliasChoices("item_code", "item_id"))
    material_type: str = ""
    quantity_in_stock: NonNegative = 0.0
    min_stock_level: NonNegative = 10.0
    cost_per_unit: NonNegative = 0.0
    unit: str = "KG"
    location: Optional[str] = None
    is_active: bool = True
    last_restocked: Optional[datetime] = None


class BomLineRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Either a bare part id or the populated part document
    part_id: Union[IdStr, PartRecord]
    quantity_required: Optional[float] = None
    notes: Optional[str] = None
    is_optional: bool = False


class AssemblyRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: IdStr = Field(validation_alias=AliasChoices("id", "_id"))
    name: str
    bom_items: List[BomLineRecord] = Field(default_factory=list, validation_alias=AliasChoices("bom_items", "details"))
    ready_built: NonNegative = 0.0
    is_active: bool = True


class PurchaseOrderLineRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: IdStr = Field(validation_alias=AliasChoices("id", "_id"))
    part_id: Optional[Union[IdStr, PartRecord]] = None
    raw_item_id: Optional[Union[IdStr, RawItemRecord]] = None
    quantity_ordered: NonNegative
    quantity_received: NonNegative = 0.0
    unit_cost: NonNegative = 0.0
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _one_item_reference(self) -> "PurchaseOrderLineRecord":
        if (self.part_id is None) == (self.raw_item_id is None):
            raise ValueError(f"Purchase order line {self.id} must reference exactly one of part_id or raw_item_id")
        return self


class ReceiptItemRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    line_id: IdStr = Field(validation_alias=AliasChoices("line_id", "purchase_order_item_id"))
    item_id: IdStr = Field(validation_alias=AliasChoices("item_id", "part_id", "raw_item_id"))
    is_raw_item: bool = False
    quantity_received: float = Field(gt=0)
    unit_cost: NonNegative = 0.0
    condition: str = "good"
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _known_condition(self) -> "ReceiptItemRecord":
        if self.condition not in RECEIPT_CONDITIONS:
            raise ValueError(f"Receipt condition must be one of {', '.join(RECEIPT_CONDITIONS)}")
        return self


class ReceiptRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    receipt_number: Optional[str] = None
    received_date: datetime
    receiver_name: str = "system"
    items: List[ReceiptItemRecord] = []
    delivery_notes: Optional[str] = None
    carrier_info: Optional[str] = None


class PurchaseOrderRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: IdStr = Field(validation_alias=AliasChoices("id", "_id"))
    supplier_name: str
    order_number: Optional[str] = None
    supplier_contact: Optional[str] = None
    order_date: Optional[datetime] = None
    status: OrderStatus = OrderStatus.PENDING
    lines: List[PurchaseOrderLineRecord] = Field(default_factory=list, validation_alias=AliasChoices("lines", "items"))
    receipts: List[ReceiptRecord] = []


class SnapshotRecord(BaseModel):
    parts: List[PartRecord] = []
    raw_items: List[RawItemRecord] = []
    assemblies: List[AssemblyRecord] = []
    purchase_orders: List[PurchaseOrderRecord] = []


# --- Domain snapshot ---

@dataclass
class InventorySnapshot:
    """Parts, raw items, assemblies and purchase orders as fetched at one point in time."""
    parts: PartsIndex = field(default_factory=dict)
    raw_items: RawItemsIndex = field(default_factory=dict)
    assemblies: List[Assembly] = field(default_factory=list)
    purchase_orders: List[PurchaseOrder] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def find_assembly(self, identifier: str) -> Optional[Assembly]:
        """Looks an assembly up by id, falling back to a case-insensitive name match."""
        for assembly in self.assemblies:
            if assembly.id == identifier:
                return assembly
        wanted = identifier.strip().lower()
        for assembly in self.assemblies:
            if assembly.name.strip().lower() == wanted:
                return assembly
        return None

    def find_purchase_order(self, identifier: str) -> Optional[PurchaseOrder]:
        wanted = identifier.strip().upper()
        for order in self.purchase_orders:
            if order.id == identifier or (order.order_number and order.order_number.upper() == wanted):
                return order
        return None

    def find_stock_item(self, identifier: str) -> Optional[Union[Part, RawItem]]:
        """
        Looks up a part or raw item by id, code (P0001 / RI000001) or case-insensitive name.

        Parts are searched before raw items at each step.
        """
        if identifier in self.parts:
            return self.parts[identifier]
        if identifier in self.raw_items:
            return self.raw_items[identifier]
        wanted = identifier.strip().lower()
        candidates = list(self.parts.values()) + list(self.raw_items.values())
        for item in candidates:
            code = item.part_code if isinstance(item, Part) else item.item_code
            if code and code.lower() == wanted:
                return item
        for item in candidates:
            if item.name.strip().lower() == wanted:
                return item
        return None


def _part_from_record(record: PartRecord) -> Part:
    return Part(
        id=record.id,
        name=record.name,
        quantity_in_stock=record.quantity_in_stock,
        min_stock_level=record.min_stock_level,
        cost_per_unit=record.cost_per_unit,
        unit=record.unit,
        part_code=record.part_code,
        max_stock_level=record.max_stock_level,
        is_active=record.is_active,
    )


def _raw_item_from_record(record: RawItemRecord) -> RawItem:
    return RawItem(
        id=record.id,
        name=record.name,
        material_type=record.material_type,
        quantity_in_stock=record.quantity_in_stock,
        min_stock_level=record.min_stock_level,
        cost_per_unit=record.cost_per_unit,
        unit=record.unit,
        item_code=record.item_code,
        location=record.location,
        is_active=record.is_active,
        last_restocked=record.last_restocked,
    )


def _reference_id(reference: Union[str, PartRecord, RawItemRecord]) -> str:
    return reference if isinstance(reference, str) else reference.id


def resolve_part(line: Union[BomLineRecord, PurchaseOrderLineRecord], parts_index: PartsIndex) -> Optional[Part]:
    """
    Resolves the part a line item refers to.

    The reference is either a bare id or a populated part document. The parts index
    wins when it knows the id; a populated document that is missing from the index
    is converted on its own. Returns None when the part cannot be resolved.
    """
    reference = line.part_id
    part_id = _reference_id(reference)
    part = parts_index.get(part_id)
    if part is not None:
        return part
    if isinstance(reference, PartRecord):
        return _part_from_record(reference)
    return None


def resolve_raw_item(line: PurchaseOrderLineRecord, raw_items_index: RawItemsIndex) -> Optional[RawItem]:
    """Same as resolve_part, for lines that reference a raw item."""
    reference = line.raw_item_id
    raw_item = raw_items_index.get(_reference_id(reference))
    if raw_item is not None:
        return raw_item
    if isinstance(reference, RawItemRecord):
        return _raw_item_from_record(reference)
    return None


def _register_line_part(line, parts_index: PartsIndex, context: str, warnings: List[str]) -> str:
    part = resolve_part(line, parts_index)
    part_id = _reference_id(line.part_id)
    if part is None:
        warning_msg = f"{context}: part reference '{part_id}' could not be resolved. Treating its stock as 0."
        logger.warning(warning_msg)
        warnings.append(warning_msg)
        return part_id
    parts_index.setdefault(part.id, part)
    return part.id


def _register_line_raw_item(line: PurchaseOrderLineRecord, raw_items_index: RawItemsIndex, context: str, warnings: List[str]) -> str:
    raw_item = resolve_raw_item(line, raw_items_index)
    raw_item_id = _reference_id(line.raw_item_id)
    if raw_item is None:
        warning_msg = f"{context}: raw item reference '{raw_item_id}' could not be resolved."
        logger.warning(warning_msg)
        warnings.append(warning_msg)
        return raw_item_id
    raw_items_index.setdefault(raw_item.id, raw_item)
    return raw_item.id


def _receipt_from_record(order_id: str, record: ReceiptRecord) -> Receipt:
    return Receipt(
        order_id=order_id,
        received_date=record.received_date,
        receiver_name=record.receiver_name,
        receipt_number=record.receipt_number,
        items=[
            ReceiptItem(
                line_id=item.line_id, item_id=item.item_id, is_raw_item=item.is_raw_item,
                quantity_received=item.quantity_received, unit_cost=item.unit_cost,
                condition=item.condition, notes=item.notes,
            )
            for item in record.items
        ],
        delivery_notes=record.delivery_notes,
        carrier_info=record.carrier_info,
    )


def build_snapshot(record: SnapshotRecord) -> InventorySnapshot:
    """Converts raw records into an InventorySnapshot, resolving every item reference once."""
    snapshot = InventorySnapshot()
    for part_record in record.parts:
        snapshot.parts[part_record.id] = _part_from_record(part_record)
    for raw_item_record in record.raw_items:
        snapshot.raw_items[raw_item_record.id] = _raw_item_from_record(raw_item_record)

    for assembly_record in record.assemblies:
        bom_items = []
        for bom_record in assembly_record.bom_items:
            part_id = _register_line_part(bom_record, snapshot.parts, f"Assembly '{assembly_record.name}'", snapshot.warnings)
            bom_items.append(BomLine(
                part_id=part_id,
                quantity_required=bom_record.quantity_required,
                notes=bom_record.notes,
                is_optional=bom_record.is_optional,
            ))
        snapshot.assemblies.append(Assembly(
            id=assembly_record.id,
            name=assembly_record.name,
            bom_items=bom_items,
            ready_built=assembly_record.ready_built,
            is_active=assembly_record.is_active,
        ))

    for order_record in record.purchase_orders:
        context = f"Purchase order {order_record.order_number or order_record.id}"
        lines = []
        for line_record in order_record.lines:
            part_id = raw_item_id = None
            if line_record.raw_item_id is not None:
                raw_item_id = _register_line_raw_item(line_record, snapshot.raw_items, context, snapshot.warnings)
            else:
                part_id = _register_line_part(line_record, snapshot.parts, context, snapshot.warnings)
            lines.append(PurchaseOrderLine(
                id=line_record.id,
                part_id=part_id,
                raw_item_id=raw_item_id,
                quantity_ordered=line_record.quantity_ordered,
                quantity_received=line_record.quantity_received,
                unit_cost=line_record.unit_cost,
                notes=line_record.notes,
            ))
        snapshot.purchase_orders.append(PurchaseOrder(
            id=order_record.id,
            supplier_name=order_record.supplier_name,
            order_number=order_record.order_number,
            supplier_contact=order_record.supplier_contact,
            order_date=order_record.order_date,
            status=order_record.status,
            lines=lines,
            receipts=[_receipt_from_record(order_record.id, r) for r in order_record.receipts],
        ))

    logger.info(
        f"Snapshot built: {len(snapshot.parts)} parts, {len(snapshot.raw_items)} raw items, "
        f"{len(snapshot.assemblies)} assemblies, {len(snapshot.purchase_orders)} purchase orders, "
        f"{len(snapshot.warnings)} warnings"
    )
    return snapshot


def snapshot_from_data(raw_data: Dict[str, Any]) -> InventorySnapshot:
    """Validates a raw dictionary and builds a snapshot. Raises SnapshotError on invalid data."""
    try:
        record = SnapshotRecord.model_validate(raw_data)
    except ValidationError as e:
        raise SnapshotError(f"Invalid snapshot data: {e}") from e
    return build_snapshot(record)


def load_snapshot_from_file(filepath: Path) -> InventorySnapshot:
    """
    Loads an inventory snapshot from a JSON file.

    Raises SnapshotError if the file is missing, is not valid JSON, or its records
    fail validation.
    """
    if not filepath.exists():
        raise SnapshotError(f"Snapshot file not found: {filepath}")
    try:
        raw_data = json.loads(filepath.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error loading snapshot from {filepath}: {e}")
        raise SnapshotError(f"Snapshot file {filepath} is not valid JSON: {e}") from e
    if not isinstance(raw_data, dict):
        raise SnapshotError(f"Snapshot file {filepath} must contain a JSON object.")

    try:
        snapshot = snapshot_from_data(raw_data)
    except SnapshotError as e:
        logger.error(f"Data validation error loading snapshot from {filepath}: {e}")
        raise SnapshotError(f"Snapshot file {filepath}: {e}") from e
    logger.info(f"Successfully loaded snapshot from {filepath}.")
    return snapshot


def _receipt_to_record(receipt: Receipt) -> ReceiptRecord:
    return ReceiptRecord(
        receipt_number=receipt.receipt_number,
        received_date=receipt.received_date,
        receiver_name=receipt.receiver_name,
        items=[
            ReceiptItemRecord(
                line_id=item.line_id, item_id=item.item_id, is_raw_item=item.is_raw_item,
                quantity_received=item.quantity_received, unit_cost=item.unit_cost,
                condition=item.condition, notes=item.notes,
            )
            for item in receipt.items
        ],
        delivery_notes=receipt.delivery_notes,
        carrier_info=receipt.carrier_info,
    )


def snapshot_to_record(snapshot: InventorySnapshot) -> SnapshotRecord:
    parts = [
        PartRecord(
            id=part.id, name=part.name, part_code=part.part_code,
            quantity_in_stock=part.quantity_in_stock, min_stock_level=part.min_stock_level,
            max_stock_level=part.max_stock_level, cost_per_unit=part.cost_per_unit,
            unit=part.unit, is_active=part.is_active,
        )
        for part in snapshot.parts.values()
    ]
    raw_items = [
        RawItemRecord(
            id=item.id, name=item.name, item_code=item.item_code, material_type=item.material_type,
            quantity_in_stock=item.quantity_in_stock, min_stock_level=item.min_stock_level,
            cost_per_unit=item.cost_per_unit, unit=item.unit, location=item.location,
            is_active=item.is_active, last_restocked=item.last_restocked,
        )
        for item in snapshot.raw_items.values()
    ]
    assemblies = [
        AssemblyRecord(
            id=assembly.id, name=assembly.name, ready_built=assembly.ready_built, is_active=assembly.is_active,
            bom_items=[
                BomLineRecord(part_id=line.part_id, quantity_required=line.quantity_required,
                              notes=line.notes, is_optional=line.is_optional)
                for line in assembly.bom_items
            ],
        )
        for assembly in snapshot.assemblies
    ]
    purchase_orders = [
        PurchaseOrderRecord(
            id=order.id, supplier_name=order.supplier_name, order_number=order.order_number,
            supplier_contact=order.supplier_contact, order_date=order.order_date, status=order.status,
            lines=[
                PurchaseOrderLineRecord(id=line.id, part_id=line.part_id, raw_item_id=line.raw_item_id,
                                        quantity_ordered=line.quantity_ordered,
                                        quantity_received=line.quantity_received, unit_cost=line.unit_cost,
                                        notes=line.notes)
                for line in order.lines
            ],
            receipts=[_receipt_to_record(receipt) for receipt in order.receipts],
        )
        for order in snapshot.purchase_orders
    ]
    return SnapshotRecord(parts=parts, raw_items=raw_items, assemblies=assemblies, purchase_orders=purchase_orders)


def save_snapshot_to_file(snapshot: InventorySnapshot, filepath: Path) -> None:
    """Writes the snapshot back as JSON in the same format load_snapshot_from_file reads."""
    if not filepath.parent.exists():
        filepath.parent.mkdir(parents=True, exist_ok=True)
    json_string = snapshot_to_record(snapshot).model_dump_json(indent=2)
    filepath.write_text(json_string, encoding="utf-8")
    logger.info(f"Snapshot saved to {filepath}")
