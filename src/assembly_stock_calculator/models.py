# Module: src/assembly_stock_calculator/models.py
# Description: Defines data structures and errors used throughout the application.

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class InventoryValidationError(ValueError):
    """Raised when caller input cannot be accepted (quantities, references)."""
    pass


class BomValidationError(InventoryValidationError):
    """Raised when a BOM line is missing its required quantity or a BOM cannot be built from."""
    pass


class ReceiptValidationError(InventoryValidationError):
    """Raised when a purchase-order receipt is invalid."""
    pass


class OrderStateError(InventoryValidationError):
    """Raised on an illegal purchase-order status transition."""
    pass


class InsufficientStockError(InventoryValidationError):
    """Raised when a stock decrement would drive stock below zero."""

    def __init__(self, part_id: str, available: float, requested: float, message: Optional[str] = None):
        self.part_id = part_id
        self.available = available
        self.requested = requested
        super().__init__(
            message or f"Insufficient stock for part {part_id}: available {available}, requested {requested}"
        )


class OrderStatus(Enum):
    """Purchase order status. `completed` and `cancelled` are terminal."""
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionType(Enum):
    DELIVERY = "DELIVERY"
    WITHDRAWAL = "WITHDRAWAL"
    ASSEMBLY_BUILD = "ASSEMBLY_BUILD"
    SCRAP = "SCRAP"


class StockStatus(Enum):
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    OVERSTOCKED = "overstocked"
    NORMAL = "normal"


@dataclass
class Part:
    """A stocked part. Stock is mutated only through the stock module."""
    id: str
    name: str
    quantity_in_stock: float = 0.0
    min_stock_level: float = 0.0
    cost_per_unit: float = 0.0
    unit: str = "pcs"
    part_code: Optional[str] = None # Human readable code, e.g. P0001
    max_stock_level: Optional[float] = None
    is_active: bool = True


@dataclass
class RawItem:
    """Stocked raw material (sheet, bar, wire) bought in and consumed or scrapped in production."""
    id: str
    name: str
    material_type: str = ""
    quantity_in_stock: float = 0.0
    min_stock_level: float = 10.0
    cost_per_unit: float = 0.0
    unit: str = "KG"
    item_code: Optional[str] = None # Human readable code, e.g. RI000001
    location: Optional[str] = None
    is_active: bool = True
    last_restocked: Optional[datetime] = None


@dataclass
class BomLine:
    """One line of an assembly's bill of materials."""
    part_id: str
    quantity_required: Optional[float] # Units of the part per one assembly; None when missing
    notes: Optional[str] = None
    is_optional: bool = False


@dataclass
class Assembly:
    id: str
    name: str
    bom_items: List[BomLine] = field(default_factory=list)
    ready_built: float = 0.0
    is_active: bool = True


@dataclass
class PurchaseOrderLine:
    """An ordered item. Exactly one of `part_id` and `raw_item_id` is set."""
    id: str
    part_id: Optional[str]
    quantity_ordered: float
    quantity_received: float = 0.0
    unit_cost: float = 0.0
    notes: Optional[str] = None
    raw_item_id: Optional[str] = None

    @property
    def is_raw_item(self) -> bool:
        return self.raw_item_id is not None

    @property
    def item_id(self) -> str:
        return self.raw_item_id if self.raw_item_id is not None else self.part_id


RECEIPT_CONDITIONS = ("good", "damaged", "partial_damage")


@dataclass
class ReceiptItem:
    line_id: str
    item_id: str
    is_raw_item: bool
    quantity_received: float
    unit_cost: float = 0.0
    condition: str = "good"
    notes: Optional[str] = None


@dataclass
class Receipt:
    """Record of one delivery booked against a purchase order."""
    order_id: str
    received_date: datetime
    receiver_name: str = "system"
    receipt_number: Optional[str] = None # RCP000001
    items: List[ReceiptItem] = field(default_factory=list)
    delivery_notes: Optional[str] = None
    carrier_info: Optional[str] = None

    @property
    def total_items_received(self) -> float:
        return sum(item.quantity_received for item in self.items)


@dataclass
class PurchaseOrder:
    id: str
    supplier_name: str
    order_number: Optional[str] = None
    supplier_contact: Optional[str] = None
    order_date: Optional[datetime] = None
    status: OrderStatus = OrderStatus.PENDING
    lines: List[PurchaseOrderLine] = field(default_factory=list)
    receipts: List[Receipt] = field(default_factory=list)

    def get_line(self, line_id: str) -> Optional[PurchaseOrderLine]:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None


@dataclass
class ReceiptRequest:
    line_id: str
    quantity_receiving: float
    condition: str = "good" # One of RECEIPT_CONDITIONS
    notes: Optional[str] = None


# --- Calculation results ---

@dataclass
class AvailabilityResult:
    """Availability of one BOM line for a given build multiplier."""
    part_id: str
    required: float
    available: float
    can_build: bool
    shortage: float
    warnings: List[str] = field(default_factory=list)


@dataclass
class BatchSelection:
    """An assembly selected for a batch build with the requested quantity."""
    assembly: Assembly
    quantity: float


@dataclass
class PartConstraint:
    part_id: str
    part_name: str
    available_stock: float
    total_required: float
    constraint_factor: float # available / total_required; < 1 means a shortage


@dataclass
class AssemblyBuildLimit:
    assembly_id: str
    assembly_name: str
    requested_quantity: float
    max_buildable: int # Adjusted for every other selected assembly's draw
    limiting_part_id: Optional[str] = None


@dataclass
class AssemblyDemand:
    assembly_id: str
    assembly_name: str
    quantity_needed: float


@dataclass
class InsufficientPart:
    part_id: str
    part_name: str
    available_stock: float
    total_required: float
    shortage: float
    assemblies: List[AssemblyDemand] = field(default_factory=list)


@dataclass
class BatchAnalysis:
    """Holds the outcome of a combined build analysis over several assemblies."""
    can_build_all: bool = True
    total_assemblies: int = 0
    total_part_types: int = 0
    insufficient_parts: List[InsufficientPart] = field(default_factory=list)
    part_constraints: List[PartConstraint] = field(default_factory=list)
    max_buildable_per_assembly: List[AssemblyBuildLimit] = field(default_factory=list)
    global_constraint_factor: float = 1.0
    warnings: List[str] = field(default_factory=list)


@dataclass
class StockTransaction:
    transaction_type: TransactionType
    part_id: str # Part or raw item id
    quantity: float # Signed: negative for stock leaving
    previous_stock: float
    new_stock: float
    unit_price: float = 0.0
    total_value: float = 0.0
    reference: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class LineReconciliation:
    line_id: str
    quantity_ordered: float
    quantity_received: float
    remaining: float


@dataclass
class ReconciliationResult:
    order_id: str
    lines: List[LineReconciliation] = field(default_factory=list)
    status: OrderStatus = OrderStatus.PENDING
    completion_percentage: int = 0
    stock_transactions: List[StockTransaction] = field(default_factory=list)
    receipt: Optional[Receipt] = None


@dataclass
class PartConsumption:
    part_id: str
    part_name: str
    quantity_consumed: float
    cost_per_unit: float
    total_cost: float
    previous_stock: float
    new_stock: float


@dataclass
class BuildRecord:
    """Result of consuming stock to build an assembly."""
    assembly_id: str
    quantity: float
    parts_used: List[PartConsumption] = field(default_factory=list)
    total_parts_cost: float = 0.0
    cost_per_unit: float = 0.0
    transactions: List[StockTransaction] = field(default_factory=list)


PartsIndex = Dict[str, Part]
RawItemsIndex = Dict[str, RawItem]
