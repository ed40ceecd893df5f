import json
from datetime import datetime

import pytest

from assembly_stock_calculator.models import OrderStatus, ReceiptRequest
from assembly_stock_calculator.receiving import receive_items
from assembly_stock_calculator.snapshot import (
    BomLineRecord,
    PartRecord,
    SnapshotError,
    load_snapshot_from_file,
    resolve_part,
    save_snapshot_to_file,
    snapshot_from_data,
)


RAW_SNAPSHOT = {
    "parts": [
        {"_id": "p1", "name": "Bracket", "part_id": "P0001", "quantity_in_stock": 10, "min_stock_level": 2},
        {"id": 2, "name": "Bolt", "quantity_in_stock": 15, "unexpected": "ignored"},
    ],
    "assemblies": [
        {
            "_id": "a1",
            "name": "Frame",
            "details": [
                {"part_id": "p1", "quantity_required": 3},
                # Populated part document that is not in the parts list
                {"part_id": {"_id": "p9", "name": "Rivet", "quantity_in_stock": 50}, "quantity_required": 4},
                {"part_id": "ghost", "quantity_required": 1},
            ],
        },
    ],
    "purchase_orders": [
        {
            "_id": "po1",
            "supplier_name": "Acme",
            "order_number": "PO-0001",
            "status": "partial",
            "items": [
                {"_id": "l1", "part_id": {"_id": "p1", "name": "Bracket"}, "quantity_ordered": 10, "quantity_received": 4},
            ],
        },
    ],
}


def test_snapshot_from_data_builds_domain_objects():
    snapshot = snapshot_from_data(RAW_SNAPSHOT)

    assert set(snapshot.parts) == {"p1", "2", "p9"}
    assert snapshot.parts["p1"].part_code == "P0001"
    assert snapshot.parts["2"].name == "Bolt"

    frame = snapshot.assemblies[0]
    assert [line.part_id for line in frame.bom_items] == ["p1", "p9", "ghost"]
    assert frame.bom_items[0].quantity_required == 3

    order = snapshot.purchase_orders[0]
    assert order.status == OrderStatus.PARTIAL
    assert order.lines[0].part_id == "p1"
    assert order.lines[0].quantity_received == 4

def test_snapshot_index_wins_over_populated_document():
    snapshot = snapshot_from_data(RAW_SNAPSHOT)
    # The order line carries a partial copy of p1; the full part from the list is kept
    assert snapshot.parts["p1"].quantity_in_stock == 10

def test_snapshot_warns_about_unresolved_references():
    snapshot = snapshot_from_data(RAW_SNAPSHOT)
    assert len(snapshot.warnings) == 1
    assert "ghost" in snapshot.warnings[0]

def test_snapshot_missing_quantity_is_kept_as_none():
    snapshot = snapshot_from_data({
        "parts": [{"id": "p1", "name": "Bracket"}],
        "assemblies": [{"id": "a1", "name": "Frame", "bom_items": [{"part_id": "p1"}]}],
    })
    assert snapshot.assemblies[0].bom_items[0].quantity_required is None

def test_snapshot_from_data_invalid_raises():
    with pytest.raises(SnapshotError):
        snapshot_from_data({"parts": [{"name": "no id"}]})

def test_find_assembly_by_id_and_name():
    snapshot = snapshot_from_data(RAW_SNAPSHOT)
    assert snapshot.find_assembly("a1").name == "Frame"
    assert snapshot.find_assembly("  frame ").id == "a1"
    assert snapshot.find_assembly("missing") is None

def test_find_purchase_order_by_number():
    snapshot = snapshot_from_data(RAW_SNAPSHOT)
    assert snapshot.find_purchase_order("po-0001").id == "po1"
    assert snapshot.find_purchase_order("po1").order_number == "PO-0001"
    assert snapshot.find_purchase_order("PO-9999") is None

def test_resolve_part():
    index = snapshot_from_data(RAW_SNAPSHOT).parts
    assert resolve_part(BomLineRecord(part_id="p1"), index).name == "Bracket"
    populated = BomLineRecord(part_id=PartRecord(id="new", name="New Part"))
    assert resolve_part(populated, index).name == "New Part"
    assert resolve_part(BomLineRecord(part_id="nope"), index) is None


# --- File handling ---

def test_load_snapshot_from_file(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(RAW_SNAPSHOT), encoding="utf-8")

    snapshot = load_snapshot_from_file(path)

    assert len(snapshot.assemblies) == 1
    assert len(snapshot.purchase_orders) == 1

def test_load_snapshot_missing_file(tmp_path):
    with pytest.raises(SnapshotError) as excinfo:
        load_snapshot_from_file(tmp_path / "missing.json")
    assert "not found" in str(excinfo.value)

@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"parts": [{"id": "p1", "quantity_in_stock": "lots"}]}'])
def test_load_snapshot_bad_content(tmp_path, content):
    path = tmp_path / "snapshot.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(SnapshotError):
        load_snapshot_from_file(path)

def test_saved_snapshot_loads_back(tmp_path):
    snapshot = snapshot_from_data(RAW_SNAPSHOT)
    snapshot.parts["p1"].quantity_in_stock = 7
    path = tmp_path / "out" / "snapshot.json"

    save_snapshot_to_file(snapshot, path)
    reloaded = load_snapshot_from_file(path)

    assert reloaded.parts["p1"].quantity_in_stock == 7
    assert reloaded.purchase_orders[0].status == OrderStatus.PARTIAL
    assert reloaded.assemblies[0].bom_items[1].part_id == "p9"


# --- Raw items ---

RAW_ITEM_SNAPSHOT = {
    "parts": [{"_id": "p1", "name": "Bracket", "part_id": "P0001", "quantity_in_stock": 3}],
    "raw_items": [
        {"_id": "ri1", "item_id": "RI000001", "name": "Steel sheet 2mm", "material_type": "steel", "quantity_in_stock": 12.5},
    ],
    "purchase_orders": [
        {
            "_id": "po7",
            "supplier_name": "Steel Supply",
            "order_number": "PO-0007",
            "items": [
                {"_id": "r1", "raw_item_id": "ri1", "quantity_ordered": 20, "unit_cost": 3.0},
                {"_id": "r2", "raw_item_id": {"_id": "ri2", "name": "Copper wire", "unit": "M"}, "quantity_ordered": 100},
                {"_id": "r3", "raw_item_id": "lost", "quantity_ordered": 1},
            ],
        },
    ],
}

def test_snapshot_reads_raw_items():
    snapshot = snapshot_from_data(RAW_ITEM_SNAPSHOT)

    sheet = snapshot.raw_items["ri1"]
    assert sheet.item_code == "RI000001"
    assert sheet.unit == "KG"
    assert sheet.min_stock_level == 10
    assert snapshot.raw_items["ri2"].unit == "M"
    lines = snapshot.purchase_orders[0].lines
    assert [line.raw_item_id for line in lines] == ["ri1", "ri2", "lost"]
    assert all(line.part_id is None and line.is_raw_item for line in lines)

def test_snapshot_warns_about_unresolved_raw_items():
    snapshot = snapshot_from_data(RAW_ITEM_SNAPSHOT)
    assert len(snapshot.warnings) == 1
    assert "raw item reference 'lost'" in snapshot.warnings[0]

@pytest.mark.parametrize("line", [
    {"_id": "x", "quantity_ordered": 1},
    {"_id": "x", "part_id": "p1", "raw_item_id": "ri1", "quantity_ordered": 1},
])
def test_order_line_must_reference_one_item(line):
    with pytest.raises(SnapshotError) as excinfo:
        snapshot_from_data({"purchase_orders": [{"_id": "po", "supplier_name": "S", "items": [line]}]})
    assert "exactly one of part_id or raw_item_id" in str(excinfo.value)

@pytest.mark.parametrize("data", [
    {"parts": [{"id": "p1", "cost_per_unit": -1}]},
    {"parts": [{"id": "p1", "quantity_in_stock": -3}]},
    {"raw_items": [{"id": "r1", "cost_per_unit": -0.5}]},
    {"purchase_orders": [{"_id": "po", "supplier_name": "S", "items": [
        {"_id": "l1", "part_id": "p1", "quantity_ordered": 4, "unit_cost": -1},
    ]}]},
])
def test_negative_stock_and_prices_are_rejected(data):
    with pytest.raises(SnapshotError):
        snapshot_from_data(data)

def test_find_stock_item():
    snapshot = snapshot_from_data(RAW_ITEM_SNAPSHOT)
    assert snapshot.find_stock_item("p1").name == "Bracket"
    assert snapshot.find_stock_item("ri1").name == "Steel sheet 2mm"
    assert snapshot.find_stock_item("p0001").id == "p1"
    assert snapshot.find_stock_item("RI000001").id == "ri1"
    assert snapshot.find_stock_item(" copper WIRE ").id == "ri2"
    assert snapshot.find_stock_item("nothing") is None


def test_saved_snapshot_keeps_raw_items_and_receipts(tmp_path):
    snapshot = snapshot_from_data(RAW_ITEM_SNAPSHOT)
    order = snapshot.purchase_orders[0]
    receive_items(
        order,
        [ReceiptRequest("r1", 5, condition="partial_damage", notes="Bent corner")],
        raw_items_index=snapshot.raw_items,
        received_date=datetime(2024, 6, 1, 8, 0),
        receiver_name="Sam",
        receipt_number="RCP000003",
    )
    path = tmp_path / "snapshot.json"

    save_snapshot_to_file(snapshot, path)
    reloaded = load_snapshot_from_file(path)

    assert reloaded.raw_items["ri1"].quantity_in_stock == 17.5
    assert reloaded.raw_items["ri1"].last_restocked is not None
    line = reloaded.purchase_orders[0].lines[0]
    assert line.raw_item_id == "ri1"
    assert line.part_id is None
    assert line.quantity_received == 5
    receipt = reloaded.purchase_orders[0].receipts[0]
    assert receipt.receipt_number == "RCP000003"
    assert receipt.receiver_name == "Sam"
    assert receipt.received_date == datetime(2024, 6, 1, 8, 0)
    assert receipt.items[0].condition == "partial_damage"
    assert receipt.items[0].is_raw_item
    assert receipt.total_items_received == 5
