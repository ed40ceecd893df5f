import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple
from typing_extensions import Annotated

from .api_client import ApiClient
from .calculator import BuildCalculator
from .config import AppConfig, ConfigError, load_presets_file_path
from .models import BatchSelection, InventoryValidationError, Part, ReceiptRequest, TransactionType
from .presets_manager import (
    BatchPreset,
    BatchPresetItem,
    add_or_update_preset,
    get_preset_by_name,
    load_presets_from_file,
    save_presets_to_file,
)
from .receiving import cancel_order, completion_percentage, next_receipt_number, order_total, outstanding_orders, receive_items
from .snapshot import InventorySnapshot, SnapshotError, load_snapshot_from_file, save_snapshot_to_file
from .stock import SCRAP_REASONS, apply_stock_operation, build_assembly, low_stock_items, scrap_part, stock_status

app = typer.Typer(help="Assembly Stock Calculator CLI")
console = Console()

SnapshotOption = Annotated[
    Optional[Path],
    typer.Option("--snapshot", "-s", help="JSON snapshot file to use instead of the inventory API."),
]
PresetsFileOption = Annotated[
    Optional[Path],
    typer.Option("--presets-file", help="JSON file holding saved batch presets. Defaults to PRESETS_FILE_PATH or presets.json."),
]
WriteOption = Annotated[bool, typer.Option("--write", help="Save the updated snapshot back to the snapshot file.")]


def fail(message: str, title: str = "Error") -> None:
    console.print(f"[bold red]{title}:[/bold red] {escape(message)}")
    raise typer.Exit(code=1)


def parse_quantity_pairs(pairs: List[str], what: str, allow_zero: bool = False) -> List[Tuple[str, float]]:
    """Parses 'IDENTIFIER:QUANTITY' strings. Quantities must be positive, or non-negative with `allow_zero`."""
    parsed: List[Tuple[str, float]] = []
    for pair in pairs:
        if ":" not in pair:
            fail(f"Invalid format for {what} '{pair}'. Expected format: IDENTIFIER:QUANTITY")
        identifier, quantity_str = pair.rsplit(":", 1)
        identifier = identifier.strip()
        try:
            quantity = float(quantity_str)
        except ValueError:
            fail(f"Invalid quantity for {what} '{identifier}'. '{quantity_str}' is not a valid number.")
        if not identifier:
            fail(f"Missing identifier in '{pair}'.")
        if quantity < 0 or (quantity == 0 and not allow_zero):
            fail(f"Quantity for {what} '{identifier}' must be {'non-negative' if allow_zero else 'positive'}.")
        parsed.append((identifier, quantity))
    return parsed


def load_inventory(snapshot_path: Optional[Path]) -> InventorySnapshot:
    """Loads the snapshot from a file, or from the inventory API when no file is given."""
    if snapshot_path is not None:
        console.print(f"Loading snapshot from {snapshot_path}...")
        snapshot = load_snapshot_from_file(snapshot_path)
        warnings = snapshot.warnings
    else:
        console.print("Loading configuration...")
        config = AppConfig.load()
        api_client = ApiClient(url=config.inventory_api_url, token=config.inventory_api_token, timeout=config.request_timeout)
        console.print(f"Fetching inventory from {config.inventory_api_url}...")
        snapshot, warnings = api_client.get_snapshot()
        if snapshot is None:
            for warning in warnings:
                console.print(f"[yellow]{escape(warning)}[/yellow]")
            raise SnapshotError("Could not fetch inventory data from the API.")
    for warning in warnings:
        console.print(f"[bold yellow]Warning:[/bold yellow] {escape(warning)}")
    return snapshot


def resolve_presets_file(presets_file: Optional[Path]) -> Path:
    return presets_file if presets_file is not None else load_presets_file_path()


def require_snapshot_for_write(write: bool, snapshot: Optional[Path]) -> None:
    if write and snapshot is None:
        fail("--write needs --snapshot; API data is never written back.")


def write_back(inventory: InventorySnapshot, snapshot: Optional[Path], write: bool) -> None:
    if write:
        save_snapshot_to_file(inventory, snapshot)
        console.print(f"Snapshot written to {snapshot}.")
    elif snapshot is None:
        console.print("[italic]Results were not written back to the inventory API.[/italic]")


def run_guarded(action) -> None:
    """Runs a command body, turning known errors into a red message and exit code 1."""
    try:
        action()
    except typer.Exit:
        raise
    except ConfigError as e:
        fail(str(e), title="Configuration Error")
    except SnapshotError as e:
        fail(str(e), title="Snapshot Error")
    except InventoryValidationError as e:
        fail(str(e), title="Validation Error")


def _fmt(value: float) -> str:
    return f"{value:.2f}"


@app.command()
def check(
    assembly: Annotated[str, typer.Argument(help="Assembly id or name.")],
    quantity: Annotated[float, typer.Option("--quantity", "-q", help="Number of assemblies to build.")] = 1,
    snapshot: SnapshotOption = None,
):
    """
    Shows per-line stock availability of one assembly for a build quantity.
    """
    def action():
        if quantity <= 0:
            fail("Quantity must be positive.")
        inventory = load_inventory(snapshot)
        target = inventory.find_assembly(assembly)
        if target is None:
            fail(f"Assembly '{assembly}' not found.")
        calculator = BuildCalculator(inventory.parts)
        results = calculator.check_assembly_availability(target, quantity)

        table = Table(title=f"BOM Availability: {target.name} x {quantity:g}", show_header=True, header_style="bold magenta")
        table.add_column("Part ID", justify="right")
        table.add_column("Part Name", style="dim", width=30)
        table.add_column("Required", justify="right")
        table.add_column("Available", justify="right")
        table.add_column("Shortage", justify="right", style="bold red")
        table.add_column("Status", justify="center")
        for result in results:
            part = inventory.parts.get(result.part_id)
            table.add_row(
                result.part_id,
                part.name if part else "N/A",
                _fmt(result.required),
                _fmt(result.available),
                _fmt(result.shortage),
                "[green]OK[/green]" if result.can_build else "[red]SHORT[/red]",
            )
            for warning in result.warnings:
                console.print(f"[bold yellow]Warning:[/bold yellow] {escape(warning)}")
        if results:
            console.print(table)
        else:
            console.print(f"[yellow]Assembly '{target.name}' has no BOM.[/yellow]")
        console.print(f"Max buildable from current stock: [bold]{calculator.max_buildable(target)}[/bold]")
    run_guarded(action)


@app.command()
def max_buildable(
    include_inactive: Annotated[bool, typer.Option("--include-inactive", help="Also list inactive assemblies.")] = False,
    snapshot: SnapshotOption = None,
):
    """
    Lists how many units of each assembly current stock can build on its own.
    """
    def action():
        inventory = load_inventory(snapshot)
        calculator = BuildCalculator(inventory.parts)
        assemblies = [a for a in inventory.assemblies if include_inactive or a.is_active]
        if not assemblies:
            console.print("[yellow]No assemblies found.[/yellow]")
            return
        table = Table(title="Max Buildable per Assembly", show_header=True, header_style="bold cyan")
        table.add_column("Assembly ID", justify="right")
        table.add_column("Assembly Name", style="dim", width=30)
        table.add_column("BOM Lines", justify="right")
        table.add_column("Ready Built", justify="right")
        table.add_column("Max Buildable", justify="right", style="bold blue")
        for target in sorted(assemblies, key=lambda a: a.name):
            table.add_row(
                target.id,
                target.name,
                str(len(target.bom_items)),
                f"{target.ready_built:g}",
                str(calculator.max_buildable(target)),
            )
        console.print(table)
    run_guarded(action)


@app.command()
def batch(
    assemblies: Annotated[Optional[List[str]], typer.Argument(help="Assemblies to build together in format ASSEMBLY:QUANTITY")] = None,
    preset: Annotated[Optional[str], typer.Option("--preset", "-p", help="Add the selections of a saved preset.")] = None,
    save_preset: Annotated[Optional[str], typer.Option("--save-preset", help="Save the selection under this preset name.")] = None,
    presets_file: PresetsFileOption = None,
    snapshot: SnapshotOption = None,
):
    """
    Analyzes several assemblies built together against the shared part stock.

    A quantity of 0 keeps an assembly in the selection without drawing on stock.
    """
    def action():
        pairs = parse_quantity_pairs(assemblies or [], "assembly", allow_zero=True)
        presets_path = resolve_presets_file(presets_file) if preset or save_preset else None
        presets_data = None
        if preset:
            presets_data = load_presets_from_file(presets_path)
            saved = get_preset_by_name(presets_data, preset)
            if saved is None:
                fail(f"Preset '{preset}' not found in {presets_path}.")
            pairs.extend((item.assembly_id, item.quantity) for item in saved.items)
        if not pairs:
            console.print("[bold yellow]Warning:[/bold yellow] No assemblies provided.")
            raise typer.Exit()

        inventory = load_inventory(snapshot)
        selections = []
        for identifier, quantity in pairs:
            target = inventory.find_assembly(identifier)
            if target is None:
                fail(f"Assembly '{identifier}' not found.")
            selections.append(BatchSelection(assembly=target, quantity=quantity))

        console.print(f"Analyzing batch: {', '.join(f'{s.assembly.name}:{s.quantity:g}' for s in selections)}")
        analysis = BuildCalculator(inventory.parts).analyze_batch(selections)
        render_batch_analysis(analysis)

        if save_preset:
            new_preset = BatchPreset(
                name=save_preset,
                items=[BatchPresetItem(assembly_id=s.assembly.id, quantity=s.quantity) for s in selections if s.quantity > 0],
            )
            presets_data = presets_data or load_presets_from_file(presets_path)
            save_presets_to_file(add_or_update_preset(presets_data, new_preset), presets_path)
            console.print(f"Saved preset '{save_preset}' to {presets_path}.")
    run_guarded(action)


def render_batch_analysis(analysis) -> None:
    for warning in analysis.warnings:
        console.print(f"[bold yellow]Warning:[/bold yellow] {escape(warning)}")

    if analysis.can_build_all:
        console.print("[bold green]All selected assemblies can be built from current stock.[/bold green]")
    else:
        console.print("[bold red]Stock does not cover the full batch.[/bold red]")
    console.print(
        f"Assemblies: {analysis.total_assemblies}  Part types: {analysis.total_part_types}  "
        f"Global constraint factor: {analysis.global_constraint_factor:.3f}"
    )

    if analysis.part_constraints:
        constraints_table = Table(title="Part Constraints", show_header=True, header_style="bold magenta")
        constraints_table.add_column("Part ID", justify="right")
        constraints_table.add_column("Part Name", style="dim", width=30)
        constraints_table.add_column("Available", justify="right")
        constraints_table.add_column("Total Required", justify="right")
        constraints_table.add_column("Constraint Factor", justify="right")
        for constraint in analysis.part_constraints:
            style = "red" if constraint.constraint_factor < 1 else "green"
            constraints_table.add_row(
                constraint.part_id,
                constraint.part_name,
                _fmt(constraint.available_stock),
                _fmt(constraint.total_required),
                f"[{style}]{constraint.constraint_factor:.3f}[/{style}]",
            )
        console.print(constraints_table)

    limits_table = Table(title="Max Buildable (Shared Stock)", show_header=True, header_style="bold cyan")
    limits_table.add_column("Assembly ID", justify="right")
    limits_table.add_column("Assembly Name", style="dim", width=30)
    limits_table.add_column("Requested", justify="right")
    limits_table.add_column("Max Buildable", justify="right", style="bold blue")
    limits_table.add_column("Limiting Part", style="dim")
    for limit in analysis.max_buildable_per_assembly:
        limits_table.add_row(
            limit.assembly_id,
            limit.assembly_name,
            f"{limit.requested_quantity:g}",
            str(limit.max_buildable),
            limit.limiting_part_id or "-",
        )
    console.print(limits_table)

    if analysis.insufficient_parts:
        shortage_table = Table(title="Insufficient Parts", show_header=True, header_style="bold red")
        shortage_table.add_column("Part ID", justify="right")
        shortage_table.add_column("Part Name", style="dim", width=30)
        shortage_table.add_column("Available", justify="right")
        shortage_table.add_column("Total Required", justify="right")
        shortage_table.add_column("Shortage", justify="right", style="bold red")
        shortage_table.add_column("Needed By", style="dim", width=30)
        for part in analysis.insufficient_parts:
            shortage_table.add_row(
                part.part_id,
                part.part_name,
                _fmt(part.available_stock),
                _fmt(part.total_required),
                _fmt(part.shortage),
                ", ".join(f"{d.assembly_name} ({d.quantity_needed:g})" for d in part.assemblies),
            )
        console.print(shortage_table)


@app.command()
def receive(
    order: Annotated[str, typer.Argument(help="Purchase order id or order number.")],
    items: Annotated[List[str], typer.Argument(help="Receipts in format LINE_ID:QUANTITY")],
    received_by: Annotated[str, typer.Option("--received-by", help="Name of the person booking the delivery.")] = "system",
    received_date: Annotated[Optional[datetime], typer.Option("--date", formats=["%Y-%m-%d"], help="Delivery date (YYYY-MM-DD). Defaults to now.")] = None,
    condition: Annotated[str, typer.Option("--condition", help="Condition of the delivered items: good, damaged or partial_damage.")] = "good",
    notes: Annotated[Optional[str], typer.Option("--notes", help="Delivery notes.")] = None,
    carrier: Annotated[Optional[str], typer.Option("--carrier", help="Carrier information.")] = None,
    write: WriteOption = False,
    snapshot: SnapshotOption = None,
):
    """
    Records received quantities against a purchase order and updates part and raw item stock.
    """
    def action():
        pairs = parse_quantity_pairs(items, "line")
        require_snapshot_for_write(write, snapshot)
        inventory = load_inventory(snapshot)
        purchase_order = inventory.find_purchase_order(order)
        if purchase_order is None:
            fail(f"Purchase order '{order}' not found.")

        requests = [
            ReceiptRequest(line_id=line_id, quantity_receiving=quantity, condition=condition)
            for line_id, quantity in pairs
        ]
        result = receive_items(
            purchase_order,
            requests,
            parts_index=inventory.parts,
            raw_items_index=inventory.raw_items,
            received_date=received_date,
            receiver_name=received_by,
            receipt_number=next_receipt_number(inventory.purchase_orders),
            delivery_notes=notes,
            carrier_info=carrier,
        )

        table = Table(title=f"Purchase Order {purchase_order.order_number or purchase_order.id}", show_header=True, header_style="bold magenta")
        table.add_column("Line ID", justify="right")
        table.add_column("Item", style="dim", width=30)
        table.add_column("Ordered", justify="right")
        table.add_column("Received", justify="right")
        table.add_column("Remaining", justify="right", style="bold")
        for line_result, line in zip(result.lines, purchase_order.lines):
            item = inventory.raw_items.get(line.raw_item_id) if line.is_raw_item else inventory.parts.get(line.part_id)
            table.add_row(
                line_result.line_id,
                item.name if item else line.item_id,
                _fmt(line_result.quantity_ordered),
                _fmt(line_result.quantity_received),
                _fmt(line_result.remaining),
            )
        console.print(table)
        receipt = result.receipt
        console.print(
            f"Receipt {receipt.receipt_number}: {receipt.total_items_received:g} item(s) received by "
            f"{escape(receipt.receiver_name)} on {receipt.received_date:%Y-%m-%d}"
        )
        console.print(
            f"Status: [bold]{result.status.value}[/bold]  Completion: [bold]{result.completion_percentage}%[/bold]  "
            f"Order total: {order_total(purchase_order):.2f}"
        )
        for transaction in result.stock_transactions:
            console.print(f"[dim]Stock {transaction.part_id}: {transaction.previous_stock:g} -> {transaction.new_stock:g}[/dim]")
        write_back(inventory, snapshot, write)
    run_guarded(action)


@app.command()
def cancel(
    order: Annotated[str, typer.Argument(help="Purchase order id or order number.")],
    write: WriteOption = False,
    snapshot: SnapshotOption = None,
):
    """
    Cancels a pending or partially received purchase order.
    """
    def action():
        require_snapshot_for_write(write, snapshot)
        inventory = load_inventory(snapshot)
        purchase_order = inventory.find_purchase_order(order)
        if purchase_order is None:
            fail(f"Purchase order '{order}' not found.")
        cancel_order(purchase_order)
        console.print(f"Purchase order {purchase_order.order_number or purchase_order.id} is now [bold]{purchase_order.status.value}[/bold].")
        write_back(inventory, snapshot, write)
    run_guarded(action)


@app.command()
def outstanding(snapshot: SnapshotOption = None):
    """
    Lists purchase orders still waiting on deliveries.
    """
    def action():
        inventory = load_inventory(snapshot)
        orders = outstanding_orders(inventory.purchase_orders)
        if not orders:
            console.print("[green]No outstanding purchase orders.[/green]")
            return
        table = Table(title="Outstanding Purchase Orders", show_header=True, header_style="bold cyan")
        table.add_column("Order", justify="right")
        table.add_column("Supplier", style="dim", width=30)
        table.add_column("Status")
        table.add_column("Lines", justify="right")
        table.add_column("Completion", justify="right")
        table.add_column("Order Total", justify="right")
        for purchase_order in orders:
            table.add_row(
                purchase_order.order_number or purchase_order.id,
                purchase_order.supplier_name,
                purchase_order.status.value,
                str(len(purchase_order.lines)),
                f"{completion_percentage(purchase_order)}%",
                _fmt(order_total(purchase_order)),
            )
        console.print(table)
    run_guarded(action)


def _find_stock_item_or_fail(inventory: InventorySnapshot, identifier: str):
    item = inventory.find_stock_item(identifier)
    if item is None:
        fail(f"Part or raw item '{identifier}' not found.")
    return item


@app.command()
def scrap(
    item: Annotated[str, typer.Argument(help="Part or raw item id, code or name.")],
    quantity: Annotated[float, typer.Argument(help="Quantity scrapped.")],
    reason: Annotated[str, typer.Option("--reason", "-r", help=f"One of: {', '.join(SCRAP_REASONS)}.")] = "other",
    notes: Annotated[Optional[str], typer.Option("--notes", help="Free-form notes.")] = None,
    write: WriteOption = False,
    snapshot: SnapshotOption = None,
):
    """
    Removes scrapped units of a part or raw item from stock.
    """
    def action():
        require_snapshot_for_write(write, snapshot)
        inventory = load_inventory(snapshot)
        target = _find_stock_item_or_fail(inventory, item)
        transaction = scrap_part(target, quantity, reason, notes=notes)
        console.print(
            f"Scrapped {quantity:g} {target.unit} of {escape(target.name)} ({reason}). "
            f"Stock: {transaction.previous_stock:g} -> {transaction.new_stock:g}  Value lost: {transaction.total_value:.2f}"
        )
        write_back(inventory, snapshot, write)
    run_guarded(action)


@app.command()
def withdraw(
    item: Annotated[str, typer.Argument(help="Part or raw item id, code or name.")],
    quantity: Annotated[float, typer.Argument(help="Quantity taken out of stock.")],
    reference: Annotated[Optional[str], typer.Option("--reference", help="Job or order the stock is withdrawn for.")] = None,
    write: WriteOption = False,
    snapshot: SnapshotOption = None,
):
    """
    Takes units of a part or raw item out of stock.
    """
    def action():
        require_snapshot_for_write(write, snapshot)
        inventory = load_inventory(snapshot)
        target = _find_stock_item_or_fail(inventory, item)
        transaction = apply_stock_operation(
            target, quantity, TransactionType.WITHDRAWAL, unit_price=target.cost_per_unit, reference=reference,
        )
        console.print(
            f"Withdrew {quantity:g} {target.unit} of {escape(target.name)}. "
            f"Stock: {transaction.previous_stock:g} -> {transaction.new_stock:g}"
        )
        write_back(inventory, snapshot, write)
    run_guarded(action)


@app.command()
def low_stock(snapshot: SnapshotOption = None):
    """
    Lists active parts and raw items at or below their minimum stock level.
    """
    def action():
        inventory = load_inventory(snapshot)
        parts = low_stock_items(inventory.parts.values())
        raw_items = low_stock_items(inventory.raw_items.values())
        if not parts and not raw_items:
            console.print("[green]No parts or raw items are at or below their minimum stock level.[/green]")
            return
        for title, items in (("Low Stock Parts", parts), ("Low Stock Raw Items", raw_items)):
            if not items:
                continue
            table = Table(title=title, show_header=True, header_style="bold red")
            table.add_column("ID", justify="right")
            table.add_column("Code", style="dim")
            table.add_column("Name", style="dim", width=30)
            table.add_column("In Stock", justify="right")
            table.add_column("Min Level", justify="right")
            table.add_column("Unit")
            table.add_column("Status")
            for stock_item in items:
                code = stock_item.part_code if isinstance(stock_item, Part) else stock_item.item_code
                table.add_row(
                    stock_item.id,
                    code or "-",
                    stock_item.name,
                    _fmt(stock_item.quantity_in_stock),
                    _fmt(stock_item.min_stock_level),
                    stock_item.unit,
                    stock_status(stock_item).value,
                )
            console.print(table)
    run_guarded(action)


@app.command()
def presets(presets_file: PresetsFileOption = None):
    """
    Lists saved batch presets.
    """
    presets_path = resolve_presets_file(presets_file)
    presets_data = load_presets_from_file(presets_path)
    if not presets_data.presets:
        console.print(f"[yellow]No presets saved in {presets_path}.[/yellow]")
        return
    table = Table(title="Batch Presets", show_header=True, header_style="bold cyan")
    table.add_column("Name")
    table.add_column("Assemblies")
    for saved in presets_data.presets:
        table.add_row(saved.name, ", ".join(f"{item.assembly_id}:{item.quantity:g}" for item in saved.items))
    console.print(table)


@app.command()
def build(
    assembly: Annotated[str, typer.Argument(help="Assembly id or name.")],
    quantity: Annotated[float, typer.Option("--quantity", "-q", help="Number of assemblies to build.")] = 1,
    write: WriteOption = False,
    snapshot: SnapshotOption = None,
):
    """
    Consumes BOM parts from stock to build an assembly (all lines or nothing).
    """
    def action():
        require_snapshot_for_write(write, snapshot)
        inventory = load_inventory(snapshot)
        target = inventory.find_assembly(assembly)
        if target is None:
            fail(f"Assembly '{assembly}' not found.")
        record = build_assembly(target, inventory.parts, quantity)

        table = Table(title=f"Parts Used: {target.name} x {quantity:g}", show_header=True, header_style="bold cyan")
        table.add_column("Part ID", justify="right")
        table.add_column("Part Name", style="dim", width=30)
        table.add_column("Consumed", justify="right")
        table.add_column("Previous Stock", justify="right")
        table.add_column("New Stock", justify="right")
        table.add_column("Cost", justify="right")
        for used in record.parts_used:
            table.add_row(
                used.part_id,
                used.part_name,
                _fmt(used.quantity_consumed),
                _fmt(used.previous_stock),
                _fmt(used.new_stock),
                _fmt(used.total_cost),
            )
        console.print(table)
        console.print(
            f"Total parts cost: {record.total_parts_cost:.2f}  Cost per unit: {record.cost_per_unit:.2f}  "
            f"Ready built: {target.ready_built:g}"
        )
        write_back(inventory, snapshot, write)
    run_guarded(action)
