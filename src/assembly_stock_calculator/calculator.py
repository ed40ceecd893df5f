# Module: src/assembly_stock_calculator/calculator.py
# Description: Contains the core buildability logic: per-line availability,
# max-buildable per assembly and the combined batch-build analysis.

import logging
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, List, Optional, Tuple

from .models import (
    Assembly,
    AssemblyBuildLimit,
    AssemblyDemand,
    AvailabilityResult,
    BatchAnalysis,
    BatchSelection,
    BomLine,
    BomValidationError,
    InsufficientPart,
    InventoryValidationError,
    Part,
    PartConstraint,
    PartsIndex,
)

# Setup logger
logger = logging.getLogger(__name__)


def to_decimal(value: float) -> Decimal:
    """Converts a float quantity to Decimal through its shortest repr so 0.1 stays 0.1."""
    return Decimal(str(value))


def floor_div(numerator: Decimal, denominator: Decimal) -> int:
    return int((numerator / denominator).to_integral_value(rounding=ROUND_FLOOR))


class BuildCalculator:
    """
    Calculates what can be built from a point-in-time parts snapshot.

    All methods are pure with respect to the snapshot: stock levels are read, never written.
    """

    def __init__(self, parts_index: PartsIndex):
        """
        Initializes the BuildCalculator.

        Args:
            parts_index: Parts of the snapshot keyed by part id.
        """
        self.parts_index = parts_index

    def _available_stock(self, part_id: str, context: str, warnings: Optional[List[str]] = None) -> Tuple[Optional[Part], float]:
        """Returns the part and its stock; an unresolved part counts as 0 in stock and is logged, and collected into `warnings` when given."""
        part = self.parts_index.get(part_id)
        if part is None:
            warning_msg = f"{context}: part '{part_id}' could not be resolved. Treating available stock as 0."
            logger.warning(warning_msg)
            if warnings is not None:
                warnings.append(warning_msg)
            return None, 0.0
        return part, max(0.0, part.quantity_in_stock)

    def _part_name(self, part_id: str) -> str:
        part = self.parts_index.get(part_id)
        return part.name if part else f"UNKNOWN_PART_{part_id}"

    @staticmethod
    def _require_quantity(line: BomLine, context: str) -> float:
        if line.quantity_required is None:
            raise BomValidationError(f"{context}: BOM line for part '{line.part_id}' is missing its required quantity.")
        return line.quantity_required

    def check_line_availability(self, line: BomLine, multiplier: float = 1) -> AvailabilityResult:
        """
        Checks whether stock covers one BOM line for `multiplier` assemblies.

        Raises:
            BomValidationError: if the line has no required quantity.
            InventoryValidationError: if the multiplier is negative.
        """
        if multiplier < 0:
            raise InventoryValidationError(f"Build multiplier must not be negative, got {multiplier}.")
        warnings: List[str] = []
        quantity_required = self._require_quantity(line, "Availability check")
        _, available = self._available_stock(line.part_id, "Availability check", warnings)

        if quantity_required <= 0:
            warning_msg = (f"BOM line for part '{line.part_id}' has non-positive quantity_required "
                           f"({quantity_required}). Treating it as not buildable.")
            logger.warning(warning_msg)
            warnings.append(warning_msg)
            return AvailabilityResult(part_id=line.part_id, required=0.0, available=available,
                                      can_build=False, shortage=0.0, warnings=warnings)

        required = float(to_decimal(quantity_required) * to_decimal(multiplier))
        shortage = float(max(Decimal(0), to_decimal(required) - to_decimal(available)))
        result = AvailabilityResult(
            part_id=line.part_id,
            required=required,
            available=available,
            can_build=available >= required,
            shortage=shortage,
            warnings=warnings,
        )
        logger.debug(f"Availability for part {line.part_id}: required={required:.2f}, available={available:.2f}, shortage={shortage:.2f}")
        return result

    def check_assembly_availability(self, assembly: Assembly, multiplier: float = 1) -> List[AvailabilityResult]:
        """Availability of every BOM line of `assembly`, in BOM order."""
        return [self.check_line_availability(line, multiplier) for line in assembly.bom_items]

    def max_buildable(self, assembly: Assembly) -> int:
        """
        Largest whole number of `assembly` units buildable from current stock alone.

        An empty BOM or any line with a non-positive quantity yields 0.
        """
        if not assembly.bom_items:
            logger.info(f"Assembly '{assembly.name}' has no BOM. Max buildable is 0.")
            return 0

        possible_counts = []
        for line in assembly.bom_items:
            quantity_required = self._require_quantity(line, f"Assembly '{assembly.name}'")
            if quantity_required <= 0:
                logger.warning(
                    f"Assembly '{assembly.name}': BOM line for part '{line.part_id}' has non-positive "
                    f"quantity_required ({quantity_required}). Max buildable is 0."
                )
                return 0
            _, available = self._available_stock(line.part_id, f"Assembly '{assembly.name}'")
            possible_counts.append(floor_div(to_decimal(available), to_decimal(quantity_required)))

        result = min(possible_counts)
        logger.debug(f"Max buildable for assembly '{assembly.name}' (ID: {assembly.id}): {result}")
        return result

    @staticmethod
    def _merge_selections(selections: List[BatchSelection]) -> List[BatchSelection]:
        """Combines repeated selections of the same assembly, keeping first-seen order."""
        merged: Dict[str, BatchSelection] = {}
        for selection in selections:
            if selection.quantity < 0:
                raise InventoryValidationError(
                    f"Requested quantity for assembly '{selection.assembly.name}' must not be negative, "
                    f"got {selection.quantity}."
                )
            existing = merged.get(selection.assembly.id)
            if existing is None:
                merged[selection.assembly.id] = BatchSelection(assembly=selection.assembly, quantity=selection.quantity)
            else:
                existing.quantity += selection.quantity
        return list(merged.values())

    def analyze_batch(self, selections: List[BatchSelection]) -> BatchAnalysis:
        """
        Analyzes several assemblies built together against the shared parts pool.

        Demand of every selected assembly is aggregated per part first, so one
        assembly's consumption is reflected in what the others can build.
        """
        logger.info("Starting batch build analysis...")
        analysis = BatchAnalysis()

        # (assembly_id, part_id) -> per-unit requirement of that part for that assembly
        per_unit: Dict[Tuple[str, str], Decimal] = {}
        total_required: Dict[str, Decimal] = {}
        active: List[BatchSelection] = []
        blocked_assemblies = set()

        # 1. Aggregate demand across the whole selection
        for selection in self._merge_selections(selections):
            assembly = selection.assembly
            if selection.quantity == 0:
                logger.debug(f"Skipping assembly '{assembly.name}' with zero requested quantity.")
                continue
            active.append(selection)
            requested = to_decimal(selection.quantity)

            if not assembly.bom_items:
                warning_msg = f"Assembly '{assembly.name}' has no BOM. It cannot be built."
                logger.warning(warning_msg)
                analysis.warnings.append(warning_msg)
                blocked_assemblies.add(assembly.id)
                continue

            for line in assembly.bom_items:
                quantity_required = self._require_quantity(line, f"Assembly '{assembly.name}'")
                if quantity_required <= 0:
                    warning_msg = (f"Assembly '{assembly.name}': BOM line for part '{line.part_id}' has non-positive "
                                   f"quantity_required ({quantity_required}). The assembly cannot be built.")
                    logger.warning(warning_msg)
                    analysis.warnings.append(warning_msg)
                    blocked_assemblies.add(assembly.id)
                    continue
                key = (assembly.id, line.part_id)
                per_unit[key] = per_unit.get(key, Decimal(0)) + to_decimal(quantity_required)
                total_required[line.part_id] = (
                    total_required.get(line.part_id, Decimal(0)) + to_decimal(quantity_required) * requested
                )

        # 2. Constraint factor per part with nonzero demand
        available: Dict[str, Decimal] = {}
        factors: Dict[str, Decimal] = {}
        for part_id, required in total_required.items():
            _, stock = self._available_stock(part_id, "Batch analysis", analysis.warnings)
            available[part_id] = to_decimal(stock)
            factors[part_id] = available[part_id] / required
            analysis.part_constraints.append(PartConstraint(
                part_id=part_id,
                part_name=self._part_name(part_id),
                available_stock=stock,
                total_required=float(required),
                constraint_factor=float(factors[part_id]),
            ))
        analysis.part_constraints.sort(key=lambda c: (c.constraint_factor, c.part_name))

        # 3. Global factor, clamped to 1 when stock covers everything
        if factors:
            analysis.global_constraint_factor = float(min(Decimal(1), min(factors.values())))
        else:
            analysis.global_constraint_factor = 1.0

        # 4. Adjusted max per assembly by proportional-by-demand allocation
        for selection in active:
            assembly = selection.assembly
            requested = to_decimal(selection.quantity)
            limit = AssemblyBuildLimit(
                assembly_id=assembly.id,
                assembly_name=assembly.name,
                requested_quantity=selection.quantity,
                max_buildable=0,
            )
            if assembly.id not in blocked_assemblies:
                best: Optional[int] = None
                for (assembly_id, part_id), unit_requirement in per_unit.items():
                    if assembly_id != assembly.id:
                        continue
                    demand = unit_requirement * requested
                    allocated = available[part_id] * demand / total_required[part_id]
                    units = floor_div(allocated, unit_requirement)
                    if best is None or units < best:
                        best = units
                        limit.limiting_part_id = part_id
                limit.max_buildable = best if best is not None else 0
            analysis.max_buildable_per_assembly.append(limit)
            logger.debug(f"Adjusted max buildable for '{assembly.name}': {limit.max_buildable} (requested {selection.quantity})")

        # 5. Parts whose combined demand exceeds stock
        for part_id, required in total_required.items():
            if available[part_id] >= required:
                continue
            insufficient = InsufficientPart(
                part_id=part_id,
                part_name=self._part_name(part_id),
                available_stock=float(available[part_id]),
                total_required=float(required),
                shortage=float(required - available[part_id]),
            )
            for selection in active:
                unit_requirement = per_unit.get((selection.assembly.id, part_id))
                if unit_requirement is None:
                    continue
                insufficient.assemblies.append(AssemblyDemand(
                    assembly_id=selection.assembly.id,
                    assembly_name=selection.assembly.name,
                    quantity_needed=float(unit_requirement * to_decimal(selection.quantity)),
                ))
            analysis.insufficient_parts.append(insufficient)
        analysis.insufficient_parts.sort(key=lambda p: (-p.shortage, p.part_name))

        analysis.can_build_all = not analysis.insufficient_parts
        analysis.total_assemblies = len(active)
        analysis.total_part_types = len(total_required)

        logger.info(
            f"Batch analysis complete. Assemblies: {analysis.total_assemblies}, part types: {analysis.total_part_types}, "
            f"insufficient parts: {len(analysis.insufficient_parts)}, global factor: {analysis.global_constraint_factor:.3f}"
        )
        return analysis
