"""
Controls registry: audit controls, the rules they cover and, through
those rules, the DRs they cover.

Design Decisions:
- Control definitions are static; covered_dr_ids is derived from rule
  traceability when the registry is first read
- Construction is guarded by a lock, first writer wins, and the result is
  an immutable tuple shared by all readers
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from .traceability import get_rule_traceability

logger = logging.getLogger(__name__)


class ControlType(str, Enum):
    PREVENTIVE = "preventive"
    DETECTIVE = "detective"


@dataclass(frozen=True)
class ControlDefinition:
    control_id: str
    control_name: str
    control_type: ControlType
    description: str
    covered_rule_ids: tuple[str, ...]


@dataclass(frozen=True)
class ControlEntry:
    """A control with its derived DR coverage."""
    control_id: str
    control_name: str
    control_type: ControlType
    description: str
    covered_rule_ids: tuple[str, ...]
    covered_dr_ids: tuple[str, ...]


def _rules(*numbers: int) -> tuple[str, ...]:
    return tuple(f"UAE-UC1-CHK-{n:03d}" for n in numbers)


_P, _D = ControlType.PREVENTIVE, ControlType.DETECTIVE

CONTROL_DEFINITIONS: tuple[ControlDefinition, ...] = (
    # Preventive
    ControlDefinition("CTRL-001", "Header Mandatory Fields Gate", _P,
                      "Blocks invoice submission when mandatory header identifiers are missing",
                      _rules(1, 2, 4, 5)),
    ControlDefinition("CTRL-002", "Date Format Enforcement", _P,
                      "Ensures all dates conform to ISO 8601 YYYY-MM-DD format before processing",
                      _rules(3)),
    ControlDefinition("CTRL-003", "Currency Code Validation", _P,
                      "Validates currency codes against ISO 4217 and enforces AED tax accounting",
                      _rules(6, 7, 8)),
    ControlDefinition("CTRL-004", "Seller Identity Verification", _P,
                      "Ensures seller name, TRN, electronic address and address are complete and valid",
                      _rules(12, 13, 14, 15)),
    ControlDefinition("CTRL-005", "Buyer Identity Verification", _P,
                      "Ensures buyer name, TRN format, electronic address and address are valid",
                      _rules(17, 18, 19, 20)),
    ControlDefinition("CTRL-006", "UAE Subdivision Code Gate", _P,
                      "Validates emirate codes against the official UAE code list",
                      _rules(16)),
    ControlDefinition("CTRL-007", "ASP Metadata Enforcement", _P,
                      "Validates ASP-derived fields: specification ID and business process type",
                      _rules(10, 11)),
    # Transaction type is checked as part of the mandatory header fields
    ControlDefinition("CTRL-008", "Transaction Type Code Validation", _P,
                      "Validates BTUAE-02 transaction type code format and presence",
                      _rules(4)),
    # Detective
    ControlDefinition("CTRL-009", "Invoice Totals Reconciliation", _D,
                      "Detects mismatches between line sums and header totals",
                      _rules(21, 25, 29)),
    ControlDefinition("CTRL-010", "Decimal Precision Audit", _D,
                      "Detects monetary amounts exceeding 2 decimal places",
                      _rules(22, 23, 24, 26)),
    ControlDefinition("CTRL-011", "Tax Calculation Verification", _D,
                      "Verifies tax category amounts match taxable base x rate",
                      _rules(27, 28)),
    ControlDefinition("CTRL-012", "Line Item Completeness Check", _D,
                      "Ensures every invoice has at least one line and each line has identifiers and quantities",
                      _rules(30, 31, 32, 33)),
    ControlDefinition("CTRL-013", "Line Net Amount Reconciliation", _D,
                      "Validates line net amount = (quantity x unit price) - discounts",
                      _rules(34)),
    ControlDefinition("CTRL-014", "Payment Terms Consistency", _D,
                      "Ensures payment due date is present when amount due > 0 and is not before issue date",
                      _rules(9)),
)

_lock = threading.Lock()
_controls: tuple[ControlEntry, ...] | None = None


def _build_controls_registry() -> tuple[ControlEntry, ...]:
    rule_drs = {entry.rule_id: entry.affected_dr_ids for entry in get_rule_traceability()}
    controls = []
    for definition in CONTROL_DEFINITIONS:
        dr_ids: set[str] = set()
        for rule_id in definition.covered_rule_ids:
            dr_ids.update(rule_drs.get(rule_id, ()))
        controls.append(ControlEntry(
            control_id=definition.control_id,
            control_name=definition.control_name,
            control_type=definition.control_type,
            description=definition.description,
            covered_rule_ids=definition.covered_rule_ids,
            covered_dr_ids=tuple(sorted(dr_ids)),
        ))
    return tuple(controls)


def get_controls_registry() -> tuple[ControlEntry, ...]:
    """All controls with derived DR coverage, built once."""
    global _controls
    if _controls is None:
        with _lock:
            if _controls is None:
                _controls = _build_controls_registry()
                logger.info(f"Controls registry built: {len(_controls)} controls")
    return _controls


def _reset_registry_cache() -> None:
    """Drop the cached registry; tests only."""
    global _controls
    with _lock:
        _controls = None


def get_controls_for_dr(dr_id: str) -> list[ControlEntry]:
    return [control for control in get_controls_registry() if dr_id in control.covered_dr_ids]


def get_controls_for_rule(rule_id: str) -> list[ControlEntry]:
    return [control for control in get_controls_registry() if rule_id in control.covered_rule_ids]


def get_drs_with_controls() -> frozenset[str]:
    return frozenset(dr_id for control in get_controls_registry() for dr_id in control.covered_dr_ids)
