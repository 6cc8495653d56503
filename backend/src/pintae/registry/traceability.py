"""
Rule traceability: which Data Requirements each pack rule affects.

Pure metadata derived from the check pack's pint_reference_terms; it never
changes how a rule executes.
"""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from pintae.domain.check_pack import UAE_UC1_CHECK_PACK
from pintae.domain.rules import Rule
from .dr_registry import get_dr_entry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleTraceEntry:
    rule_id: str
    rule_name: str
    affected_dr_ids: frozenset[str]
    severity: str
    scope: str
    applies_when: str | None = None


@dataclass(frozen=True)
class DRRuleTrace:
    """Rules linked to one DR, by reference term or by the field they check."""
    dr_id: str
    business_term: str
    linked_check_ids: tuple[str, ...]
    linked_check_names: tuple[str, ...]


_lock = threading.Lock()
_trace: tuple[RuleTraceEntry, ...] | None = None


def build_rule_traceability(rules: Iterable[Rule] = UAE_UC1_CHECK_PACK) -> tuple[RuleTraceEntry, ...]:
    return tuple(
        RuleTraceEntry(
            rule_id=rule.check_id,
            rule_name=rule.name,
            affected_dr_ids=frozenset(rule.pint_reference_terms),
            severity=rule.severity.value,
            scope=rule.dataset.value,
            applies_when=rule.use_case,
        )
        for rule in rules
    )


def get_rule_traceability() -> tuple[RuleTraceEntry, ...]:
    """
    The pack's traceability entries, built on first use.

    Construction is guarded so concurrent first readers build it once.
    """
    global _trace
    if _trace is None:
        with _lock:
            if _trace is None:
                _trace = build_rule_traceability()
                logger.info(f"Rule traceability built: {len(_trace)} rules")
    return _trace


def get_rules_for_dr(dr_id: str) -> list[RuleTraceEntry]:
    return [entry for entry in get_rule_traceability() if dr_id in entry.affected_dr_ids]


def get_drs_with_rules() -> frozenset[str]:
    return frozenset(dr_id for entry in get_rule_traceability() for dr_id in entry.affected_dr_ids)


def get_drs_without_rules(all_dr_ids: Iterable[str]) -> list[str]:
    """DR ids, in input order, that no rule references."""
    with_rules = get_drs_with_rules()
    return [dr_id for dr_id in all_dr_ids if dr_id not in with_rules]


def _checked_field(rule: Rule) -> str | None:
    return rule.field or getattr(rule.predicate, "field", None)


def get_dr_rule_traceability(dr_id: str) -> DRRuleTrace | None:
    """
    Pack rules linked to a registry DR.

    A rule is linked when it lists the DR in its reference terms or when it
    checks one of the DR's template columns.

    Returns:
        None when the DR is not in the registry
    """
    entry = get_dr_entry(dr_id)
    if entry is None:
        return None
    linked = [
        rule for rule in UAE_UC1_CHECK_PACK
        if dr_id in rule.pint_reference_terms or _checked_field(rule) in entry.columns
    ]
    return DRRuleTrace(
        dr_id=dr_id,
        business_term=entry.business_term,
        linked_check_ids=tuple(rule.check_id for rule in linked),
        linked_check_names=tuple(rule.name for rule in linked),
    )
