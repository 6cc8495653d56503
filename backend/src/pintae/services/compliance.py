"""
Compliance run orchestration.

Runs every check family over one dataset: built-in checks, the PINT-AE
check pack, custom checks and the organization profile alignment. Keeps
the AR and AP datasets apart so that a run over one never sees the
other's rows.
"""

import logging
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal

from pintae.config import Settings, get_settings
from pintae.domain.builtin_checks import BUILTIN_CHECKS
from pintae.domain.check_pack import UAE_UC1_CHECK_PACK, enabled_rules
from pintae.domain.models import (
    EMPTY_CONTEXT,
    CheckResult,
    ComplianceException,
    DataContext,
    Direction,
    OrganizationProfile,
)
from pintae.domain.routing import build_organization_profile_exceptions, resolve_direction, select_rules
from pintae.domain.rules import Rule, evaluate_rule
from pintae.domain.scoring import (
    CheckRun,
    RunSummary,
    build_check_run,
    calculate_client_risk_scores,
    generate_run_summary,
)
from pintae.services.custom_checks import CustomCheckConfig, compile_custom_check

logger = logging.getLogger(__name__)

RunScope = Literal["AR", "AP", "ALL"]


def dataset_scope_order(scope: RunScope | Direction) -> tuple[Direction, ...]:
    """Directions a run scope covers, in run order."""
    if scope == "ALL":
        return (Direction.AR, Direction.AP)
    return (Direction(scope),)


def merge_check_results(*result_sets: Iterable[CheckResult]) -> list[CheckResult]:
    """
    Merge check results by check id, keeping first-seen order.

    Exceptions are concatenated and records_checked is summed, so pass and
    fail counts add up across datasets.
    """
    merged: dict[str, CheckResult] = {}
    for results in result_sets:
        for result in results:
            existing = merged.get(result.check_id)
            if existing is None:
                merged[result.check_id] = result
                continue
            merged[result.check_id] = CheckResult(
                check_id=existing.check_id,
                check_name=existing.check_name,
                severity=existing.severity,
                exceptions=existing.exceptions + result.exceptions,
                records_checked=existing.records_checked + result.records_checked,
            )
    return list(merged.values())


def _flatten(results: Iterable[CheckResult]) -> list[ComplianceException]:
    return [exception for result in results for exception in result.exceptions]


# =============================================================================
# Dataset store
# =============================================================================

class DatasetStore:
    """
    Independent AR and AP datasets with one of them active.

    Loading one direction never touches the other.

    Example:
        store = DatasetStore()
        store.load(Direction.AR, ar_context)
        store.load(Direction.AP, ap_context)
        store.set_active(Direction.AP)
        store.active.counts()
    """

    def __init__(self, active: Direction = Direction.AR):
        self._lock = threading.Lock()
        self._contexts: dict[Direction, DataContext] = {}
        self._active = active

    def load(self, direction: Direction, context: DataContext) -> None:
        with self._lock:
            self._contexts[direction] = context
        logger.info(f"Dataset {direction.value} loaded: {context.counts()}")

    def get(self, direction: Direction) -> DataContext:
        """The direction's context; empty when nothing was loaded."""
        with self._lock:
            return self._contexts.get(direction, EMPTY_CONTEXT)

    def has(self, direction: Direction) -> bool:
        with self._lock:
            return direction in self._contexts

    def clear(self, direction: Direction) -> None:
        with self._lock:
            self._contexts.pop(direction, None)

    def set_active(self, direction: Direction) -> None:
        self._active = direction

    @property
    def active_direction(self) -> Direction:
        return self._active

    @property
    def active(self) -> DataContext:
        return self.get(self._active)

    def counts(self, direction: Direction | None = None) -> dict[str, int]:
        return self.get(direction or self._active).counts()


# =============================================================================
# Runs
# =============================================================================

@dataclass(frozen=True)
class ComplianceRunResult:
    """Everything one run over one dataset produced."""
    direction: Direction
    check_results: tuple[CheckResult, ...]
    pack_results: tuple[CheckResult, ...]
    pack_exceptions: tuple[ComplianceException, ...]
    custom_results: tuple[CheckResult, ...]
    profile_exceptions: tuple[ComplianceException, ...]
    all_exceptions: tuple[ComplianceException, ...]
    check_run: CheckRun
    run_summary: RunSummary
    total_invoices: int = 0
    warnings: tuple[str, ...] = field(default_factory=tuple)


class ComplianceService:
    """
    Runs all check families over a dataset.

    Rules are independent of each other, so they are evaluated on a thread
    pool; results are reassembled in rule order.

    Example:
        service = ComplianceService(get_settings())
        result = service.run(context, Direction.AR)
        for exception in result.all_exceptions:
            ...
    """

    def __init__(self, settings: Settings | None = None, max_workers: int | None = None):
        self.settings = settings or get_settings()
        self.max_workers = max_workers or self.settings.max_workers

    @property
    def tolerance(self) -> Decimal:
        return Decimal(str(self.settings.monetary_tolerance))

    def _evaluate(self, rules: Sequence[Rule], context: DataContext, direction: Direction) -> list[CheckResult]:
        if not rules:
            return []
        if self.max_workers <= 1 or len(rules) == 1:
            return [evaluate_rule(rule, context, direction, self.tolerance) for rule in rules]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(lambda rule: evaluate_rule(rule, context, direction, self.tolerance), rules))

    def run(
        self,
        context: DataContext,
        direction: Direction | str | None = None,
        profile: OrganizationProfile | None = None,
        custom_checks: Iterable[CustomCheckConfig] = (),
        pack: Iterable[Rule] = UAE_UC1_CHECK_PACK,
    ) -> ComplianceRunResult:
        """
        Run built-in, pack, custom and profile checks over one dataset.

        Args:
            context: Indexed dataset
            direction: AR or AP; defaults to the configured direction
            profile: Our entity TRNs; defaults to the configured list
            custom_checks: User-authored checks; inactive ones are skipped
            pack: Check pack rules

        Returns:
            ComplianceRunResult with exceptions in family order: built-in,
            pack, custom, profile

        Raises:
            CheckConfigurationError: When a custom check does not compile;
                nothing is evaluated in that case
        """
        run_direction = resolve_direction(direction) if direction else self.settings.direction
        run_profile = profile or OrganizationProfile(tuple(self.settings.our_entity_trns))

        configs = list(custom_checks)
        custom_rules = [compile_custom_check(config) for config in configs]
        warnings = []
        for config in configs:
            if not config.is_active:
                warnings.append(f"Custom check '{config.name}' is inactive and was skipped")
                logger.warning(f"Custom check {config.id or config.name} is inactive, skipping")
        custom_rules = [rule for rule in custom_rules if rule.enabled and rule.applies_to(run_direction)]

        builtin_rules = select_rules(BUILTIN_CHECKS, run_direction)
        pack_rules = enabled_rules(pack, run_direction)

        counts = context.counts()
        logger.info(
            f"Run started ({run_direction.value}): {counts['headers']} headers, {counts['lines']} lines, "
            f"{len(builtin_rules)} built-in, {len(pack_rules)} pack, {len(custom_rules)} custom rules"
        )

        results = self._evaluate([*builtin_rules, *pack_rules, *custom_rules], context, run_direction)
        check_results = results[:len(builtin_rules)]
        pack_results = results[len(builtin_rules):len(builtin_rules) + len(pack_rules)]
        custom_results = results[len(builtin_rules) + len(pack_rules):]

        pack_exceptions = _flatten(pack_results)
        profile_exceptions = build_organization_profile_exceptions(
            run_profile, run_direction, context.headers, context.buyer_map,
        )
        all_exceptions = [
            *_flatten(check_results),
            *pack_exceptions,
            *_flatten(custom_results),
            *profile_exceptions,
        ]

        total_invoices = len(context.headers)
        check_run = build_check_run(context, all_exceptions, run_direction)
        run_summary = generate_run_summary(
            total_invoices,
            pack_exceptions,
            calculate_client_risk_scores(context, pack_exceptions),
        )

        logger.info(
            f"Run finished ({run_direction.value}): {len(all_exceptions)} exceptions, "
            f"pass rate {check_run.pass_rate:.1f}%"
        )
        return ComplianceRunResult(
            direction=run_direction,
            check_results=tuple(check_results),
            pack_results=tuple(pack_results),
            pack_exceptions=tuple(pack_exceptions),
            custom_results=tuple(custom_results),
            profile_exceptions=tuple(profile_exceptions),
            all_exceptions=tuple(all_exceptions),
            check_run=check_run,
            run_summary=run_summary,
            total_invoices=total_invoices,
            warnings=tuple(warnings),
        )

    def run_scope(
        self,
        store: DatasetStore,
        scope: RunScope = "ALL",
        profile: OrganizationProfile | None = None,
        custom_checks: Iterable[CustomCheckConfig] = (),
    ) -> dict[Direction, ComplianceRunResult]:
        """
        Run each loaded dataset of a scope separately.

        Directions with no loaded dataset are skipped. Use
        merge_check_results to combine the per-direction results.
        """
        configs = list(custom_checks)
        return {
            direction: self.run(store.get(direction), direction, profile, configs)
            for direction in dataset_scope_order(scope)
            if store.has(direction)
        }
