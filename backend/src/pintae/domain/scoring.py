"""
Scoring and run statistics.

Two weightings coexist:
- SEVERITY_WEIGHTS (25/15/8/3) drive the 0..100 entity score used for
  sellers, buyers and invoices on dashboards
- RISK_WEIGHTS (10/6/3/1) drive the per-client risk score of a check pack
  run, which is normalized per invoice into a health score

Design Decisions:
- Every score is a pure function of counts; nothing here reads settings
- Pass rate counts invoices with no exception at all, not exception totals
- Half-up rounding for health scores so dashboards and exports agree
"""

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .models import (
    ComplianceException,
    DataContext,
    DEFAULT_DIRECTION,
    Direction,
    Severity,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Entity scoring
# =============================================================================

SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 8,
    Severity.LOW: 3,
}


def calculate_score(critical: int, high: int, medium: int, low: int) -> int:
    """
    Score an entity from its exception counts.

    Returns:
        100 minus the weighted penalty, clamped to 0..100
    """
    penalty = (
        critical * SEVERITY_WEIGHTS[Severity.CRITICAL]
        + high * SEVERITY_WEIGHTS[Severity.HIGH]
        + medium * SEVERITY_WEIGHTS[Severity.MEDIUM]
        + low * SEVERITY_WEIGHTS[Severity.LOW]
    )
    return max(0, min(100, 100 - penalty))


def count_by_severity(exceptions: Iterable[ComplianceException]) -> dict[Severity, int]:
    """Exception counts for every severity, zero-filled."""
    counts = {severity: 0 for severity in Severity}
    for exception in exceptions:
        counts[exception.severity] += 1
    return counts


class EntityType(str, Enum):
    SELLER = "seller"
    BUYER = "buyer"
    INVOICE = "invoice"


@dataclass(frozen=True)
class EntityScore:
    """Weighted score for one seller, buyer or invoice."""
    entity_type: EntityType
    entity_id: str
    entity_name: str | None
    score: int
    total_exceptions: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int


def _entity_key(entity_type: EntityType, exception: ComplianceException) -> str | None:
    match entity_type:
        case EntityType.SELLER:
            return exception.seller_trn
        case EntityType.BUYER:
            return exception.buyer_id
        case _:
            return exception.invoice_id


def calculate_entity_scores(
    context: DataContext,
    exceptions: Iterable[ComplianceException],
    entity_type: EntityType | str,
) -> list[EntityScore]:
    """
    Score every entity that appears in the headers.

    Entities are seeded from the headers in row order, so an entity with no
    exceptions still gets a score of 100. Exceptions whose key does not
    match a seeded entity are ignored.

    Args:
        context: The dataset the exceptions came from
        exceptions: Exceptions of the run
        entity_type: seller (by seller_trn), buyer (by buyer_id) or
            invoice (by invoice_id)

    Returns:
        One EntityScore per distinct entity
    """
    kind = EntityType(entity_type)
    names: dict[str, str | None] = {}
    for header in context.headers:
        match kind:
            case EntityType.SELLER:
                key, name = header.seller_trn, header.seller_name
            case EntityType.BUYER:
                buyer = context.find_buyer(header.buyer_id)
                key, name = header.buyer_id, buyer.buyer_name if buyer else None
            case _:
                key, name = header.invoice_id, header.invoice_number
        if key and key not in names:
            names[key] = name or None

    grouped: dict[str, list[ComplianceException]] = {key: [] for key in names}
    for exception in exceptions:
        key = _entity_key(kind, exception)
        if key in grouped:
            grouped[key].append(exception)

    scores = []
    for key, entity_exceptions in grouped.items():
        counts = count_by_severity(entity_exceptions)
        scores.append(EntityScore(
            entity_type=kind,
            entity_id=key,
            entity_name=names[key],
            score=calculate_score(
                counts[Severity.CRITICAL], counts[Severity.HIGH],
                counts[Severity.MEDIUM], counts[Severity.LOW],
            ),
            total_exceptions=len(entity_exceptions),
            critical_count=counts[Severity.CRITICAL],
            high_count=counts[Severity.HIGH],
            medium_count=counts[Severity.MEDIUM],
            low_count=counts[Severity.LOW],
        ))
    return scores


# =============================================================================
# Run statistics
# =============================================================================

def _pass_rate(total_invoices: int, exceptions: Iterable[ComplianceException]) -> float:
    if total_invoices <= 0:
        return 100.0
    failing = {(e.direction, e.invoice_id) for e in exceptions if e.invoice_id}
    return (total_invoices - len(failing)) / total_invoices * 100


@dataclass(frozen=True)
class RunStats:
    total_invoices: int
    total_exceptions: int
    exceptions_by_severity: dict[Severity, int]
    pass_rate: float


def calculate_stats(context: DataContext, exceptions: Iterable[ComplianceException]) -> RunStats:
    """Dashboard statistics for a run over one context."""
    excs = list(exceptions)
    total = len(context.headers)
    return RunStats(
        total_invoices=total,
        total_exceptions=len(excs),
        exceptions_by_severity=count_by_severity(excs),
        pass_rate=_pass_rate(total, excs),
    )


@dataclass(frozen=True)
class CheckRun:
    """Aggregate record of one check execution."""
    run_date: datetime
    direction: Direction | str
    total_invoices: int
    total_exceptions: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    pass_rate: float


def build_check_run(
    context: DataContext,
    exceptions: Iterable[ComplianceException],
    direction: Direction | str = DEFAULT_DIRECTION,
    total_invoices: int | None = None,
) -> CheckRun:
    """
    Build the CheckRun for a finished run.

    total_invoices overrides the context's header count when a run spans
    more than one dataset.
    """
    excs = list(exceptions)
    total = len(context.headers) if total_invoices is None else total_invoices
    counts = count_by_severity(excs)
    return CheckRun(
        run_date=datetime.now(timezone.utc),
        direction=direction,
        total_invoices=total,
        total_exceptions=len(excs),
        critical_count=counts[Severity.CRITICAL],
        high_count=counts[Severity.HIGH],
        medium_count=counts[Severity.MEDIUM],
        low_count=counts[Severity.LOW],
        pass_rate=_pass_rate(total, excs),
    )


# =============================================================================
# Risk scoring
# =============================================================================

RISK_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 10,
    Severity.HIGH: 6,
    Severity.MEDIUM: 3,
    Severity.LOW: 1,
}


def calculate_risk_score(critical: int, high: int, medium: int, low: int) -> int:
    return (
        critical * RISK_WEIGHTS[Severity.CRITICAL]
        + high * RISK_WEIGHTS[Severity.HIGH]
        + medium * RISK_WEIGHTS[Severity.MEDIUM]
        + low * RISK_WEIGHTS[Severity.LOW]
    )


def calculate_health_score(risk_score: int, total_invoices: int) -> int:
    """
    Health score 0..100 from a risk score.

    A risk of 50 points per invoice maps to zero health.
    """
    if total_invoices == 0:
        return 100
    normalized = risk_score / total_invoices * 2
    score = math.floor(100 - normalized + 0.5)
    return max(0, min(100, score))


@dataclass(frozen=True)
class ClientRiskScore:
    """Risk rollup for one seller (client) within a run."""
    seller_trn: str
    client_name: str | None
    risk_score: int
    health_score: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    total_exceptions: int
    total_invoices: int


@dataclass(frozen=True)
class CheckFailureCount:
    check_id: str
    check_name: str
    count: int


@dataclass(frozen=True)
class RunSummary:
    """Aggregate view of one check pack run."""
    total_invoices_tested: int
    total_exceptions: int
    pass_rate_percent: float
    exceptions_by_severity: dict[Severity, int] = field(default_factory=dict)
    top_failing_checks: tuple[CheckFailureCount, ...] = ()
    top_clients_by_risk: tuple[ClientRiskScore, ...] = ()


def calculate_client_risk_scores(
    context: DataContext,
    exceptions: Iterable[ComplianceException],
) -> list[ClientRiskScore]:
    """Per-seller risk and health scores, highest risk first."""
    invoices_by_seller: dict[str, int] = {}
    names: dict[str, str | None] = {}
    for header in context.headers:
        invoices_by_seller[header.seller_trn] = invoices_by_seller.get(header.seller_trn, 0) + 1
        names.setdefault(header.seller_trn, header.seller_name)

    by_seller: dict[str, list[ComplianceException]] = {trn: [] for trn in invoices_by_seller}
    for exception in exceptions:
        if exception.seller_trn is not None:
            by_seller.setdefault(exception.seller_trn, []).append(exception)

    scores = []
    for seller_trn, seller_exceptions in by_seller.items():
        counts = count_by_severity(seller_exceptions)
        risk = calculate_risk_score(
            counts[Severity.CRITICAL], counts[Severity.HIGH], counts[Severity.MEDIUM], counts[Severity.LOW],
        )
        invoices = invoices_by_seller.get(seller_trn, 0)
        scores.append(ClientRiskScore(
            seller_trn=seller_trn,
            client_name=names.get(seller_trn),
            risk_score=risk,
            health_score=calculate_health_score(risk, invoices),
            critical_count=counts[Severity.CRITICAL],
            high_count=counts[Severity.HIGH],
            medium_count=counts[Severity.MEDIUM],
            low_count=counts[Severity.LOW],
            total_exceptions=len(seller_exceptions),
            total_invoices=invoices,
        ))
    return sorted(scores, key=lambda s: s.risk_score, reverse=True)


def generate_run_summary(
    total_invoices: int,
    exceptions: Iterable[ComplianceException],
    client_scores: Iterable[ClientRiskScore] | None = None,
    top_n: int = 10,
) -> RunSummary:
    """
    Summarize a pack run.

    Pass rate is rounded to two decimals; 100 when there are no invoices.
    """
    excs = list(exceptions)
    check_counts: dict[str, CheckFailureCount] = {}
    for exception in excs:
        current = check_counts.get(exception.check_id)
        check_counts[exception.check_id] = CheckFailureCount(
            exception.check_id, exception.check_name, (current.count if current else 0) + 1,
        )
    # sorted() is stable, so ties keep first-seen order
    top_checks = sorted(check_counts.values(), key=lambda c: c.count, reverse=True)[:top_n]
    clients = sorted(client_scores or [], key=lambda c: c.risk_score, reverse=True)[:top_n]

    summary = RunSummary(
        total_invoices_tested=total_invoices,
        total_exceptions=len(excs),
        pass_rate_percent=round(_pass_rate(total_invoices, excs), 2),
        exceptions_by_severity=count_by_severity(excs),
        top_failing_checks=tuple(top_checks),
        top_clients_by_risk=tuple(clients),
    )
    logger.debug(
        f"Run summary: {summary.total_exceptions} exceptions over "
        f"{total_invoices} invoices, pass rate {summary.pass_rate_percent}%"
    )
    return summary
