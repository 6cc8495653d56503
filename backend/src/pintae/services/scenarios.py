"""
Scenario lens over a loaded data context.

Classifies every invoice by document type, VAT treatment and business
scenario from the signals its header, lines and buyer carry, then lets
callers filter the population, summarise it and ask which DRs apply to
the selected scenario.

Design Decisions:
- Classification is heuristic: it reads known columns and free-form
  indicator columns (unmapped CSV columns included) and never fails
- Document type precedence is self-billing, out-of-scope, credit note,
  then standard invoice
- A filter left as None matches everything
- DRs without an applicability entry are treated as always applicable
"""

import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from pintae.domain.expressions import to_number
from pintae.domain.models import DataContext
from pintae.registry.dr_registry import get_dr_registry

logger = logging.getLogger(__name__)

AE_COUNTRY = "AE"


# =============================================================================
# Classification types
# =============================================================================

class DocumentType(str, Enum):
    STANDARD_INVOICE = "Standard Invoice"
    CREDIT_NOTE = "Credit Note"
    OUT_OF_SCOPE = "Commercial/Out-of-scope"
    SELF_BILLING_INVOICE = "Self-billing Invoice"
    SELF_BILLING_CREDIT_NOTE = "Self-billing Credit Note"


class VatTreatment(str, Enum):
    STANDARD_RATED = "Standard-rated"
    ZERO_RATED = "Zero-rated"
    EXEMPT = "Exempt"
    OUT_OF_SCOPE = "Out-of-scope"
    REVERSE_CHARGE = "Reverse charge"
    EXPORT = "Export"
    FREE_ZONE = "Free Zone"
    DEEMED_SUPPLY = "Deemed supply"
    MARGIN_SCHEME = "Margin scheme"


class BusinessScenario(str, Enum):
    NONE = "None"
    DISCLOSED_AGENT = "Disclosed agent"
    CONTINUOUS_SUPPLY = "Continuous supply"
    SUMMARY_INVOICE = "Summary invoice"
    E_COMMERCE = "E-commerce"


class ConfidenceBand(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class ScenarioDimension(str, Enum):
    DOCUMENT_TYPE = "documentType"
    VAT_TREATMENTS = "vatTreatments"
    BUSINESS_SCENARIOS = "businessScenarios"
    CONFIDENCE = "confidence"


@dataclass(frozen=True)
class ScenarioClassification:
    document_type: DocumentType
    vat_treatments: tuple[VatTreatment, ...]
    business_scenarios: tuple[BusinessScenario, ...]
    confidence: int | None
    reasons: tuple[str, ...]

    @property
    def confidence_band(self) -> ConfidenceBand | None:
        return confidence_to_band(self.confidence)


@dataclass(frozen=True)
class ScenarioInvoice:
    """One header with its lines, buyer country and classification."""
    invoice_id: str
    invoice_number: str
    issue_date: str
    seller_trn: str
    buyer_id: str
    seller_country: str | None
    buyer_country: str | None
    currency: str
    line_count: int
    classification: ScenarioClassification


@dataclass(frozen=True)
class ScenarioFilters:
    """Selected scenario; None on a dimension means All."""
    document_type: DocumentType | None = None
    vat_treatment: VatTreatment | None = None
    business_scenario: BusinessScenario | None = None
    confidence: ConfidenceBand | None = None


@dataclass(frozen=True)
class ScenarioCoverage:
    document_types_present: int
    vat_treatments_present: int
    business_scenarios_present: int
    invoices_in_selection: int


@dataclass(frozen=True)
class DistributionRow:
    key: str
    count: int
    percentage: float


# =============================================================================
# Signal readers
# =============================================================================

_TRUE_WORDS = frozenset({"true", "yes", "y", "1"})


def _read_text(source: Mapping[str, Any], keys: Sequence[str]) -> str:
    for key in keys:
        value = source.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _read_bool(source: Mapping[str, Any], keys: Sequence[str]) -> bool:
    """First key holding a decisive value wins; unrecognised text is skipped."""
    for key in keys:
        value = source.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float, Decimal)):
            return value == 1
        if isinstance(value, str) and value.strip().lower() in _TRUE_WORDS:
            return True
    return False


def _read_number(source: Mapping[str, Any], keys: Sequence[str]) -> Decimal | None:
    for key in keys:
        number = to_number(source.get(key))
        if number is not None and number.is_finite():
            return number
    return None


def _includes_any(raw: str, terms: Iterable[str]) -> bool:
    value = raw.strip().lower()
    return bool(value) and any(term in value for term in terms)


def _normalize_country(value: str) -> str:
    country = value.strip().upper()
    return AE_COUNTRY if country in ("UAE", "ARE") else country


def _collect_tax_signals(
    header: Mapping[str, Any],
    lines: Iterable[Mapping[str, Any]],
) -> tuple[list[str], list[Decimal]]:
    codes: list[str] = []
    rates: list[Decimal] = []

    def add(code: str, rate: Decimal | None) -> None:
        code = code.lower()
        if code and code not in codes:
            codes.append(code)
        if rate is not None and rate not in rates:
            rates.append(rate)

    add(_read_text(header, ("tax_category_code", "vat_category")),
        _read_number(header, ("tax_category_rate", "vat_rate")))
    for line in lines:
        add(_read_text(line, ("tax_category_code", "vat_category")),
            _read_number(line, ("vat_rate", "tax_category_rate")))
    return codes, rates


# =============================================================================
# Classification
# =============================================================================

def classify_invoice(
    header: Mapping[str, Any],
    lines: Iterable[Mapping[str, Any]] = (),
    buyer: Mapping[str, Any] | None = None,
) -> ScenarioClassification:
    """
    Classify one invoice from flattened header, line and buyer values.

    Returns:
        The scenario classification with the reasons that produced it
    """
    buyer = buyer or {}
    reasons: list[str] = []

    invoice_type = _read_text(header, ("invoice_type", "document_type", "invoice_type_code"))
    profile = _read_text(header, ("spec_id", "business_process", "profile_id"))

    credit = (
        _includes_any(invoice_type, ("credit note", "credit_note", "381", "cn"))
        or _read_bool(header, ("is_credit_note", "credit_note"))
    )
    self_billing = (
        _read_bool(header, ("self_billing", "is_self_billing"))
        or _includes_any(profile, ("self", "selfbilling", "self-billing"))
    )

    codes, rates = _collect_tax_signals(header, lines)
    out_of_scope = (
        any(_includes_any(code, ("out", "outside", "oos", "notax", "scope")) for code in codes)
        or _read_bool(header, ("is_out_of_scope", "out_of_scope", "commercial_only"))
    )
    reverse_charge = (
        _read_bool(header, ("reverse_charge", "is_reverse_charge", "rcm"))
        or any(_includes_any(code, ("rc", "rcm", "reverse")) for code in codes)
    )

    seller_country = _normalize_country(_read_text(header, ("seller_country",)))
    buyer_country = _normalize_country(
        _read_text(buyer, ("buyer_country",))
        or _read_text(header, ("buyer_country", "ship_to_country"))
    )
    export = bool(
        seller_country == AE_COUNTRY and buyer_country and buyer_country != AE_COUNTRY
    ) or _read_bool(header, ("is_export", "export_sale"))

    free_zone = (
        _read_bool(header, ("is_free_zone", "free_zone"))
        or _includes_any(_read_text(header, ("transaction_type_code",)), ("free", "fz"))
    )

    if self_billing:
        document_type = DocumentType.SELF_BILLING_CREDIT_NOTE if credit else DocumentType.SELF_BILLING_INVOICE
        reasons.append("Self-billing indicator detected.")
    elif out_of_scope:
        document_type = DocumentType.OUT_OF_SCOPE
        reasons.append("Out-of-scope tax signal detected.")
    elif credit:
        document_type = DocumentType.CREDIT_NOTE
        reasons.append("Credit-note signal detected.")
    else:
        document_type = DocumentType.STANDARD_INVOICE
        reasons.append("Defaulted to standard invoice type.")

    treatments: list[VatTreatment] = []
    if export:
        treatments.append(VatTreatment.EXPORT)
        reasons.append(f"Export signal from country context ({seller_country or '?'} -> {buyer_country or '?'}).")
    if reverse_charge:
        treatments.append(VatTreatment.REVERSE_CHARGE)
        reasons.append("Reverse-charge signal detected.")
    if out_of_scope:
        treatments.append(VatTreatment.OUT_OF_SCOPE)
    if free_zone:
        treatments.append(VatTreatment.FREE_ZONE)
    if _read_bool(header, ("is_deemed_supply", "deemed_supply")):
        treatments.append(VatTreatment.DEEMED_SUPPLY)
    if _read_bool(header, ("is_margin_scheme", "margin_scheme")):
        treatments.append(VatTreatment.MARGIN_SCHEME)
    if any(_includes_any(c, ("s", "standard", "std")) for c in codes) or any(r > 0 for r in rates):
        treatments.append(VatTreatment.STANDARD_RATED)
    if any(_includes_any(c, ("z", "zero")) for c in codes):
        treatments.append(VatTreatment.ZERO_RATED)
    if any(_includes_any(c, ("e", "exempt")) for c in codes):
        treatments.append(VatTreatment.EXEMPT)

    scenarios: list[BusinessScenario] = []
    for scenario, keys, label in _BUSINESS_SIGNALS:
        if _read_bool(header, keys):
            scenarios.append(scenario)
            reasons.append(f"{label} indicator detected.")
    business_signals = bool(scenarios)
    if not scenarios:
        scenarios.append(BusinessScenario.NONE)

    score = 0
    if credit:
        score += 20
    if self_billing:
        score += 20
    if reverse_charge or out_of_scope:
        score += 15
    if export:
        score += 15
    if codes or rates:
        score += 20
    if business_signals:
        score += 10

    return ScenarioClassification(
        document_type=document_type,
        vat_treatments=tuple(treatments),
        business_scenarios=tuple(scenarios),
        confidence=min(score, 100) if score else None,
        reasons=tuple(reasons),
    )


_BUSINESS_SIGNALS: tuple[tuple[BusinessScenario, tuple[str, ...], str], ...] = (
    (BusinessScenario.DISCLOSED_AGENT, ("is_disclosed_agent", "disclosed_agent", "agent_disclosed"), "Disclosed-agent"),
    (BusinessScenario.CONTINUOUS_SUPPLY, ("is_continuous_supply", "continuous_supply", "billing_frequency"),
     "Continuous-supply"),
    (BusinessScenario.SUMMARY_INVOICE, ("is_summary_invoice", "summary_invoice", "consolidated_invoice"),
     "Summary-invoice"),
    (BusinessScenario.E_COMMERCE, ("is_ecommerce", "ecommerce", "is_marketplace"), "E-commerce"),
)


def confidence_to_band(confidence: int | None) -> ConfidenceBand | None:
    if confidence is None:
        return None
    if confidence >= 75:
        return ConfidenceBand.HIGH
    if confidence >= 45:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW


def build_scenario_invoices(context: DataContext) -> list[ScenarioInvoice]:
    """Classify every header in the context, in header order."""
    invoices = []
    for header in context.headers:
        lines = context.lines_for(header.invoice_id)
        buyer = context.find_buyer(header.buyer_id)
        classification = classify_invoice(
            header.as_dict(),
            [line.as_dict() for line in lines],
            buyer.as_dict() if buyer else None,
        )
        invoices.append(ScenarioInvoice(
            invoice_id=header.invoice_id,
            invoice_number=header.invoice_number,
            issue_date=header.issue_date,
            seller_trn=header.seller_trn,
            buyer_id=header.buyer_id,
            seller_country=header.seller_country,
            buyer_country=buyer.buyer_country if buyer else None,
            currency=header.currency,
            line_count=len(lines),
            classification=classification,
        ))
    logger.debug(f"Classified {len(invoices)} invoices")
    return invoices


# =============================================================================
# Selectors
# =============================================================================

def filter_invoices_by_scenario(
    invoices: Iterable[ScenarioInvoice],
    filters: ScenarioFilters,
) -> list[ScenarioInvoice]:
    def keep(invoice: ScenarioInvoice) -> bool:
        c = invoice.classification
        if filters.document_type is not None and c.document_type != filters.document_type:
            return False
        if filters.vat_treatment is not None and filters.vat_treatment not in c.vat_treatments:
            return False
        if filters.business_scenario is not None and filters.business_scenario not in c.business_scenarios:
            return False
        if filters.confidence is not None and c.confidence_band != filters.confidence:
            return False
        return True

    return [invoice for invoice in invoices if keep(invoice)]


def compute_scenario_coverage(invoices: Sequence[ScenarioInvoice]) -> ScenarioCoverage:
    """Count the distinct values present per dimension."""
    return ScenarioCoverage(
        document_types_present=len({i.classification.document_type for i in invoices}),
        vat_treatments_present=len({v for i in invoices for v in i.classification.vat_treatments}),
        business_scenarios_present=len({b for i in invoices for b in i.classification.business_scenarios}),
        invoices_in_selection=len(invoices),
    )


def _dimension_keys(classification: ScenarioClassification, dimension: ScenarioDimension) -> list[str]:
    if dimension is ScenarioDimension.DOCUMENT_TYPE:
        return [classification.document_type.value]
    if dimension is ScenarioDimension.VAT_TREATMENTS:
        return [v.value for v in classification.vat_treatments] or ["Unknown"]
    if dimension is ScenarioDimension.BUSINESS_SCENARIOS:
        return [b.value for b in classification.business_scenarios] or [BusinessScenario.NONE.value]
    band = classification.confidence_band
    return [band.value if band else "Unknown"]


def compute_distribution(
    invoices: Sequence[ScenarioInvoice],
    dimension: ScenarioDimension,
) -> list[DistributionRow]:
    """
    Distribution of one dimension, most frequent first.

    Multi-valued dimensions count an invoice once per value, so the
    percentages may sum past 100.
    """
    counts: Counter[str] = Counter()
    for invoice in invoices:
        counts.update(_dimension_keys(invoice.classification, dimension))

    total = max(len(invoices), 1)
    rows = [DistributionRow(key, count, count / total * 100) for key, count in counts.items()]
    rows.sort(key=lambda row: -row.count)
    return rows


# =============================================================================
# DR applicability
# =============================================================================

class ApplicabilityStatus(str, Enum):
    ALWAYS = "Always"
    CONDITIONAL = "Conditional"
    NOT_APPLICABLE = "N/A"


@dataclass(frozen=True)
class ScenarioApplicabilityRule:
    notes: str
    document_types: tuple[DocumentType, ...] = ()
    vat_treatments: tuple[VatTreatment, ...] = ()
    business_scenarios: tuple[BusinessScenario, ...] = ()

    @property
    def has_conditions(self) -> bool:
        return bool(self.document_types or self.vat_treatments or self.business_scenarios)


@dataclass(frozen=True)
class DRApplicability:
    dr_id: str
    status: ApplicabilityStatus
    notes: str


_TAX_DOCUMENTS = (
    DocumentType.STANDARD_INVOICE,
    DocumentType.CREDIT_NOTE,
    DocumentType.SELF_BILLING_INVOICE,
    DocumentType.SELF_BILLING_CREDIT_NOTE,
)

DR_SCENARIO_APPLICABILITY: dict[str, ScenarioApplicabilityRule] = {
    "IBT-001": ScenarioApplicabilityRule("Invoice number is required in all scenarios."),
    "IBT-002": ScenarioApplicabilityRule("Issue date is required in all scenarios."),
    "IBT-003": ScenarioApplicabilityRule(
        "Invoice type code applies to taxable invoice and credit note documents.",
        document_types=_TAX_DOCUMENTS,
    ),
    "IBT-005": ScenarioApplicabilityRule("Document currency applies in all invoicing scenarios."),
    "IBT-007": ScenarioApplicabilityRule(
        "FX rate mainly applies to cross-border and non-base-currency treatments.",
        vat_treatments=(VatTreatment.EXPORT, VatTreatment.REVERSE_CHARGE),
    ),
    "IBT-031": ScenarioApplicabilityRule("Seller TRN is generally always applicable for UAE VAT taxpayers."),
    "IBT-048": ScenarioApplicabilityRule(
        "Buyer TRN relevance increases for taxable and reverse-charge scenarios.",
        vat_treatments=(VatTreatment.STANDARD_RATED, VatTreatment.REVERSE_CHARGE, VatTreatment.ZERO_RATED),
    ),
    "IBT-109": ScenarioApplicabilityRule("Invoice net total applies in all monetary documents."),
    "IBT-110": ScenarioApplicabilityRule(
        "VAT total is relevant when tax treatment is within scope.",
        vat_treatments=(
            VatTreatment.STANDARD_RATED,
            VatTreatment.ZERO_RATED,
            VatTreatment.EXEMPT,
            VatTreatment.REVERSE_CHARGE,
            VatTreatment.EXPORT,
        ),
    ),
    "IBT-112": ScenarioApplicabilityRule("Invoice gross total is generally always applicable."),
    "IBT-115": ScenarioApplicabilityRule(
        "Amount due is especially relevant for recurring and aggregated billing scenarios.",
        business_scenarios=(
            BusinessScenario.CONTINUOUS_SUPPLY,
            BusinessScenario.SUMMARY_INVOICE,
            BusinessScenario.E_COMMERCE,
        ),
    ),
    "IBT-119": ScenarioApplicabilityRule(
        "Tax rate applies when a tax category is declared.",
        vat_treatments=(
            VatTreatment.STANDARD_RATED,
            VatTreatment.ZERO_RATED,
            VatTreatment.EXEMPT,
            VatTreatment.REVERSE_CHARGE,
        ),
    ),
    "IBT-024": ScenarioApplicabilityRule(
        "Specification identifier applies for in-scope structured invoice exchanges.",
        document_types=_TAX_DOCUMENTS,
    ),
    "BTUAE-02": ScenarioApplicabilityRule(
        "UAE transaction type code is conditional on in-scope tax documents.",
        document_types=_TAX_DOCUMENTS,
    ),
}


def _matches(allowed: tuple[Enum, ...], selected: Enum | None) -> bool:
    return not allowed or selected is None or selected in allowed


def get_scenario_applicability_for_dr(dr_id: str, filters: ScenarioFilters = ScenarioFilters()) -> DRApplicability:
    """
    Decide whether a DR applies under the selected scenario.

    Returns:
        ALWAYS for unmapped DRs and unconditional entries, CONDITIONAL when
        every conditioned dimension admits the selection, NOT_APPLICABLE
        otherwise
    """
    rule = DR_SCENARIO_APPLICABILITY.get(dr_id)
    if rule is None:
        return DRApplicability(dr_id, ApplicabilityStatus.ALWAYS, "No scenario condition mapped for this DR.")
    if not rule.has_conditions:
        return DRApplicability(dr_id, ApplicabilityStatus.ALWAYS, rule.notes)

    matched = (
        _matches(rule.document_types, filters.document_type)
        and _matches(rule.vat_treatments, filters.vat_treatment)
        and _matches(rule.business_scenarios, filters.business_scenario)
    )
    status = ApplicabilityStatus.CONDITIONAL if matched else ApplicabilityStatus.NOT_APPLICABLE
    return DRApplicability(dr_id, status, rule.notes)


# =============================================================================
# Lens
# =============================================================================

@dataclass(frozen=True)
class ScenarioLens:
    filters: ScenarioFilters
    invoices: list[ScenarioInvoice]
    coverage: ScenarioCoverage
    distributions: dict[ScenarioDimension, list[DistributionRow]]
    applicability: list[DRApplicability] = field(default_factory=list)


def build_scenario_lens(context: DataContext, filters: ScenarioFilters = ScenarioFilters()) -> ScenarioLens:
    """Classify, filter and summarise the context, with applicability for every registry DR."""
    selected = filter_invoices_by_scenario(build_scenario_invoices(context), filters)
    logger.info(f"Scenario lens selected {len(selected)} of {len(context.headers)} invoices")
    return ScenarioLens(
        filters=filters,
        invoices=selected,
        coverage=compute_scenario_coverage(selected),
        distributions={d: compute_distribution(selected, d) for d in ScenarioDimension},
        applicability=[get_scenario_applicability_for_dr(dr.dr_id, filters) for dr in get_dr_registry()],
    )
