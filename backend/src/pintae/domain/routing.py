"""
Direction-aware ruleset routing.

AR datasets hold invoices we issue; AP datasets hold invoices we receive.
The direction decides which rules run and which party's TRN must belong
to one of our own entities.
"""

import logging
import re
from collections.abc import Iterable, Mapping

from .models import (
    DEFAULT_DIRECTION,
    Buyer,
    ComplianceException,
    Dataset,
    Direction,
    InvoiceHeader,
    OrganizationProfile,
    Severity,
)
from .rules import Rule

logger = logging.getLogger(__name__)

RULESET_VERSION = "v1.0.0"

ORG_PROFILE_CHECK_ID = "org_profile_our_entity_alignment"
ORG_PROFILE_RULE_ID = "ORG-TRN-ALIGNMENT"
ORG_PROFILE_CHECK_NAME = "Our-side TRN Alignment"
MISSING = "(missing)"

_DIRECTION_TAG = re.compile(r"\[\[direction:(AR|AP)\]\]", re.IGNORECASE)

_AP_SIGNALS = ("supplier_id", "supplier_name", "vendor_id", "vendor_name")
_AR_SIGNALS = ("buyer_id", "buyer_name", "customer_id", "customer_name")


# =============================================================================
# Ruleset selection
# =============================================================================

def get_ruleset_for_direction(direction: Direction) -> Direction:
    """Ruleset identifier for a direction; currently one ruleset per direction."""
    return direction


def select_rules(rules: Iterable[Rule], direction: Direction = DEFAULT_DIRECTION) -> list[Rule]:
    """Enabled rules that apply to the direction's ruleset, in order."""
    ruleset = get_ruleset_for_direction(direction)
    return [rule for rule in rules if rule.enabled and rule.applies_to(ruleset)]


# =============================================================================
# Organization profile alignment
# =============================================================================

def _our_side_trn(
    header: InvoiceHeader,
    direction: Direction,
    buyer_map: Mapping[str, Buyer],
) -> str | None:
    if direction == Direction.AR:
        return header.seller_trn or None
    if header.buyer_trn:
        return header.buyer_trn
    buyer = buyer_map.get(header.buyer_id)
    return buyer.buyer_trn if buyer else None


def build_organization_profile_exceptions(
    profile: OrganizationProfile,
    direction: Direction,
    headers: Iterable[InvoiceHeader],
    buyer_map: Mapping[str, Buyer],
) -> list[ComplianceException]:
    """
    Check that "our" side of every invoice is one of our entities.

    For AR the seller is us; for AP the buyer is us, taken from the header's
    buyer_trn or, failing that, from the referenced party record. Each
    mismatching header yields exactly one exception.

    Args:
        profile: Our registered entity TRNs; an empty list disables the check
        direction: Dataset direction
        headers: Invoice headers to check
        buyer_map: Party lookup by buyer_id

    Returns:
        Exceptions in header order
    """
    allowed = list(dict.fromkeys(t.strip() for t in profile.our_entity_trns if t and t.strip()))
    if not allowed:
        return []

    local_field = "seller_trn" if direction == Direction.AR else "buyer_trn"
    party = "Seller" if direction == Direction.AR else "Buyer"
    expected = f"one of [{', '.join(allowed)}]"

    exceptions = []
    for index, header in enumerate(headers):
        trn = _our_side_trn(header, direction, buyer_map)
        if trn and trn in allowed:
            continue
        exceptions.append(ComplianceException(
            check_id=ORG_PROFILE_CHECK_ID,
            check_name=ORG_PROFILE_CHECK_NAME,
            severity=Severity.CRITICAL,
            message=(
                f"{party} TRN {trn or MISSING} is not registered as our entity "
                f"for {direction.value} direction."
            ),
            field_name=local_field,
            invoice_id=header.invoice_id,
            invoice_number=header.invoice_number,
            seller_trn=header.seller_trn,
            buyer_id=header.buyer_id,
            observed_value=trn or MISSING,
            expected_value=expected,
            direction=direction,
            dataset=Dataset.HEADERS,
            row_number=index + 1,
            rule_id=ORG_PROFILE_RULE_ID,
            rule_type="org_profile",
        ))

    if exceptions:
        logger.info(f"Org profile ({direction.value}): {len(exceptions)} header(s) not aligned")
    return exceptions


# =============================================================================
# Direction helpers
# =============================================================================

def resolve_direction(value: str | Direction | None) -> Direction:
    """Exact AR/AP, otherwise the default direction."""
    if isinstance(value, Direction):
        return value
    if value in ("AR", "AP"):
        return Direction(value)
    return DEFAULT_DIRECTION


def detect_direction_from_columns(columns: Iterable[str]) -> Direction | None:
    """
    Guess a dataset's direction from its column names.

    Supplier/vendor columns point to AP, buyer/customer columns to AR.
    Returns None when neither side wins.
    """
    normalized = {column.strip().lower() for column in columns}
    ap_score = sum(1 for signal in _AP_SIGNALS if signal in normalized)
    ar_score = sum(1 for signal in _AR_SIGNALS if signal in normalized)
    if ap_score > ar_score:
        return Direction.AP
    if ar_score > ap_score:
        return Direction.AR
    return None


def remove_direction_tag(description: str | None) -> str:
    if not description:
        return ""
    return _DIRECTION_TAG.sub("", description, count=1).strip()


def with_direction_tag(description: str | None, direction: Direction) -> str:
    """Prefix a description with a `[[direction:XX]]` tag, replacing any existing one."""
    clean = remove_direction_tag(description)
    tag = f"[[direction:{direction.value}]]"
    return f"{tag}\n{clean}" if clean else tag


def parse_direction_from_description(description: str | None) -> Direction:
    match = _DIRECTION_TAG.search(description or "")
    return resolve_direction(match.group(1).upper() if match else None)
