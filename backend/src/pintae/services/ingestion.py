"""
CSV ingestion: raw dataset files to typed records.

Turns the three template files (parties, headers, lines) into Buyer,
InvoiceHeader and InvoiceLine records and an indexed DataContext. Also
serves the bundled sample datasets.

Design Decisions:
- pandas reads every cell as a string with NA coercion disabled, so a
  literal "NA" or "null" stays a value for the rules to judge
- Values are trimmed; blank strings become None for optional fields
- Numbers go to Decimal; an unparseable number becomes None and is left
  to the presence and reconciliation checks
- source_row_number is the CSV line number (header row is line 1)
"""

import io
import logging
from collections.abc import Mapping, Sequence
from dataclasses import fields
from decimal import Decimal
from importlib import resources

import pandas as pd

from pintae.domain.expressions import to_number
from pintae.domain.models import (
    DEFAULT_DIRECTION,
    Buyer,
    DataContext,
    Dataset,
    Direction,
    InvoiceHeader,
    InvoiceLine,
    build_data_context,
)

logger = logging.getLogger(__name__)

Row = Mapping[str, str]

SCENARIOS = ("positive", "negative")

_PARTY_PREFIXES: dict[Direction, tuple[str, ...]] = {
    Direction.AR: ("buyer", "customer", "party"),
    Direction.AP: ("supplier", "vendor", "buyer"),
}
_PARTY_FIELDS = ("id", "name", "trn", "address", "country", "city", "postcode", "subdivision", "electronic_address")

# header field -> alternative column names, first non-blank wins
_HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "invoice_type": ("invoice_type_code", "invoice_type"),
    "payment_due_date": ("payment_due_date", "due_date"),
    "spec_id": ("spec_id", "specification_id"),
    "business_process": ("business_process", "business_process_type"),
}
_LINE_ALIASES: dict[str, tuple[str, ...]] = {
    "description": ("description", "item_name"),
    "item_name": ("item_name", "description"),
    "line_total_excl_vat": ("line_total_excl_vat", "line_net_amount"),
    "unit_of_measure": ("unit_of_measure", "unit_code"),
}

_HEADER_DECIMALS = frozenset({
    "total_excl_vat", "vat_total", "total_incl_vat", "fx_rate", "amount_due", "tax_category_rate",
    "document_level_allowance_total", "document_level_charge_total", "rounding_amount",
})
_LINE_DECIMALS = frozenset({
    "quantity", "unit_price", "line_discount", "line_total_excl_vat", "vat_rate", "vat_amount",
    "line_allowance_amount", "line_charge_amount",
})


class IngestionError(ValueError):
    """A dataset file could not be read as CSV."""


# =============================================================================
# CSV
# =============================================================================

def parse_csv(text: str) -> list[dict[str, str]]:
    """
    Parse CSV text into row dicts keyed by trimmed column name.

    Raises:
        IngestionError: When pandas cannot tokenize the text
    """
    if not text or not text.strip():
        return []
    try:
        frame = pd.read_csv(io.StringIO(text.strip()), dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        return []
    except pd.errors.ParserError as e:
        raise IngestionError(f"Malformed CSV: {e}") from e

    frame.columns = [str(column).strip() for column in frame.columns]
    frame = frame.apply(lambda column: column.str.strip())
    return frame.to_dict(orient="records")


def _text(row: Row, *keys: str) -> str | None:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _decimal(row: Row, *keys: str) -> Decimal | None:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            number = to_number(value)
            if number is not None:
                return number
    return None


def _integer(value: str | None) -> int | None:
    number = to_number(value)
    if number is None or number != number.to_integral_value():
        return None
    return int(number)


def _extra(row: Row, consumed: set[str]) -> dict[str, str]:
    return {key: value for key, value in row.items() if key not in consumed}


# =============================================================================
# Records
# =============================================================================

def parse_parties(rows: Sequence[Row], direction: Direction = DEFAULT_DIRECTION) -> list[Buyer]:
    """
    Party records; for AP, supplier_* and vendor_* columns fill the buyer fields.
    """
    prefixes = _PARTY_PREFIXES[direction]
    consumed = {f"{prefix}_{name}" for prefix in ("buyer", "customer", "party", "supplier", "vendor")
                for name in _PARTY_FIELDS}

    parties = []
    for index, row in enumerate(rows):
        values = {
            name: _text(row, *(f"{prefix}_{name}" for prefix in prefixes))
            for name in _PARTY_FIELDS
        }
        parties.append(Buyer(
            buyer_id=values["id"] or "",
            buyer_name=values["name"] or "",
            buyer_trn=values["trn"],
            buyer_address=values["address"],
            buyer_country=values["country"],
            buyer_city=values["city"],
            buyer_postcode=values["postcode"],
            buyer_subdivision=values["subdivision"],
            buyer_electronic_address=values["electronic_address"],
            source_row_number=index + 2,
            extra=_extra(row, consumed),
        ))
    return parties


def parse_headers(rows: Sequence[Row], direction: Direction = DEFAULT_DIRECTION) -> list[InvoiceHeader]:
    """
    Invoice headers. For AP, supplier_id (or vendor_id) is kept and also
    mirrored into buyer_id so counterparty lookups work in both directions.
    """
    counterparty_keys = (
        ("supplier_id", "vendor_id", "buyer_id") if direction == Direction.AP
        else ("buyer_id", "customer_id", "party_id")
    )
    modelled = {f.name for f in fields(InvoiceHeader)} - {"extra", "direction", "source_row_number"}
    consumed = modelled | set(counterparty_keys) | {k for keys in _HEADER_ALIASES.values() for k in keys}

    headers = []
    for index, row in enumerate(rows):
        values: dict[str, object] = {}
        for name in modelled:
            keys = _HEADER_ALIASES.get(name, (name,))
            values[name] = _decimal(row, *keys) if name in _HEADER_DECIMALS else _text(row, *keys)

        counterparty = _text(row, *counterparty_keys) or ""
        values.update(
            invoice_id=values["invoice_id"] or "",
            invoice_number=values["invoice_number"] or "",
            issue_date=values["issue_date"] or "",
            seller_trn=values["seller_trn"] or "",
            currency=values["currency"] or "",
            buyer_id=counterparty,
            supplier_id=(counterparty or None) if direction == Direction.AP else values["supplier_id"],
        )
        headers.append(InvoiceHeader(
            **values,
            direction=direction,
            source_row_number=index + 2,
            extra=_extra(row, consumed),
        ))
    return headers


def parse_lines(rows: Sequence[Row]) -> list[InvoiceLine]:
    modelled = {f.name for f in fields(InvoiceLine)} - {"extra", "source_row_number"}
    consumed = modelled | {k for keys in _LINE_ALIASES.values() for k in keys}

    lines = []
    for index, row in enumerate(rows):
        values: dict[str, object] = {}
        for name in modelled:
            keys = _LINE_ALIASES.get(name, (name,))
            values[name] = _decimal(row, *keys) if name in _LINE_DECIMALS else _text(row, *keys)
        values.update(
            line_id=values["line_id"] or "",
            invoice_id=values["invoice_id"] or "",
            line_number=_integer(row.get("line_number")),
        )
        lines.append(InvoiceLine(**values, source_row_number=index + 2, extra=_extra(row, consumed)))
    return lines


def build_context_from_csv(
    buyers_text: str = "",
    headers_text: str = "",
    lines_text: str = "",
    direction: Direction = DEFAULT_DIRECTION,
) -> DataContext:
    """
    Parse the three dataset files and index them.

    Raises:
        IngestionError: When any file is not valid CSV
    """
    context = build_data_context(
        parse_parties(parse_csv(buyers_text), direction),
        parse_headers(parse_csv(headers_text), direction),
        parse_lines(parse_csv(lines_text)),
    )
    counts = context.counts()
    logger.info(
        f"Loaded {direction.value} dataset: {counts['buyers']} parties, "
        f"{counts['headers']} headers, {counts['lines']} lines"
    )
    return context


# =============================================================================
# Samples
# =============================================================================

def _sample_name(direction: Direction, dataset: Dataset, scenario: str) -> str:
    prefix = direction.value.lower()
    if dataset == Dataset.BUYERS:
        kind = "suppliers" if direction == Direction.AP else "buyers"
    else:
        kind = dataset.value
    return f"{prefix}_{kind}_{scenario}.csv"


def sample_csv_texts(
    direction: Direction = DEFAULT_DIRECTION,
    scenario: str = "positive",
) -> dict[Dataset, str]:
    """Raw text of the bundled sample files, keyed by dataset."""
    if scenario not in SCENARIOS:
        raise ValueError(f"Unknown sample scenario '{scenario}', expected one of {', '.join(SCENARIOS)}")
    folder = resources.files("pintae").joinpath("samples")
    return {
        dataset: folder.joinpath(_sample_name(direction, dataset, scenario)).read_text(encoding="utf-8")
        for dataset in Dataset
    }


def load_sample_dataset(
    direction: Direction = DEFAULT_DIRECTION,
    scenario: str = "positive",
) -> DataContext:
    """
    Load a bundled sample dataset.

    The positive scenario passes every built-in and pack check; the
    negative one seeds known violations.
    """
    texts = sample_csv_texts(direction, scenario)
    return build_context_from_csv(
        texts[Dataset.BUYERS],
        texts[Dataset.HEADERS],
        texts[Dataset.LINES],
        direction,
    )
