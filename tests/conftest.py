"""
Pytest configuration and fixtures for the PINT-AE compliance engine.
"""

from decimal import Decimal

import pytest

from pintae.config import Settings
from pintae.domain.models import (
    Buyer,
    DataContext,
    Direction,
    InvoiceHeader,
    InvoiceLine,
    build_data_context,
)
from pintae.services.ingestion import load_sample_dataset


SELLER_TRN = "100000000000001"
BUYER_TRN = "100000000000003"


def make_buyer(**overrides) -> Buyer:
    values = dict(
        buyer_id="B001",
        buyer_name="Acme Corporation LLC",
        buyer_trn=BUYER_TRN,
        buyer_address="Office 42 Business Bay Tower",
        buyer_country="AE",
        buyer_city="Dubai",
        buyer_subdivision="AE-DU",
        buyer_electronic_address="acme@peppol.ae",
    )
    values.update(overrides)
    return Buyer(**values)


def make_header(**overrides) -> InvoiceHeader:
    values = dict(
        invoice_id="INV001",
        invoice_number="UAE-2025-0001",
        issue_date="2025-01-15",
        invoice_type="380",
        seller_trn=SELLER_TRN,
        seller_name="Dariba Tax Technologies LLC",
        seller_address="Al Sila Tower ADGM",
        seller_city="Abu Dhabi",
        seller_country="AE",
        seller_subdivision="AE-AZ",
        seller_electronic_address="dariba@peppol.ae",
        buyer_id="B001",
        currency="AED",
        transaction_type_code="01000000",
        payment_due_date="2025-02-14",
        payment_means_code="30",
        fx_rate=Decimal("1"),
        total_excl_vat=Decimal("1000.00"),
        vat_total=Decimal("50.00"),
        total_incl_vat=Decimal("1050.00"),
        amount_due=Decimal("1050.00"),
        tax_category_code="S",
        tax_category_rate=Decimal("5"),
    )
    values.update(overrides)
    return InvoiceHeader(**values)


def make_line(**overrides) -> InvoiceLine:
    values = dict(
        line_id="L001",
        invoice_id="INV001",
        line_number=1,
        description="Consulting Services - Tax Advisory",
        quantity=Decimal("10"),
        unit_of_measure="EA",
        unit_price=Decimal("100.00"),
        line_discount=Decimal("0"),
        line_total_excl_vat=Decimal("1000.00"),
        vat_rate=Decimal("5"),
        vat_amount=Decimal("50.00"),
        tax_category_code="S",
    )
    values.update(overrides)
    return InvoiceLine(**values)


def make_context(buyers=None, headers=None, lines=None) -> DataContext:
    """One clean invoice unless the caller passes its own records."""
    return build_data_context(
        [make_buyer()] if buyers is None else buyers,
        [make_header()] if headers is None else headers,
        [make_line()] if lines is None else lines,
    )


@pytest.fixture
def clean_context() -> DataContext:
    """A single invoice that passes every check."""
    return make_context()


@pytest.fixture
def ar_positive() -> DataContext:
    return load_sample_dataset(Direction.AR, "positive")


@pytest.fixture
def ap_positive() -> DataContext:
    return load_sample_dataset(Direction.AP, "positive")


@pytest.fixture
def ar_negative() -> DataContext:
    return load_sample_dataset(Direction.AR, "negative")


@pytest.fixture
def settings() -> Settings:
    """Sequential settings with no configured entities."""
    return Settings(max_workers=1, our_entity_trns=[])
