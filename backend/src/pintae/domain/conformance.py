"""
Central conformance configuration for PINT-AE.

Every enumerated value, pattern and threshold the checks rely on lives
here, so a specification update touches one module.
"""

import re
from decimal import Decimal


SPEC_VERSION_LABEL = "PINT-AE 2025-Q2 - UAE DR v1.0.1"
REGISTRY_VERSION = "2025-Q2"

# Tolerance for monetary reconciliation (absorbs rounding in ERP exports)
MONETARY_TOLERANCE = Decimal("0.01")

# Readiness thresholds, percent
MANDATORY_MAPPING_COVERAGE_THRESHOLD = 100.0
MANDATORY_POPULATION_THRESHOLD = 99.0
POPULATION_WARNING_THRESHOLD = 99.0

ALLOWED_VAT_RATES: frozenset[Decimal] = frozenset({Decimal("0"), Decimal("5")})

# UNTDID 1001 subset used by PINT-AE
INVOICE_TYPE_CODES: frozenset[str] = frozenset({"380", "381", "383", "384", "386", "389"})
CREDIT_NOTE_TYPE_CODES: frozenset[str] = frozenset({"381", "CREDIT_NOTE"})

# UNTDID 4461 subset used by PINT-AE
PAYMENT_MEANS_CODES: frozenset[str] = frozenset({
    "10", "20", "30", "31", "42", "48", "49", "57", "58", "59", "ZZZ",
})

UAE_SUBDIVISION_CODES: tuple[str, ...] = (
    "AE-AZ",  # Abu Dhabi
    "AE-AJ",  # Ajman
    "AE-FU",  # Fujairah
    "AE-SH",  # Sharjah
    "AE-DU",  # Dubai
    "AE-RK",  # Ras Al Khaimah
    "AE-UQ",  # Umm Al Quwain
)

TAX_CATEGORY_CODES: frozenset[str] = frozenset({"S", "Z", "E", "O", "AE"})

BASE_CURRENCY = "AED"
SPECIFICATION_IDENTIFIER = "urn:peppol:pint:billing-1@ae-1"
BUSINESS_PROCESS_TYPES: tuple[str, ...] = ("urn:peppol:bis:billing",)

COUNTRY_PATTERN = r"^[A-Z]{2}$"
TRN_PATTERN = r"^\d{15}$"
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
CURRENCY_PATTERN = r"^[A-Z]{3}$"
TRANSACTION_TYPE_PATTERN = r"^[01]{8}$"

# Active ISO 4217 alphabetic codes
ISO4217_CODES: frozenset[str] = frozenset("""
AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BHD BIF BMD BND BOB
BRL BSD BTN BWP BYN BZD CAD CDF CHF CLP CNY COP CRC CUP CVE CZK DJF DKK DOP
DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS GIP GMD GNF GTQ GYD HKD HNL HTG HUF
IDR ILS INR IQD IRR ISK JMD JOD JPY KES KGS KHR KMF KPW KRW KWD KYD KZT LAK
LBP LKR LRD LSL LYD MAD MDL MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN MYR MZN
NAD NGN NIO NOK NPR NZD OMR PAB PEN PGK PHP PKR PLN PYG QAR RON RSD RUB RWF
SAR SBD SCR SDG SEK SGD SHP SLE SOS SRD SSP STN SVC SYP SZL THB TJS TMT TND
TOP TRY TTD TWD TZS UAH UGX USD UYU UZS VES VND VUV WST XAF XCD XOF XPF YER
ZAR ZMW ZWG
""".split())

CODELISTS: dict[str, frozenset[str]] = {
    "ISO4217": ISO4217_CODES,
    "UNCL1001": INVOICE_TYPE_CODES,
    "UNCL4461": PAYMENT_MEANS_CODES,
    "UAE_EMIRATES": frozenset(UAE_SUBDIVISION_CODES),
    "PINT_AE_TAX_CATEGORY": TAX_CATEGORY_CODES,
}


def is_code_in_codelist(codelist: str, code: str) -> bool:
    """
    Check membership in a named code list.

    Unknown code list names never match. Codes are compared after trimming.
    """
    values = CODELISTS.get(codelist)
    if values is None:
        return False
    return code.strip() in values


def matches(pattern: str, value: str) -> bool:
    """Search-semantics regex test used by pattern checks."""
    return re.search(pattern, value) is not None
