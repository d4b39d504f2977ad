"""
Fee policy constants.

All amounts are in the currency's smallest unit (cents, kobo, yen).
Rates are Decimals so products round deterministically.

Fee model versions covered:
    legacy       flat percentage of gross, classification-dependent
    flat         8% (+1.5% cross-border), absorbed or passed to the payer
    progressive  tiered rate with per-currency absolute caps (historical)
    split_v1     9% total split between payer and creator (+1.5% cross-border)
"""

from __future__ import annotations

from decimal import Decimal

DEFAULT_PLATFORM_COUNTRY = "US"

# =============================================================================
# Split Model (current default)
# =============================================================================

# Total platform rate; each side carries half
SPLIT_TOTAL_RATE = Decimal("0.09")

# Extra rate for creators paid out outside the platform's home jurisdiction,
# divided between payer and creator the same way as the base rate
CROSS_BORDER_BUFFER_RATE = Decimal("0.015")

# Share of a processor-minimum deficit charged to the payer (rounded up)
CAPPED_DEFICIT_PAYER_SHARE = Decimal("0.6")

# =============================================================================
# Flat Model
# =============================================================================

FLAT_RATE = Decimal("0.08")

# =============================================================================
# Legacy Model
# =============================================================================

LEGACY_RATES = {
    "personal": Decimal("0.10"),
    "service": Decimal("0.08"),
}

# =============================================================================
# Progressive Model (historical rows only)
# =============================================================================

PROGRESSIVE_TIERS = {
    "service": {
        "base_rate": Decimal("0.08"),
        "min_rate": Decimal("0.02"),
        "absolute_caps": {
            "USD": 7500,
            "NGN": 12000000,
            "ZAR": 140000,
            "KES": 1150000,
            "GBP": 6000,
            "EUR": 7000,
        },
    },
    "personal": {
        "base_rate": Decimal("0.10"),
        "min_rate": Decimal("0.03"),
        "absolute_caps": {
            "USD": 500,
            "NGN": 800000,
            "ZAR": 9500,
            "KES": 77000,
            "GBP": 400,
            "EUR": 470,
        },
    },
}

# =============================================================================
# Processor Estimates
# =============================================================================

# (percent, fixed) charged by the card processor per currency
PROCESSOR_FEES = {
    "USD": (Decimal("0.029"), 30),
    "EUR": (Decimal("0.029"), 25),
    "GBP": (Decimal("0.029"), 20),
    "CAD": (Decimal("0.029"), 30),
    "AUD": (Decimal("0.029"), 30),
    "ZAR": (Decimal("0.029"), 500),
    "KES": (Decimal("0.015"), 5000),
    "NGN": (Decimal("0.015"), 10000),
    "GHS": (Decimal("0.019"), 0),
}
DEFAULT_PROCESSOR_FEE = (Decimal("0.029"), 30)

# Minimum margin the platform keeps above the processor fee
MIN_MARGIN_CENTS = {
    "USD": 25,
    "EUR": 25,
    "GBP": 20,
    "CAD": 35,
    "AUD": 35,
    "ZAR": 500,
    "KES": 2500,
    "NGN": 25000,
    "GHS": 250,
}
DEFAULT_MIN_MARGIN_CENTS = 25

# =============================================================================
# Auditing
# =============================================================================

# Allowed |expected - actual| fee difference before an alert
FEE_AUDIT_TOLERANCE_CENTS = 1
# Capped rows follow processor minimums, not the nominal rate
CAPPED_FEE_AUDIT_TOLERANCE_RATE = Decimal("0.05")

ZERO_DECIMAL_CURRENCIES = frozenset(
    [
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    ]
)
