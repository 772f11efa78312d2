"""
Sales Tax Service
=================

Order-level US sales tax calculation from buyer and seller ZIP codes,
served over HTTP for storefront checkouts.

Modules:
    rates      - ZIP code jurisdiction rate index and state name table
    calculator - Order tax resolver (sourcing, exemptions, overrides)
    api        - FastAPI application exposing POST /calculate-tax
    config     - Environment-driven settings
    log        - Logging setup
    cli        - Command-line interface
"""

__version__ = "1.0.0"

from tax_service.rates import JurisdictionIndex, JurisdictionRecord
from tax_service.calculator import (
    OrderRequest,
    TaxBreakdown,
    TaxResolver,
    calculate_tax,
)

__all__ = [
    "JurisdictionIndex",
    "JurisdictionRecord",
    "OrderRequest",
    "TaxBreakdown",
    "TaxResolver",
    "calculate_tax",
]
