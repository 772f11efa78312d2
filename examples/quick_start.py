#!/usr/bin/env python3
"""
Quick Start Example
===================

Demonstrates loading the bundled rate table and resolving the sales tax
for an order shipped from Austin, TX to Beverly Hills, CA.

Usage:
    python examples/quick_start.py
"""

from decimal import Decimal
from pathlib import Path

from tax_service.calculator import LineItem, OrderRequest, TaxResolver
from tax_service.rates import JurisdictionIndex

RATES = Path(__file__).resolve().parent.parent / "data" / "tax_rates.csv"


def main() -> None:
    # Load the jurisdiction index once and share the resolver
    index = JurisdictionIndex.from_csv(RATES)
    resolver = TaxResolver(index)

    # Destination-based: the buyer's jurisdiction supplies the rates
    order = OrderRequest(
        seller_zip="73301",
        seller_state="Texas",
        buyer_zip="90210",
        buyer_state="California",
        products=[
            LineItem(price=Decimal("100.00"), quantity=1),
            LineItem(price=Decimal("24.99"), quantity=3),
        ],
        delivery_method="Shipping",
        tax_rule_type="Destination-Based",
    )

    result = resolver.resolve(order)

    print(f"Tax Region:     {result.tax_region}")
    print(f"Total Price:    ${result.total_price:.2f}")
    print(f"State Tax:      ${result.state_tax:.2f}")
    print(f"County Tax:     ${result.county_tax:.2f}")
    print(f"City Tax:       ${result.city_tax:.2f}")
    print(f"Special Tax:    ${result.special_tax:.2f}")
    print(f"Total Tax:      ${result.total_tax:.2f}")
    print(f"Final Total:    ${result.final_total:.2f}")

    # Same order sourced from the seller with a group discount
    print("\n--- Origin-Based, 50% Reduction ---")
    order.tax_rule_type = "Origin-Based"
    order.tax_override_group = "50% Reduction"

    reduced = resolver.resolve(order)
    for key, value in reduced.to_dict().items():
        print(f"{key + ':':<16}{value}")


if __name__ == "__main__":
    main()
