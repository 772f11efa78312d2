#!/usr/bin/env python3
"""
Sales Tax Service - Entry Point

Serves order sales tax calculation over HTTP and offers the same
calculation from the command line.

Usage:
    python main.py serve --port 3000 --rates data/tax_rates.csv
    python main.py calculate --order examples/sample_order.json
    python main.py lookup --zip 90210
    python main.py lookup --state California
"""

from tax_service.cli import main

if __name__ == "__main__":
    main()
