"""
Storefront Core Module

This package contains the cart synchronization and pricing engine:
- cart: line items, store, sync controller, pricing, checkout
- money: Decimal helpers and currency formatting
- session: current customer lookup for checkout
- config: environment-driven settings
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
