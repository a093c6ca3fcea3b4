"""Storefront backend: catalog, cart and order placement over MongoDB."""

__version__ = "0.3.0"
