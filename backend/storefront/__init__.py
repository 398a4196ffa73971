"""Storefront reservations and settlement backend."""
