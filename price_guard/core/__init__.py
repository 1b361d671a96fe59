"""
Core modules for Price Guard.

This package contains the usage ledger, price caching, rate limiting
and usage advice shared by the price clients.
"""
