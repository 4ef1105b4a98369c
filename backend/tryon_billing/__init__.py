"""Try-on billing core: entitlements, credit ledger, and offer decisions."""

__version__ = "0.1.0"
