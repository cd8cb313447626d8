"""State/store layer.

This package owns the relay's authoritative snapshot. Nothing else in the
relay is allowed to read or replace it outside the store's lock.
"""
