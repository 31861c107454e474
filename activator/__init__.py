"""
Store key activation engine.

Resolves pending activations, validates and redeems license keys against
the storefront account, and tracks per-key progress for bundles.
"""

__version__ = "1.0.0"
