"""
Café Aroma - Storefront Backend

Accounts, session tokens and account security for the Café Aroma store.
"""

__version__ = "1.0.0"
