"""Shopify OAuth, sessions and session tokens."""
