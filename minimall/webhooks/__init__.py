"""Webhook inbound system.

Receives Shopify webhooks; each delivery is signature-verified, rate limited,
optionally deduplicated and dispatched to its topic handler.
"""
