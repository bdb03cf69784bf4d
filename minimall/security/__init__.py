"""Request gating: shop validation, HMAC verification, rate limiting."""
