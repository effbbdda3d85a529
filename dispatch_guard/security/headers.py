"""Trust layer — Security headers and content-security-policy.

A fresh nonce is generated on every call and embedded in the CSP
``script-src``; the same nonce is returned so the caller can attach it to
inline scripts/styles emitted in the same response cycle.  Nonces are never
cached.
"""

from __future__ import annotations

import secrets

from dispatch_guard.config import HeadersConfig
from dispatch_guard.security.models import SecurityHeaders


def generate_nonce(num_bytes: int = 16) -> str:
    return secrets.token_hex(num_bytes)


def build_csp(nonce: str, config: HeadersConfig | None = None) -> str:
    cfg = config or HeadersConfig()

    def sources(*base: str, extra: list[str]) -> str:
        return " ".join([*base, *extra])

    return "; ".join([
        "default-src 'self'",
        "script-src " + sources("'self'", f"'nonce-{nonce}'", extra=cfg.script_sources),
        "style-src " + sources("'self'", "'unsafe-inline'", extra=cfg.style_sources),
        "font-src " + sources("'self'", extra=cfg.font_sources),
        "img-src 'self' data: https: blob:",
        "connect-src " + sources("'self'", extra=cfg.connect_sources),
        "frame-src 'none'",
        "object-src 'none'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'none'",
        "upgrade-insecure-requests",
    ])


def build_security_headers(config: HeadersConfig | None = None) -> SecurityHeaders:
    cfg = config or HeadersConfig()
    nonce = generate_nonce(cfg.nonce_bytes)
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Strict-Transport-Security": f"max-age={cfg.hsts_max_age}; includeSubDomains",
        "Referrer-Policy": cfg.referrer_policy,
        "Content-Security-Policy": build_csp(nonce, cfg),
        "X-Nonce": nonce,
    }
    return SecurityHeaders(headers=headers, nonce=nonce)
