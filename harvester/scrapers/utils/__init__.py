"""Scraper utilities for pacing, failure isolation, fingerprints and normalization."""

from .rate_limiter import AdaptiveRateLimiter, RateLimiterState
from .circuit_breaker import CircuitBreaker, CircuitState
from .fingerprint import (
    Fingerprint,
    FingerprintProvider,
    USER_AGENTS,
    MOBILE_USER_AGENTS,
)
from .normalizer import (
    PriceNormalizer,
    CategoryClassifier,
    BrandResolver,
    clean_text,
    normalize_key,
    normalize_url,
    CATEGORY_KEYWORDS,
    KNOWN_BRANDS,
)
from .retry import BackoffPolicy, http_retry, persistence_retry


__all__ = [
    # Pacing and failure isolation
    "AdaptiveRateLimiter",
    "RateLimiterState",
    "CircuitBreaker",
    "CircuitState",
    # Fingerprints
    "Fingerprint",
    "FingerprintProvider",
    "USER_AGENTS",
    "MOBILE_USER_AGENTS",
    # Normalization
    "PriceNormalizer",
    "CategoryClassifier",
    "BrandResolver",
    "clean_text",
    "normalize_key",
    "normalize_url",
    "CATEGORY_KEYWORDS",
    "KNOWN_BRANDS",
    # Retry
    "BackoffPolicy",
    "http_retry",
    "persistence_retry",
]
