"""Tests for the scraper utilities.

Tests cover:
- Circuit breaker (threshold, open fast-fail, half-open trial call, neutral errors)
- Adaptive rate limiter (speed-up streak, slowdowns, bounds, pacing)
- Attempt backoff
- Price, text, category and brand normalization
- Fingerprint generation
- HTML, JSON and sitemap extraction helpers
"""

import json
import random
from decimal import Decimal

import pytest

from harvester.core.exceptions import BreakerOpenError, ExtractionError, NavigationError
from harvester.models.outcome import ErrorKind
from harvester.scrapers.utils.circuit_breaker import CircuitBreaker, CircuitState
from harvester.scrapers.utils.extraction import (
    is_product_url,
    name_from_url,
    product_meta,
    products_from_json,
    sitemap_urls,
    snapshot_elements,
)
from harvester.scrapers.utils.fingerprint import (
    WEBGL_PROFILES,
    FingerprintProvider,
    accept_language_for,
    is_chromium,
    platform_for,
)
from harvester.scrapers.utils.normalizer import (
    BrandResolver,
    CategoryClassifier,
    PriceNormalizer,
    clean_text,
    extract_currency_token,
    normalize_key,
    normalize_url,
)
from harvester.scrapers.utils.rate_limiter import AdaptiveRateLimiter
from harvester.scrapers.utils.retry import BackoffPolicy

from tests.conftest import make_outcome, no_sleep, product_card


# ============================================================================
# TESTS: CIRCUIT BREAKER
# ============================================================================

class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    async def test_opens_after_threshold_and_fails_fast(self, fake_clock):
        """Five failures at threshold 5 open the circuit; the sixth call never runs."""
        breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=300, clock=fake_clock)
        calls = []

        async def failing():
            calls.append(1)
            raise NavigationError("shop", "net::ERR_CONNECTION_RESET")

        for _ in range(5):
            with pytest.raises(NavigationError):
                await breaker.execute("shop", failing)

        assert breaker.state("shop") == CircuitState.OPEN
        assert len(calls) == 5

        with pytest.raises(BreakerOpenError) as exc_info:
            await breaker.execute("shop", failing)

        assert len(calls) == 5
        assert exc_info.value.retry_in_seconds == pytest.approx(300)

    async def test_stays_closed_below_threshold(self, fake_clock):
        """Failures interrupted by a success never reach the threshold."""
        breaker = CircuitBreaker(failure_threshold=3, clock=fake_clock)

        async def failing():
            raise NavigationError("shop", "boom")

        async def succeeding():
            return "ok"

        for _ in range(2):
            with pytest.raises(NavigationError):
                await breaker.execute("shop", failing)
        assert await breaker.execute("shop", succeeding) == "ok"
        for _ in range(2):
            with pytest.raises(NavigationError):
                await breaker.execute("shop", failing)

        assert breaker.state("shop") == CircuitState.CLOSED

    async def test_half_open_trial_closes_on_success(self, fake_clock):
        """After the recovery timeout one trial call runs; success closes the circuit."""
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60, clock=fake_clock)

        async def failing():
            raise NavigationError("shop", "boom")

        async def succeeding():
            return 42

        with pytest.raises(NavigationError):
            await breaker.execute("shop", failing)
        assert breaker.state("shop") == CircuitState.OPEN

        fake_clock.advance(61)
        assert await breaker.execute("shop", succeeding) == 42
        assert breaker.state("shop") == CircuitState.CLOSED

    async def test_half_open_trial_failure_reopens(self, fake_clock):
        """A failed trial call reopens the circuit immediately."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60, clock=fake_clock)

        async def failing():
            raise NavigationError("shop", "boom")

        for _ in range(2):
            with pytest.raises(NavigationError):
                await breaker.execute("shop", failing)
        fake_clock.advance(61)

        with pytest.raises(NavigationError):
            await breaker.execute("shop", failing)

        assert breaker.state("shop") == CircuitState.OPEN
        with pytest.raises(BreakerOpenError):
            await breaker.execute("shop", failing)

    async def test_extraction_errors_are_neutral(self, fake_clock):
        """Extraction failures propagate without counting toward the threshold."""
        breaker = CircuitBreaker(failure_threshold=1, clock=fake_clock)

        async def empty_page():
            raise ExtractionError("shop", "standard")

        for _ in range(3):
            with pytest.raises(ExtractionError):
                await breaker.execute("shop", empty_page)

        assert breaker.state("shop") == CircuitState.CLOSED
        assert breaker.snapshot()["shop"]["consecutive_failures"] == 0

    async def test_targets_are_independent(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, clock=fake_clock)

        async def failing():
            raise NavigationError("a", "boom")

        async def succeeding():
            return True

        with pytest.raises(NavigationError):
            await breaker.execute("a", failing)

        assert breaker.state("a") == CircuitState.OPEN
        assert await breaker.execute("b", succeeding) is True
        assert breaker.snapshot()["a"]["times_opened"] == 1

    def test_rejects_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)


# ============================================================================
# TESTS: RATE LIMITER
# ============================================================================

class TestAdaptiveRateLimiter:
    """Tests for AdaptiveRateLimiter."""

    def test_fast_success_streak_speeds_up_within_floor(self, target):
        """From 2000 ms, five fast successes reduce the delay, never below 1000 ms."""
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(1))
        assert limiter.current_delay(target) == 2000

        for _ in range(4):
            limiter.report(target, make_outcome(response_ms=300))
        assert limiter.current_delay(target) == 2000

        limiter.report(target, make_outcome(response_ms=300))
        assert limiter.current_delay(target) == pytest.approx(1800)

        for _ in range(50):
            limiter.report(target, make_outcome(response_ms=300))
        assert limiter.current_delay(target) == pytest.approx(1000)

    def test_block_slows_down_strongly(self, target):
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(1))

        delay = limiter.report(target, make_outcome(success=False, error_kind=ErrorKind.BLOCKED))

        assert 5000 <= delay <= 6000

    def test_timeout_slows_down_moderately(self, target):
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(1))

        delay = limiter.report(target, make_outcome(success=False, error_kind=ErrorKind.TIMEOUT))

        assert 2400 <= delay <= 3000

    def test_slowdowns_are_capped_at_max_delay(self, target):
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(1))

        for _ in range(10):
            limiter.report(target, make_outcome(success=False, error_kind=ErrorKind.BLOCKED))

        assert limiter.current_delay(target) == 10000

    def test_extraction_failure_keeps_delay(self, target):
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(1))

        limiter.report(target, make_outcome(success=False, error_kind=ErrorKind.EXTRACTION))

        assert limiter.current_delay(target) == 2000

    def test_slow_success_slows_down(self, target):
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(1))

        limiter.report(target, make_outcome(response_ms=8000))

        assert limiter.current_delay(target) == pytest.approx(2400)

    def test_failure_resets_success_streak(self, target):
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(1))

        for _ in range(4):
            limiter.report(target, make_outcome(response_ms=300))
        limiter.report(target, make_outcome(success=False, error_kind=ErrorKind.EXTRACTION))
        limiter.report(target, make_outcome(response_ms=300))

        assert limiter.current_delay(target) == 2000
        assert limiter.snapshot()[target.id]["consecutive_successes"] == 1

    def test_moderate_successes_do_not_count_toward_speedup(self, target):
        """Successes between the fast and slow thresholds break the fast streak."""
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(1))

        for _ in range(4):
            limiter.report(target, make_outcome(response_ms=3000))
        limiter.report(target, make_outcome(response_ms=1000))

        assert limiter.current_delay(target) == 2000
        assert limiter.snapshot()[target.id]["consecutive_successes"] == 5
        assert limiter.snapshot()[target.id]["fast_successes"] == 1

    def test_moderate_success_resets_fast_streak(self, target):
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(1))

        for _ in range(4):
            limiter.report(target, make_outcome(response_ms=300))
        limiter.report(target, make_outcome(response_ms=2500))
        for _ in range(4):
            limiter.report(target, make_outcome(response_ms=300))

        assert limiter.current_delay(target) == 2000

        limiter.report(target, make_outcome(response_ms=300))
        assert limiter.current_delay(target) == pytest.approx(1800)

    def test_delay_stays_within_bounds_under_mixed_outcomes(self, target):
        """A long random mix of outcomes never pushes the delay out of [min, max]."""
        rng = random.Random(2026)
        limiter = AdaptiveRateLimiter(sleep=no_sleep, rng=random.Random(9))
        profile = target.rate_profile
        failures = [ErrorKind.BLOCKED, ErrorKind.TIMEOUT, ErrorKind.NAVIGATION, ErrorKind.EXTRACTION]

        for _ in range(2000):
            if rng.random() < 0.6:
                outcome = make_outcome(response_ms=rng.choice([100, 900, 1999, 2000, 3500, 5001, 9000]))
            else:
                outcome = make_outcome(success=False, error_kind=rng.choice(failures))

            delay = limiter.report(target, outcome)

            assert profile.min_delay_ms <= delay <= profile.max_delay_ms
            assert limiter.current_delay(target) == delay

    async def test_wait_spaces_requests(self, target, fake_clock):
        """The first request goes immediately; the next waits the current delay."""
        slept = []

        async def record_sleep(seconds):
            slept.append(seconds)

        limiter = AdaptiveRateLimiter(clock=fake_clock, sleep=record_sleep)

        assert await limiter.wait(target) == 0.0
        assert await limiter.wait(target) == pytest.approx(2.0)
        assert slept == [pytest.approx(2.0)]

        fake_clock.advance(10)
        assert await limiter.wait(target) == 0.0


# ============================================================================
# TESTS: BACKOFF
# ============================================================================

class TestBackoffPolicy:
    """Tests for BackoffPolicy."""

    def test_exponential_without_jitter(self):
        policy = BackoffPolicy(base_seconds=1.0, max_seconds=30.0, jitter=0.0)

        assert [policy.get_sleep(attempt) for attempt in range(6)] == [1, 2, 4, 8, 16, 30]

    def test_jitter_stays_in_band(self):
        policy = BackoffPolicy(base_seconds=2.0, jitter=0.3, rng=random.Random(7))

        for _ in range(50):
            assert 1.4 <= policy.get_sleep(0) <= 2.6

    def test_rejects_invalid_jitter(self):
        with pytest.raises(ValueError):
            BackoffPolicy(jitter=1.0)


# ============================================================================
# TESTS: NORMALIZER
# ============================================================================

class TestPriceNormalizer:
    """Tests for PriceNormalizer."""

    @pytest.mark.parametrize(
        "raw, currency, expected",
        [
            ("$1.990", "CLP", Decimal("1990")),
            ("$ 12.345.678", "CLP", Decimal("12345678")),
            ("$12.99", "USD", Decimal("12.99")),
            ("1,234.56", "USD", Decimal("1234.56")),
            ("1.234,56", "EUR", Decimal("1234.56")),
            ("Precio: $890 c/u", "CLP", Decimal("890")),
        ],
    )
    def test_clean_price_string(self, raw, currency, expected):
        assert PriceNormalizer.clean_price_string(raw, currency) == expected

    @pytest.mark.parametrize("raw", [None, "", "Agotado", "sin precio"])
    def test_clean_price_string_without_number(self, raw):
        assert PriceNormalizer.clean_price_string(raw) is None

    def test_extract_currency_token(self):
        assert extract_currency_token("Leche 1L\n$1.090") == "$1.090"
        assert extract_currency_token("no price here") is None


class TestTextNormalization:
    """Tests for text cleaning and key normalization."""

    def test_clean_text_collapses_whitespace_and_controls(self):
        assert clean_text("  Leche​  Entera\n\t1L ") == "Leche Entera 1L"
        assert clean_text(None) == ""

    def test_normalize_key_ignores_case_and_punctuation(self):
        assert normalize_key("  Coca-Cola 1.5L ") == normalize_key("coca-cola 1.5l")
        assert normalize_key("Coca-Cola 1.5L") == "cocacola 15l"
        assert normalize_key(None) == ""

    def test_normalize_url_strips_tracking_parameters(self):
        url = "https://www.shop.test/p/leche?sku=1&utm_source=mail&gclid=abc#reviews"

        assert normalize_url(url) == "https://www.shop.test/p/leche?sku=1"


class TestCategoryClassifier:
    """Tests for CategoryClassifier."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Bebida Coca-Cola Zero 1.5L", "bebidas"),
            ("Leche Entera Colun 1L", "lacteos"),
            ("Taladro Percutor Bosch 600W", "herramientas"),
            ("Detergente Líquido 3L", "aseo"),
            ("Producto Misterioso", None),
        ],
    )
    def test_classify(self, name, expected):
        assert CategoryClassifier.classify(name) == expected

    def test_classify_matches_without_accents(self):
        assert CategoryClassifier.classify("JABON DE GLICERINA") == "aseo"


class TestBrandResolver:
    """Tests for BrandResolver."""

    def test_explicit_brand_text_wins(self):
        assert BrandResolver().resolve("Leche Entera 1L", "  Soprole ") == ("Soprole", True)

    def test_known_brand_in_name(self):
        assert BrandResolver().resolve("Bebida Coca-Cola Zero 1.5L") == ("Coca-Cola", True)

    def test_falls_back_to_first_token(self):
        assert BrandResolver().resolve("Marca Desconocida 1kg") == ("Marca", False)

    def test_custom_brand_list(self):
        resolver = BrandResolver(["Acme"])

        assert resolver.resolve("Martillo ACME 16oz") == ("Acme", True)


# ============================================================================
# TESTS: FINGERPRINT
# ============================================================================

class TestFingerprintProvider:
    """Tests for FingerprintProvider."""

    def test_standard_fingerprint_is_consistent(self, target):
        fingerprint = FingerprintProvider(rng=random.Random(3)).for_target(target)

        assert fingerprint.locale == "es-CL"
        assert fingerprint.timezone_id == "America/Santiago"
        assert fingerprint.accept_language == "es-CL,es;q=0.9,en;q=0.8"
        assert fingerprint.platform == platform_for(fingerprint.user_agent)
        assert not fingerprint.evasive
        assert not fingerprint.is_mobile
        assert "navigator, 'webdriver'" in fingerprint.init_script()

    def test_evasive_fingerprint_adds_noise(self, target):
        fingerprint = FingerprintProvider(rng=random.Random(3)).for_target(target, evasive=True)

        assert fingerprint.evasive
        assert fingerprint.webgl_vendor is not None
        assert str(fingerprint.canvas_noise) in fingerprint.init_script()

    def test_mobile_fingerprint(self, target):
        fingerprint = FingerprintProvider(rng=random.Random(3)).for_target(target, mobile=True)

        assert fingerprint.is_mobile
        assert fingerprint.has_touch
        assert fingerprint.viewport[0] < 500
        assert fingerprint.context_options()["is_mobile"] is True

    def test_accept_language_for_bare_language(self):
        assert accept_language_for("en") == "en,en;q=0.8"

    @pytest.mark.parametrize("mobile", [False, True])
    def test_user_agents_are_chromium_only(self, target, mobile):
        """Every generated UA matches the Chromium engine Playwright launches."""
        provider = FingerprintProvider(rng=random.Random(11))

        for _ in range(100):
            fingerprint = provider.for_target(target, evasive=True, mobile=mobile)
            assert is_chromium(fingerprint.user_agent)
            assert fingerprint.vendor == "Google Inc."
            assert "window.chrome" in fingerprint.init_script()

    @pytest.mark.parametrize("mobile", [False, True])
    def test_webgl_profile_matches_platform(self, target, mobile):
        """The spoofed GPU always belongs to the fingerprint's own platform."""
        provider = FingerprintProvider(rng=random.Random(5))

        for _ in range(200):
            fingerprint = provider.for_target(target, evasive=True, mobile=mobile)
            profile = (fingerprint.webgl_vendor, fingerprint.webgl_renderer)
            assert profile in WEBGL_PROFILES[fingerprint.platform]
            if fingerprint.platform == "Win32":
                assert "D3D11" in fingerprint.webgl_renderer
            elif fingerprint.platform == "MacIntel":
                assert "D3D11" not in fingerprint.webgl_renderer
                assert "Apple" in fingerprint.webgl_renderer or "OpenGL Engine" in fingerprint.webgl_renderer
            elif fingerprint.platform == "Linux x86_64":
                assert "OpenGL 4.6" in fingerprint.webgl_renderer
            else:
                assert fingerprint.is_mobile
                assert fingerprint.webgl_vendor in ("Qualcomm", "ARM")


# ============================================================================
# TESTS: EXTRACTION HELPERS
# ============================================================================

class TestExtraction:
    """Tests for the HTML, JSON and sitemap parsing helpers."""

    def test_snapshot_elements_reads_card_fields(self):
        html = "<main>" + product_card(
            "Leche Entera Colun 1L", "$1.090", image="/img/leche.jpg", brand="Colun", href="/p/leche"
        ) + "</main>"

        elements = snapshot_elements(html, [".product-card"], base_url="https://www.shop.test/lacteos")

        assert len(elements) == 1
        element = elements[0]
        assert element.name_text == "Leche Entera Colun 1L"
        assert element.price_text == "$1.090"
        assert element.brand_text == "Colun"
        assert element.image_urls == ["https://www.shop.test/img/leche.jpg"]
        assert element.link_urls == ["https://www.shop.test/p/leche"]

    def test_snapshot_elements_skips_invalid_hints_and_duplicates(self):
        html = "<main>" + product_card("Agua Mineral 1.6L", "$790") + "</main>"

        elements = snapshot_elements(html, ["[[invalid", ".product-card", "div"], base_url="https://www.shop.test")

        assert len(elements) == 1

    def test_snapshot_elements_respects_limit(self):
        html = "<main>" + "".join(product_card(f"Producto {i}", "$100") for i in range(10)) + "</main>"

        assert len(snapshot_elements(html, [".product-card"], base_url="https://www.shop.test", limit=3)) == 3

    def test_products_from_json_nested_list(self):
        body = json.dumps({
            "data": {
                "products": [
                    {"name": "Jugo Watt's Naranja 1.5L", "price": {"value": 1290}, "images": ["/j.jpg"],
                     "brand": "Watt's", "url": "/p/jugo"},
                    {"title": ""},
                ]
            }
        })

        products = products_from_json(body, "https://www.shop.test/api/products")

        assert products == [{
            "name": "Jugo Watt's Naranja 1.5L",
            "price_text": "1290",
            "price": Decimal("1290"),
            "image_url": "https://www.shop.test/j.jpg",
            "brand_text": "Watt's",
            "url": "https://www.shop.test/p/jugo",
        }]

    def test_products_from_json_keeps_numeric_prices_exact(self):
        """A JSON float keeps its decimal point instead of being re-read as text."""
        body = json.dumps([
            {"name": "Queso Gouda Laminado 250g", "price": 1990.5, "image": "/q.jpg"},
            {"name": "Pan Molde Integral 750g", "price": "$1.990", "image": "/p.jpg"},
            {"name": "Mantequilla Colun 250g", "price": [2490], "image": "/m.jpg"},
            {"name": "Producto Regalo 1u", "price": True, "image": "/r.jpg"},
            {"name": "Producto Ajuste 1u", "price": -5, "image": "/a.jpg"},
        ])

        prices = [product["price"] for product in products_from_json(body, "https://www.shop.test/api")]

        assert prices == [Decimal("1990.5"), None, Decimal("2490"), None, None]
        assert PriceNormalizer.clean_price_string("1990.5", "CLP") == Decimal("19905")

    def test_products_from_json_rejects_non_json(self):
        with pytest.raises(ValueError):
            products_from_json("<html></html>", "https://www.shop.test/api")

    def test_sitemap_urls(self):
        xml = (
            '<?xml version="1.0"?><urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
            "<url><loc>https://www.shop.test/product/agua</loc></url>"
            "<url><loc>https://www.shop.test/about</loc></url></urlset>"
        )

        assert sitemap_urls(xml) == ["https://www.shop.test/product/agua", "https://www.shop.test/about"]

    def test_product_url_detection_and_names(self):
        assert is_product_url("https://www.shop.test/product/agua-mineral-cachantun-1-6l")
        assert not is_product_url("https://www.shop.test/about")
        assert name_from_url("https://www.shop.test/product/agua-mineral-cachantun-1-6l/123") == (
            "Agua Mineral Cachantun 1 6l"
        )

    def test_product_meta(self):
        html = (
            "<html><head><title>Fallback</title>"
            '<meta property="og:title" content="Agua Mineral Cachantún 1.6L">'
            '<meta property="og:image" content="https://cdn.shop.test/agua.jpg">'
            '<meta property="product:price:amount" content="790">'
            "</head><body></body></html>"
        )

        assert product_meta(html) == {
            "name": "Agua Mineral Cachantún 1.6L",
            "image_url": "https://cdn.shop.test/agua.jpg",
            "price_text": "790",
            "brand_text": None,
        }
