"""Tests for the extraction strategies and the strategy factory.

Every strategy runs against FakeBrowser, which serves canned HTML and
applies the real extraction helpers to it.
"""

import json
from decimal import Decimal

import pytest

from harvester.config import Settings
from harvester.core.exceptions import ConfigurationError
from harvester.models.outcome import ErrorKind
from harvester.scrapers.browser import PageResponse, detect_block
from harvester.scrapers.factory import StrategyFactory
from harvester.scrapers.strategies import (
    BruteForceSweepStrategy,
    EvasionFirstStrategy,
    HybridStrategy,
    MultiVectorStrategy,
    StandardStealthStrategy,
    alternate_entry_points,
)

from tests.conftest import TIMEOUT, blocked_page, listing_page, product_card

BASE = "https://www.shop.test"


@pytest.fixture
def shop(make_target):
    return make_target(category_hints={"lacteos": ["/lacteos"], "bebidas": ["/bebidas"]})


@pytest.fixture
def progress_calls():
    return []


@pytest.fixture
def progress(progress_calls):
    async def _progress(category, items):
        progress_calls.append((category, [item.name for item in items]))

    return _progress


def lacteos_page():
    return listing_page(
        product_card("Leche Entera Colun 1L", "$1.090", image="/img/leche.jpg", href="/p/leche"),
        product_card("Yoghurt Soprole Frutilla 125g", "$390", image="/img/yoghurt.jpg", href="/p/yoghurt"),
    )


def bebidas_page():
    return listing_page(
        product_card("Bebida Coca-Cola Zero 1.5L", "$1.990", image="/img/coca.jpg", href="/p/coca"),
    )


# ============================================================================
# TESTS: BLOCK DETECTION
# ============================================================================

RECAPTCHA_HEAD = (
    '<head><script src="https://www.google.com/recaptcha/api.js?render=site-key"></script>'
    "<script>window.captchaConfig = {provider: 'datadome', mode: 'cf-chl'};</script>"
    "<style>.captcha-badge { display: none; }</style></head>"
)


def page(status, html, url=f"{BASE}/lacteos"):
    return PageResponse(url=url, status=status, content=html)


class TestDetectBlock:
    """Tests for detect_block."""

    @pytest.mark.parametrize("status", [403, 429, 503])
    def test_block_statuses(self, status):
        assert detect_block(page(status, "<html><body>ok</body></html>")) == f"HTTP {status}"

    def test_captcha_library_in_scripts_is_not_a_block(self):
        """A storefront loading reCAPTCHA for its login form still parses as a normal page."""
        _, html = lacteos_page()
        html = html.replace("<html>", "<html>" + RECAPTCHA_HEAD)

        assert detect_block(page(200, html)) is None

    def test_visible_phrase_is_a_block(self):
        html = "<html><body><h1>Access Denied</h1><p>Reference #18.2f</p></body></html>"

        assert detect_block(page(200, html)) == "marker: access denied"

    def test_phrase_split_across_elements_is_matched(self):
        html = "<html><body><p>Verify you</p><p>are human</p></body></html>"

        assert detect_block(page(200, html)) == "marker: verify you are human"

    def test_challenge_iframe_on_interstitial_is_a_block(self):
        html = (
            "<html><body><p>One moment please</p>"
            '<iframe src="https://geo.captcha-delivery.com/interstitial/?initialCid=abc"></iframe>'
            "</body></html>"
        )

        assert detect_block(page(200, html)) == "iframe: captcha"

    def test_challenge_iframe_on_full_storefront_is_ignored(self):
        cards = "".join(
            product_card(f"Producto Numero {n} Marca Generica 1kg", "$1.990", image=f"/img/{n}.jpg")
            for n in range(120)
        )
        html = (
            "<html><body><main>" + cards + "</main>"
            '<iframe title="reCAPTCHA" src="https://www.google.com/recaptcha/api2/anchor?size=invisible"></iframe>'
            "</body></html>"
        )

        assert detect_block(page(200, html)) is None

    def test_challenge_url_is_a_block(self):
        url = f"{BASE}/cdn-cgi/challenge-platform/h/b/orchestrate/jsch/v1"

        assert detect_block(page(200, "<html><body></body></html>", url=url)) == "url: /cdn-cgi/challenge"


# ============================================================================
# TESTS: STANDARD STEALTH
# ============================================================================

class TestStandardStealthStrategy:
    """Tests for StandardStealthStrategy."""

    async def test_harvests_every_category(self, strategy_kwargs, fake_browser, fingerprints, shop, progress,
                                           progress_calls):
        fake_browser.pages.update({f"{BASE}/lacteos": lacteos_page(), f"{BASE}/bebidas": bebidas_page()})
        strategy = StandardStealthStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["lacteos", "bebidas"], fingerprints.for_target(shop), progress)

        assert outcome.success
        assert outcome.item_count == 3
        assert outcome.response_ms is not None
        assert [item.name for item in items] == [
            "Leche Entera Colun 1L",
            "Yoghurt Soprole Frutilla 125g",
            "Bebida Coca-Cola Zero 1.5L",
        ]
        assert items[0].source_url == f"{BASE}/p/leche"
        assert items[0].image_url == f"{BASE}/img/leche.jpg"
        assert items[0].category_hint == "lacteos"
        assert all(item.extracted_by == "standard" and item.confidence == 3.0 for item in items)
        assert [category for category, _ in progress_calls] == ["lacteos", "bebidas"]
        assert fake_browser.scrolls == 2

    async def test_without_categories_uses_base_urls(self, strategy_kwargs, fake_browser, fingerprints, shop,
                                                     progress, progress_calls):
        fake_browser.pages[BASE] = bebidas_page()
        strategy = StandardStealthStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, [], fingerprints.for_target(shop), progress)

        assert outcome.success
        assert [item.name for item in items] == ["Bebida Coca-Cola Zero 1.5L"]
        assert items[0].category_hint is None
        assert progress_calls == []

    async def test_falls_through_to_next_entry_point(self, strategy_kwargs, fake_browser, fingerprints,
                                                     make_target):
        target = make_target(category_hints={"lacteos": ["/lacteos-old", "/lacteos"]})
        fake_browser.pages[f"{BASE}/lacteos"] = lacteos_page()
        strategy = StandardStealthStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(target, ["lacteos"], fingerprints.for_target(target))

        assert outcome.success
        assert len(items) == 2
        assert fake_browser.navigations == [f"{BASE}/lacteos-old", f"{BASE}/lacteos"]

    async def test_block_page_fails_the_attempt(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages.update({f"{BASE}/lacteos": blocked_page(), f"{BASE}/bebidas": bebidas_page()})
        strategy = StandardStealthStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["lacteos", "bebidas"], fingerprints.for_target(shop))

        assert items == []
        assert not outcome.success
        assert outcome.error_kind == ErrorKind.BLOCKED
        assert fake_browser.navigations == [f"{BASE}/lacteos"]

    async def test_block_marker_in_page_counts_as_block(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages[f"{BASE}/lacteos"] = (200, "<html><body>Please solve the captcha</body></html>")
        strategy = StandardStealthStrategy(**strategy_kwargs)

        _, outcome = await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop))

        assert outcome.error_kind == ErrorKind.BLOCKED

    async def test_empty_pages_are_extraction_failures(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages[f"{BASE}/lacteos"] = listing_page()
        strategy = StandardStealthStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop))

        assert items == []
        assert outcome.error_kind == ErrorKind.EXTRACTION

    async def test_timeouts_are_reported_as_timeouts(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages.update({f"{BASE}/lacteos": TIMEOUT, f"{BASE}/bebidas": (500, "<html></html>")})
        strategy = StandardStealthStrategy(**strategy_kwargs)

        _, outcome = await strategy.attempt(shop, ["lacteos", "bebidas"], fingerprints.for_target(shop))

        assert outcome.error_kind == ErrorKind.TIMEOUT

    async def test_unreachable_target_is_a_navigation_failure(self, strategy_kwargs, fingerprints, shop):
        strategy = StandardStealthStrategy(**strategy_kwargs)

        _, outcome = await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop))

        assert outcome.error_kind == ErrorKind.NAVIGATION
        assert "HTTP 404" in outcome.error_message

    async def test_first_matching_selector_hint_wins(self, strategy_kwargs, fake_browser, fingerprints,
                                                     make_target):
        target = make_target(selector_hints=[".featured", ".product-card"])
        fake_browser.pages[BASE] = listing_page(
            product_card("Aceite Maravilla Belmont 1L", "$2.390", css_class="featured"),
            product_card("Arroz Tucapel Grado 1 1kg", "$1.290"),
        )
        strategy = StandardStealthStrategy(**strategy_kwargs)

        items, _ = await strategy.attempt(target, [], fingerprints.for_target(target))

        assert [item.name for item in items] == ["Aceite Maravilla Belmont 1L"]

    async def test_implausible_cards_are_dropped(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages[BASE] = listing_page(
            product_card("Té", "$990", image="/img/te.jpg"),
            product_card("Fideos Carozzi Spaghetti 5", "Consultar"),
            product_card("Atún Lomito Van Camps 160g", "Consultar", image="/img/atun.jpg"),
        )
        strategy = StandardStealthStrategy(**strategy_kwargs)

        items, _ = await strategy.attempt(shop, [], fingerprints.for_target(shop))

        assert [item.name for item in items] == ["Atún Lomito Van Camps 160g"]

    async def test_item_cap(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages[BASE] = listing_page(*(product_card(f"Producto número {i}", "$100") for i in range(8)))
        strategy = StandardStealthStrategy(**{**strategy_kwargs, "item_cap": 5})

        items, outcome = await strategy.attempt(shop, [], fingerprints.for_target(shop))

        assert len(items) == 5
        assert outcome.item_count == 5


# ============================================================================
# TESTS: EVASION FIRST
# ============================================================================

class TestEvasionFirstStrategy:
    """Tests for EvasionFirstStrategy and its alternate entry points."""

    def test_alternate_entry_points(self, shop):
        assert alternate_entry_points(f"{BASE}/lacteos", shop) == ["https://m.shop.test/lacteos", BASE]
        assert alternate_entry_points("https://m.shop.test/lacteos", shop) == [BASE]
        assert alternate_entry_points("https://shop.test/x", shop) == ["https://m.shop.test/x", BASE]
        assert alternate_entry_points(BASE, shop) == ["https://m.shop.test"]

    async def test_block_falls_back_to_mobile_subdomain(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages.update({
            f"{BASE}/lacteos": blocked_page(),
            "https://m.shop.test/lacteos": lacteos_page(),
        })
        strategy = EvasionFirstStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop, evasive=True))

        assert outcome.success
        assert len(items) == 2
        assert items[0].extracted_by == "evasive"
        assert items[0].source_url == "https://m.shop.test/p/leche"
        assert fake_browser.navigations == [f"{BASE}/lacteos", "https://m.shop.test/lacteos"]

    async def test_pauses_before_every_navigation(self, strategy_kwargs, fake_browser, fingerprints, shop):
        pauses = []

        async def record_sleep(seconds):
            pauses.append(seconds)

        fake_browser.pages.update({
            f"{BASE}/lacteos": blocked_page(),
            "https://m.shop.test/lacteos": lacteos_page(),
        })
        strategy = EvasionFirstStrategy(**{**strategy_kwargs, "sleep": record_sleep, "human_delay": (1.0, 2.0)})

        await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop, evasive=True))

        assert len(pauses) == 2
        assert all(1.0 <= pause <= 2.0 for pause in pauses)

    async def test_all_alternates_blocked(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages.update({
            f"{BASE}/lacteos": blocked_page(),
            "https://m.shop.test/lacteos": blocked_page(),
            BASE: blocked_page(),
        })
        strategy = EvasionFirstStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop, evasive=True))

        assert items == []
        assert outcome.error_kind == ErrorKind.BLOCKED
        assert len(fake_browser.navigations) == 3

    def test_is_intrusive(self):
        assert EvasionFirstStrategy.intrusive
        assert EvasionFirstStrategy.evasive_fingerprint


# ============================================================================
# TESTS: BRUTE FORCE SWEEP
# ============================================================================

class TestBruteForceSweepStrategy:
    """Tests for BruteForceSweepStrategy."""

    NOISY_PAGE = (
        200,
        "<html><body><ul>"
        '<li><a href="/p/arroz">Arroz Tucapel 1kg</a><br>$1.290</li>'
        "<li>Despacho gratis sobre 20 mil</li>"
        "<li>Azúcar Iansa 1kg<br>$1.150</li>"
        "</ul></body></html>",
    )

    async def test_sweeps_search_page_with_broad_selectors(self, strategy_kwargs, fake_browser, fingerprints,
                                                           shop, progress, progress_calls):
        search_url = shop.search_url("abarrotes")
        fake_browser.pages[search_url] = self.NOISY_PAGE
        strategy = BruteForceSweepStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["abarrotes"], fingerprints.for_target(shop), progress)

        assert outcome.success
        assert [(item.name, item.price_text) for item in items] == [
            ("Arroz Tucapel 1kg", "$1.290"),
            ("Azúcar Iansa 1kg", "$1.150"),
        ]
        assert items[0].source_url == f"{BASE}/p/arroz"
        assert all(item.confidence == 1.0 and item.extracted_by == "aggressive" for item in items)
        assert progress_calls == [("abarrotes", ["Arroz Tucapel 1kg", "Azúcar Iansa 1kg"])]
        # Search URL is also the category URL; base URLs are skipped once a category produced items
        assert fake_browser.navigations == [search_url]

    async def test_falls_back_to_base_urls(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages[BASE] = self.NOISY_PAGE
        strategy = BruteForceSweepStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["abarrotes"], fingerprints.for_target(shop))

        assert outcome.success
        assert len(items) == 2
        assert items[0].category_hint is None
        assert fake_browser.navigations[-1] == BASE

    async def test_ignores_large_containers(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages[BASE] = (200, "<html><body><div>Oferta $990 " + "texto " * 100 + "</div></body></html>")
        strategy = BruteForceSweepStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, [], fingerprints.for_target(shop))

        assert items == []
        assert outcome.error_kind == ErrorKind.EXTRACTION


# ============================================================================
# TESTS: MULTI-VECTOR
# ============================================================================

class TestMultiVectorStrategy:
    """Tests for MultiVectorStrategy."""

    API_BODY = json.dumps({
        "products": [
            {"name": "Leche Descremada Soprole 1L", "price": 1190, "image": "/img/descremada.jpg",
             "brand": "Soprole", "url": "/p/descremada"},
        ]
    })

    SITEMAP = (
        '<?xml version="1.0"?><urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"<url><loc>{BASE}/product/mantequilla-colun-250g</loc></url>"
        f"<url><loc>{BASE}/contacto</loc></url>"
        "</urlset>"
    )

    PRODUCT_PAGE = (
        "<html><head>"
        '<meta property="og:title" content="Mantequilla Colun 250g">'
        '<meta property="og:image" content="https://cdn.shop.test/mantequilla.jpg">'
        '<meta property="product:price:amount" content="2290">'
        "</head><body></body></html>"
    )

    def all_vectors(self, fake_browser):
        fake_browser.pages.update({
            f"{BASE}/api/products?q=lacteos": (200, self.API_BODY),
            f"{BASE}/lacteos": lacteos_page(),
            f"{BASE}/sitemap.xml": (200, self.SITEMAP),
            f"{BASE}/product/mantequilla-colun-250g": (200, self.PRODUCT_PAGE),
        })

    async def test_unions_every_vector(self, strategy_kwargs, fake_browser, fingerprints, shop, progress,
                                       progress_calls):
        self.all_vectors(fake_browser)
        strategy = MultiVectorStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop), progress)

        assert outcome.success
        by_name = {item.name: item for item in items}
        assert by_name["Leche Descremada Soprole 1L"].confidence == 3.0
        assert by_name["Leche Descremada Soprole 1L"].brand_text == "Soprole"
        assert by_name["Leche Descremada Soprole 1L"].source_url == f"{BASE}/p/descremada"
        assert by_name["Leche Descremada Soprole 1L"].price == Decimal("1190")
        assert by_name["Leche Entera Colun 1L"].price is None
        assert by_name["Leche Entera Colun 1L"].confidence == 2.0
        assert by_name["Mantequilla Colun 250g"].confidence == 1.0
        assert by_name["Mantequilla Colun 250g"].price_text == "2290"
        assert all(item.extracted_by == "multi-vector" for item in items)
        assert progress_calls == []
        assert any(fingerprint.is_mobile for fingerprint in fake_browser.fingerprints)
        assert f"{BASE}/contacto" not in fake_browser.navigations

    async def test_failed_vector_does_not_stop_the_others(self, strategy_kwargs, fake_browser, fingerprints,
                                                          shop):
        self.all_vectors(fake_browser)
        fake_browser.pages[f"{BASE}/api/products?q=lacteos"] = blocked_page()
        strategy = MultiVectorStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop))

        assert outcome.success
        assert {item.confidence for item in items} == {2.0, 1.0}

    async def test_sitemap_index_is_followed(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages.update({
            f"{BASE}/sitemap.xml": (
                200,
                '<?xml version="1.0"?><sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
                f"<sitemap><loc>{BASE}/sitemap-products-1.xml</loc></sitemap></sitemapindex>",
            ),
            f"{BASE}/sitemap-products-1.xml": (200, self.SITEMAP),
            f"{BASE}/product/mantequilla-colun-250g": (200, self.PRODUCT_PAGE),
        })
        strategy = MultiVectorStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, [], fingerprints.for_target(shop))

        assert outcome.success
        assert [item.name for item in items] == ["Mantequilla Colun 250g"]

    async def test_sitemap_detail_pages_are_limited(self, strategy_kwargs, fake_browser, fingerprints, shop):
        locations = "".join(f"<url><loc>{BASE}/product/item-{i}</loc></url>" for i in range(6))
        fake_browser.pages[f"{BASE}/sitemap.xml"] = (
            200,
            f'<?xml version="1.0"?><urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{locations}</urlset>',
        )
        strategy = MultiVectorStrategy(**strategy_kwargs, sitemap_detail_pages=2)

        await strategy.attempt(shop, [], fingerprints.for_target(shop))

        detail_visits = [url for url in fake_browser.navigations if "/product/item-" in url]
        assert detail_visits == [f"{BASE}/product/item-0", f"{BASE}/product/item-1"]

    async def test_every_vector_empty(self, strategy_kwargs, fingerprints, shop):
        strategy = MultiVectorStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop))

        assert items == []
        assert outcome.error_kind == ErrorKind.NAVIGATION


# ============================================================================
# TESTS: HYBRID
# ============================================================================

class TestHybridStrategy:
    """Tests for HybridStrategy."""

    async def test_stops_at_minimum_viable_count(self, strategy_kwargs, fake_browser, fingerprints, shop):
        fake_browser.pages.update({f"{BASE}/lacteos": lacteos_page(), f"{BASE}/bebidas": bebidas_page()})
        strategy = HybridStrategy(**strategy_kwargs, min_viable_items=2)

        items, outcome = await strategy.attempt(shop, ["lacteos", "bebidas"], fingerprints.for_target(shop))

        assert outcome.success
        assert outcome.strategy == "hybrid"
        assert len(items) == 3
        assert {item.extracted_by for item in items} == {"standard"}
        assert len(fake_browser.fingerprints) == 1

    async def test_escalates_with_remaining_categories(self, strategy_kwargs, fake_browser, fingerprints, shop,
                                                       progress, progress_calls):
        fake_browser.pages.update({
            f"{BASE}/lacteos": lacteos_page(),
            f"{BASE}/bebidas": blocked_page(),
            "https://m.shop.test/bebidas": bebidas_page(),
        })
        strategy = HybridStrategy(**strategy_kwargs, min_viable_items=1)

        items, outcome = await strategy.attempt(
            shop, ["lacteos", "bebidas"], fingerprints.for_target(shop), progress
        )

        assert outcome.success
        assert [category for category, _ in progress_calls] == ["lacteos", "bebidas"]
        assert [item.name for item in items] == ["Bebida Coca-Cola Zero 1.5L"]
        assert items[0].extracted_by == "evasive"
        # The evasive stage never revisits the checkpointed category
        assert fake_browser.navigations == [
            f"{BASE}/lacteos",
            f"{BASE}/bebidas",
            f"{BASE}/bebidas",
            "https://m.shop.test/bebidas",
        ]
        assert not fake_browser.fingerprints[0].evasive
        assert fake_browser.fingerprints[1].evasive

    async def test_fails_when_every_stage_fails(self, strategy_kwargs, fingerprints, shop):
        strategy = HybridStrategy(**strategy_kwargs)

        items, outcome = await strategy.attempt(shop, ["lacteos"], fingerprints.for_target(shop))

        assert items == []
        assert not outcome.success


# ============================================================================
# TESTS: FACTORY
# ============================================================================

class TestStrategyFactory:
    """Tests for StrategyFactory."""

    def test_registers_strategies_in_order(self, fake_browser, rate_limiter, fingerprints):
        factory = StrategyFactory(fake_browser, rate_limiter, fingerprints)

        assert factory.get_registered_strategies() == ["standard", "aggressive", "evasive", "multi-vector", "hybrid"]
        assert factory.has_strategy("hybrid")
        assert not factory.has_strategy("intelligent")

    def test_create_strategies_keeps_registration_order(self, fake_browser, rate_limiter, fingerprints):
        factory = StrategyFactory(fake_browser, rate_limiter, fingerprints)

        strategies = factory.create_strategies(["hybrid", "standard"])

        assert [strategy.name for strategy in strategies] == ["standard", "hybrid"]

    def test_unknown_strategy(self, fake_browser, rate_limiter, fingerprints):
        factory = StrategyFactory(fake_browser, rate_limiter, fingerprints)

        with pytest.raises(ConfigurationError):
            factory.create_strategy("stealthier")
        with pytest.raises(ConfigurationError):
            factory.create_strategies(["standard", "stealthier"])

    def test_from_settings_passes_strategy_options(self, fake_browser, rate_limiter, fingerprints):
        settings = Settings(HYBRID_MIN_VIABLE_ITEMS=4, SITEMAP_DETAIL_PAGES=2, STRATEGY_ITEM_CAP=50)
        factory = StrategyFactory.from_settings(settings, fake_browser, rate_limiter, fingerprints)

        hybrid = factory.create_strategy("hybrid")
        multi_vector = factory.create_strategy("multi-vector")

        assert hybrid.min_viable_items == 4
        assert hybrid.item_cap == 50
        assert [stage.name for stage in hybrid.stages] == ["standard", "evasive", "multi-vector"]
        assert hybrid.stages[2].sitemap_detail_pages == 2
        assert multi_vector.sitemap_detail_pages == 2

    def test_rejects_non_strategy_classes(self, fake_browser, rate_limiter, fingerprints):
        factory = StrategyFactory(fake_browser, rate_limiter, fingerprints)

        with pytest.raises(ValueError):
            factory.register_strategy(dict)
