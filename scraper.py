import asyncio
import os
import random
import sys
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from dotenv import load_dotenv
from rich.console import Console
from playwright.async_api import Error as PWError, Page, async_playwright

from extract import SNAPSHOT_JS, PageSnapshot, ProductRecord, extract_fields, snapshot_selectors
from workbook import ResultAggregator


console = Console()


def load_env() -> None:
    # Load from .env if present; Config defaults read the environment at import
    try:
        load_dotenv()
    except Exception:
        pass


load_env()

#
# High-level overview
# - Configuration: runtime knobs via environment variables (`Config`), brand seeds in `BRANDS`
# - Pacing: every navigation/click/extraction waits on `RateLimiter` by stage name
# - Brand page: discover category anchors (`discover_categories`)
# - Listing: walk pages through the "next" control, yielding unique PDP links per page
# - PDP: snapshot raw texts in the browser, fields resolved in `extract.py`
# - Sink: `ResultAggregator` rewrites the workbook after every category
# - Orchestrator: `crawl` drives brands -> categories; `run` owns the browser


@dataclass
class Config:
    base_url: str = os.getenv("BASE_URL", "https://www.afastores.com")
    headless: bool = os.getenv("HEADLESS", "false").lower() == "true"
    user_agent: str = os.getenv(
        "USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    )
    output_dir: str = os.getenv("OUTPUT_DIR", ".")
    nav_timeout_ms: int = int(os.getenv("NAV_TIMEOUT_MS", "60000"))
    wait_timeout_ms: int = int(os.getenv("WAIT_TIMEOUT_MS", "30000"))
    max_pages: int = int(os.getenv("MAX_PAGES", "0"))
    brand_delay_ms: int = int(os.getenv("BRAND_DELAY_MS", "3000"))
    landing_delay_ms: int = int(os.getenv("LANDING_DELAY_MS", "3000"))
    category_delay_ms: int = int(os.getenv("CATEGORY_DELAY_MS", "2000"))
    listing_delay_ms: int = int(os.getenv("LISTING_DELAY_MS", "3000"))
    next_page_delay_ms: int = int(os.getenv("NEXT_PAGE_DELAY_MS", "3000"))
    detail_delay_ms: int = int(os.getenv("DETAIL_DELAY_MS", "2000"))
    product_delay_ms: int = int(os.getenv("PRODUCT_DELAY_MS", "1000"))
    jitter_ms: int = int(os.getenv("JITTER_MS", "0"))

    def pacing(self) -> Dict[str, int]:
        return {
            "brand": self.brand_delay_ms,
            "landing": self.landing_delay_ms,
            "category": self.category_delay_ms,
            "listing": self.listing_delay_ms,
            "next_page": self.next_page_delay_ms,
            "detail": self.detail_delay_ms,
            "product": self.product_delay_ms,
        }


@dataclass(frozen=True)
class Brand:
    name: str
    url: str


@dataclass(frozen=True)
class Category:
    name: str
    url: str


BRANDS: List[Brand] = [
    # Brand("Legacy Classic Furniture", "https://www.afastores.com/brands/brands-legacy-classic-furniture"),
    Brand("Martin Furniture", "https://www.afastores.com/brands/brands-martin-furniture"),
]

CATEGORY_SELECTOR = "a.facets-category-cell-anchor"
PRODUCT_LINK_SELECTOR = "a.facets-item-cell-grid-title"
NEXT_SELECTOR = '.next, [class*="next"], .pagination .next, a[rel="next"]'

CATEGORY_LINKS_JS = "els => els.map(e => ({ href: e.getAttribute('href'), name: (e.textContent || '').trim() }))"
PRODUCT_LINKS_JS = "els => els.map(e => e.getAttribute('href'))"
NEXT_PAGE_JS = """
(selector) => {
  const nextBtn = document.querySelector(selector);
  return Boolean(nextBtn && !nextBtn.classList.contains('disabled') && nextBtn.href);
}
"""

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=VizDisplayCompositor",
]


class CrawlError(Exception):
    pass


class DiscoveryFailure(CrawlError):
    """Category anchors never appeared on a brand page."""


class PaginationFailure(CrawlError):
    """A listing page never rendered its items, or the next control could not be read."""


class ExtractionFailure(CrawlError):
    """A detail page could not be loaded or read."""


class RateLimiter:
    """Fixed per-stage pauses between requests. Records every stage it waited on."""

    def __init__(
        self,
        intervals_ms: Dict[str, int],
        jitter_ms: int = 0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.intervals_ms = dict(intervals_ms)
        self.jitter_ms = jitter_ms
        self._sleep = sleep
        self.history: List[str] = []

    @classmethod
    def from_config(cls, cfg: Config) -> "RateLimiter":
        return cls(cfg.pacing(), jitter_ms=cfg.jitter_ms)

    def delay_for(self, stage: str) -> float:
        ms = self.intervals_ms.get(stage, 0)
        if ms <= 0:
            return 0.0
        if self.jitter_ms > 0:
            ms += random.uniform(0, self.jitter_ms)
        return ms / 1000.0

    async def wait(self, stage: str) -> None:
        self.history.append(stage)
        seconds = self.delay_for(stage)
        if seconds > 0:
            await self._sleep(seconds)


@dataclass
class CrawlState:
    brand: Optional[Brand] = None
    category: Optional[Category] = None
    page_number: int = 0
    category_records: List[ProductRecord] = field(default_factory=list)
    visited: List[Tuple[str, str]] = field(default_factory=list)


def absolute_url(href: str, base_url: str) -> str:
    """Resolve an anchor href against the site origin."""
    if href.startswith("http"):
        return href
    parsed = urlparse(base_url)
    return urljoin(f"{parsed.scheme}://{parsed.netloc}/", href)


def unique_in_order(urls: List[str]) -> List[str]:
    return list(dict.fromkeys(u for u in urls if u))


async def navigate(page: Page, url: str, cfg: Config) -> None:
    await page.goto(url, wait_until="networkidle", timeout=cfg.nav_timeout_ms)


async def discover_categories(page: Page, brand: Brand, cfg: Config, limiter: RateLimiter) -> List[Category]:
    """Category anchors on a brand page, in page order. Duplicates are kept."""
    try:
        await navigate(page, brand.url, cfg)
        await limiter.wait("landing")
        await page.wait_for_selector(CATEGORY_SELECTOR, timeout=cfg.wait_timeout_ms)
        anchors = await page.eval_on_selector_all(CATEGORY_SELECTOR, CATEGORY_LINKS_JS)
    except PWError as e:
        raise DiscoveryFailure(f"no categories on {brand.url}: {e}") from e

    categories: List[Category] = []
    for anchor in anchors or []:
        href = anchor.get("href")
        if not href:
            continue
        categories.append(Category(name=(anchor.get("name") or "").strip(), url=absolute_url(href, cfg.base_url)))
    console.log(f"{brand.name}: discovered {len(categories)} categories")
    return categories


async def has_next_page(page: Page) -> bool:
    try:
        return bool(await page.evaluate(NEXT_PAGE_JS, NEXT_SELECTOR))
    except PWError as e:
        raise PaginationFailure(f"could not read next control: {e}") from e


async def paginate_listing(
    page: Page,
    category: Category,
    cfg: Config,
    limiter: RateLimiter,
    state: Optional[CrawlState] = None,
) -> AsyncIterator[List[str]]:
    """Yield the unique PDP links of each listing page until the next control runs out.

    The consumer may navigate away between batches; the listing is reopened
    before the next control is checked.
    """
    try:
        await navigate(page, category.url, cfg)
    except PWError as e:
        raise PaginationFailure(f"could not open listing {category.url}: {e}") from e
    await limiter.wait("listing")

    page_number = 1
    while True:
        if state is not None:
            state.page_number = page_number
        try:
            try:
                await page.wait_for_selector(PRODUCT_LINK_SELECTOR, timeout=cfg.wait_timeout_ms)
                hrefs = await page.eval_on_selector_all(PRODUCT_LINK_SELECTOR, PRODUCT_LINKS_JS)
            except PWError as e:
                raise PaginationFailure(f"listing items never appeared on page {page_number}: {e}") from e
            listing_url = page.url
            urls = unique_in_order([absolute_url(h, cfg.base_url) for h in hrefs or [] if h])
            console.log(f"{category.name}: page {page_number} has {len(urls)} products")

            yield urls

            if page.url != listing_url:
                try:
                    await navigate(page, listing_url, cfg)
                except PWError as e:
                    raise PaginationFailure(f"could not reopen {listing_url}: {e}") from e
                await limiter.wait("listing")
            if not await has_next_page(page):
                return
            if cfg.max_pages and page_number >= cfg.max_pages:
                console.log(f"{category.name}: stopping at page limit {cfg.max_pages}")
                return
            try:
                await page.click(NEXT_SELECTOR)
            except PWError as e:
                raise PaginationFailure(f"next control click failed: {e}") from e
            await limiter.wait("next_page")
            page_number += 1
        except PaginationFailure as e:
            console.log(f"{category.name}: pagination stopped: {e}")
            return


async def extract_product(
    page: Page,
    url: str,
    category: str,
    brand: str,
    cfg: Config,
    limiter: RateLimiter,
) -> ProductRecord:
    """Load a PDP and read its fields. Never raises; failures give a placeholder."""
    try:
        try:
            await navigate(page, url, cfg)
            await limiter.wait("detail")
            raw = await page.evaluate(SNAPSHOT_JS, snapshot_selectors())
            snapshot = PageSnapshot.model_validate(raw or {"url": url})
        except (PWError, ValueError) as e:
            raise ExtractionFailure(str(e)) from e
        return extract_fields(snapshot, brand=brand, category=category)
    except Exception as e:
        console.log(f"Error scraping product {url}: {e}")
        return ProductRecord.placeholder(brand, category)


async def crawl_category(
    page: Page,
    category: Category,
    brand: Brand,
    aggregator: ResultAggregator,
    cfg: Config,
    limiter: RateLimiter,
    state: Optional[CrawlState] = None,
) -> List[ProductRecord]:
    """Crawl every listing page of one category, then persist the full snapshot.

    A category that produced nothing still contributes one placeholder row.
    """
    records: List[ProductRecord] = []
    listing = paginate_listing(page, category, cfg, limiter, state)
    try:
        async for urls in listing:
            for url in urls:
                record = await extract_product(page, url, category.name, brand.name, cfg, limiter)
                records.append(record)
                aggregator.append(record)
                await limiter.wait("product")
    except Exception as e:
        console.log(f"Error scraping category {category.name}: {e}")
    finally:
        await listing.aclose()

    if not records:
        placeholder = ProductRecord.placeholder(brand.name, category.name)
        records.append(placeholder)
        aggregator.append(placeholder)

    aggregator.persist()
    return records


async def crawl_brand(
    page: Page,
    brand: Brand,
    aggregator: ResultAggregator,
    cfg: Config,
    limiter: RateLimiter,
    state: CrawlState,
) -> None:
    state.brand = brand
    try:
        categories = await discover_categories(page, brand, cfg, limiter)
        for category in categories:
            state.category = category
            state.visited.append((brand.name, category.name))
            state.page_number = 0
            state.category_records = await crawl_category(page, category, brand, aggregator, cfg, limiter, state)
            console.log(
                f"{brand.name} - {category.name}: {len(state.category_records)} rows from {state.page_number} page(s)"
            )
            await limiter.wait("category")
    except Exception as e:
        console.log(f"Error scraping brand {brand.name}: {e}")


async def crawl(
    page: Page,
    brands: List[Brand],
    aggregator: ResultAggregator,
    cfg: Config,
    limiter: RateLimiter,
) -> CrawlState:
    """Sequential brand -> category -> listing -> PDP crawl over one page."""
    state = CrawlState()
    for brand in brands:
        console.log(f"Crawling brand: {brand.name}")
        await crawl_brand(page, brand, aggregator, cfg, limiter, state)
        await limiter.wait("brand")
    return state


def launch_options(cfg: Config) -> Dict[str, Any]:
    return {"headless": cfg.headless, "args": list(LAUNCH_ARGS)}


def context_options(cfg: Config) -> Dict[str, Any]:
    return {
        "user_agent": cfg.user_agent,
        "viewport": {"width": 1366, "height": 768},
        "extra_http_headers": {"Accept-Language": "en-US,en;q=0.9"},
    }


async def run(brands: List[Brand], cfg: Config, aggregator: Optional[ResultAggregator] = None) -> ResultAggregator:
    """Launch the browser, crawl every brand and always close the browser."""
    aggregator = aggregator or ResultAggregator(cfg.output_dir)
    limiter = RateLimiter.from_config(cfg)
    async with async_playwright() as p:
        browser = await p.chromium.launch(**launch_options(cfg))
        try:
            context = await browser.new_context(**context_options(cfg))
            page = await context.new_page()
            await crawl(page, brands, aggregator, cfg, limiter)
        finally:
            await browser.close()
    console.log("Scraping completed!")
    return aggregator


async def main() -> None:
    """Entrypoint: load configuration and crawl the seeded brands."""
    cfg = Config()
    await run(BRANDS, cfg)


def cli() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        console.log("Interrupted by user")
    except Exception as e:
        console.log(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
