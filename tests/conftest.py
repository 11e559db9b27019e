"""Shared fixtures: an in-memory Playwright page and zero-delay pacing."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from playwright.async_api import Error as PWError, TimeoutError as PWTimeout

# Ensure the repo root is on the path so the top-level modules import.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import scraper  # noqa: E402
from extract import SNAPSHOT_JS  # noqa: E402
from workbook import ResultAggregator  # noqa: E402

BASE = "https://www.afastores.com"


class FakePage:
    """Serves a dict of url -> page definition through the Page methods the crawler calls.

    Page definition keys:
      selectors: {selector: [values returned by eval_on_selector_all]}
      next: url reached by clicking the next control (falsy = no next control)
      next_error: reading the next control raises
      snapshot: {selector: [texts]} returned for the PDP snapshot
    """

    def __init__(self, site: Dict[str, Dict[str, Any]], crash_on: Optional[Dict[str, BaseException]] = None) -> None:
        self.site = site
        self.crash_on = crash_on or {}
        self.url = "about:blank"
        self.visits: List[str] = []
        self.clicks: List[str] = []

    def _current(self) -> Dict[str, Any]:
        return self.site.get(self.url, {})

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[int] = None) -> None:
        self.visits.append(url)
        if url in self.crash_on:
            raise self.crash_on[url]
        if url not in self.site:
            raise PWTimeout(f"Timeout {timeout}ms exceeded navigating to {url}")
        self.url = url

    async def wait_for_selector(self, selector: str, timeout: Optional[int] = None) -> None:
        if not self._current().get("selectors", {}).get(selector):
            raise PWTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def eval_on_selector_all(self, selector: str, script: str) -> List[Any]:
        return list(self._current().get("selectors", {}).get(selector, []))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        current = self._current()
        if script == scraper.NEXT_PAGE_JS:
            if current.get("next_error"):
                raise PWError("Execution context was destroyed, most likely because of a navigation")
            return bool(current.get("next"))
        if script == SNAPSHOT_JS:
            if "snapshot" not in current:
                raise PWError("Execution context was destroyed")
            return {"url": self.url, "texts": {sel: current["snapshot"].get(sel, []) for sel in arg}}
        raise AssertionError(f"unexpected script {script!r}")

    async def click(self, selector: str) -> None:
        self.clicks.append(self.url)
        self.url = self._current()["next"]


def brand_page(*categories: Dict[str, str]) -> Dict[str, Any]:
    return {"selectors": {scraper.CATEGORY_SELECTOR: list(categories)}}


def listing_page(*hrefs: str, next_url: Optional[str] = None) -> Dict[str, Any]:
    return {"selectors": {scraper.PRODUCT_LINK_SELECTOR: list(hrefs)}, "next": next_url}


def detail_page(title: str, price: str = "", comment: str = "") -> Dict[str, Any]:
    snapshot = {"h1": [title] if title else []}
    if price:
        snapshot["#product-details-full-form span[itemprop='price']"] = [price]
    if comment:
        snapshot["#special-coupon-message-container b"] = [comment]
    return {"snapshot": snapshot}


@pytest.fixture
def cfg():
    return scraper.Config(base_url=BASE, max_pages=0)


@pytest.fixture
def limiter():
    return scraper.RateLimiter({})


@pytest.fixture
def aggregator(tmp_path):
    return ResultAggregator(str(tmp_path))
