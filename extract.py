import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

#
# Detail-page extraction without a browser
# - The browser only collects raw texts for the selectors named in `FIELD_RULES`
# - `extract_fields` walks the table per field; first non-empty result wins
# - Fields are resolved in table order, so pattern rules can read earlier fields


class ProductRecord(BaseModel):
    """One exported row.

    Brand and category are always set; sku/price/comment are blank strings
    when extraction failed (a placeholder row).
    """
    brand: str
    category: str
    sku: str = ""
    price: str = ""
    comment: str = ""

    @classmethod
    def placeholder(cls, brand: str, category: str) -> "ProductRecord":
        return cls(brand=brand, category=category)

    @property
    def group_key(self) -> str:
        return f"{self.brand} - {self.category}"

    @property
    def is_placeholder(self) -> bool:
        return not (self.sku or self.price or self.comment)


class PageSnapshot(BaseModel):
    """Texts gathered from a loaded detail page, keyed by CSS selector."""
    url: str = ""
    texts: Dict[str, List[str]] = Field(default_factory=dict)

    def first(self, selector: str) -> str:
        values = self.texts.get(selector) or []
        return values[0] if values else ""


@dataclass(frozen=True)
class SelectorRule:
    selector: str
    contains: Optional[str] = None
    # Consider every match instead of only the first one
    scan: bool = False

    def apply(self, snapshot: PageSnapshot, resolved: Dict[str, str]) -> str:
        values = snapshot.texts.get(self.selector) or []
        if not self.scan:
            values = values[:1]
        for value in values:
            value = (value or "").strip()
            if not value:
                continue
            if self.contains and self.contains not in value:
                continue
            return value
        return ""


@dataclass(frozen=True)
class PatternRule:
    pattern: str
    source: str

    def apply(self, snapshot: PageSnapshot, resolved: Dict[str, str]) -> str:
        m = re.search(self.pattern, resolved.get(self.source, ""))
        if not m:
            return ""
        return (m.group(1) if m.groups() else m.group(0)).strip()


Rule = Union[SelectorRule, PatternRule]

TITLE_SELECTOR = "h1"
STRUCTURED_PRICE_SELECTOR = "#product-details-full-form span[itemprop='price']"
PRICE_LIKE_SELECTOR = '[class*="price"]'
COUPON_SELECTOR = "#special-coupon-message-container b"

FIELD_RULES: Dict[str, List[Rule]] = {
    "title": [SelectorRule(TITLE_SELECTOR)],
    "sku": [
        PatternRule(r".* - (.+)$", source="title"),
        PatternRule(r"([A-Z0-9-]+)\s*$", source="title"),
    ],
    "price": [
        SelectorRule(STRUCTURED_PRICE_SELECTOR),
        SelectorRule(PRICE_LIKE_SELECTOR, contains="$", scan=True),
    ],
    "comment": [SelectorRule(COUPON_SELECTOR)],
}

# Runs in the page: selectors -> {selector: [trimmed text of each match]}
SNAPSHOT_JS = """
(selectors) => {
  const texts = {};
  for (const sel of selectors) {
    texts[sel] = Array.from(document.querySelectorAll(sel), el => (el.textContent || '').trim());
  }
  return { url: location.href, texts };
}
"""


def snapshot_selectors(rules: Optional[Dict[str, List[Rule]]] = None) -> List[str]:
    """Every selector the table reads, in table order, without repeats."""
    table = FIELD_RULES if rules is None else rules
    selectors: Dict[str, None] = {}
    for field_rules in table.values():
        for rule in field_rules:
            if isinstance(rule, SelectorRule):
                selectors.setdefault(rule.selector, None)
    return list(selectors)


def first_match(rules: List[Rule], snapshot: PageSnapshot, resolved: Dict[str, str]) -> str:
    for rule in rules:
        value = rule.apply(snapshot, resolved)
        if value:
            return value
    return ""


def resolve_fields(snapshot: PageSnapshot, rules: Optional[Dict[str, List[Rule]]] = None) -> Dict[str, str]:
    table = FIELD_RULES if rules is None else rules
    resolved: Dict[str, str] = {}
    for name, field_rules in table.items():
        resolved[name] = first_match(field_rules, snapshot, resolved)
    return resolved


def extract_fields(
    snapshot: PageSnapshot,
    brand: str,
    category: str,
    rules: Optional[Dict[str, List[Rule]]] = None,
) -> ProductRecord:
    fields = resolve_fields(snapshot, rules)
    return ProductRecord(
        brand=brand,
        category=category,
        sku=fields.get("sku", ""),
        price=fields.get("price", ""),
        comment=fields.get("comment", ""),
    )
