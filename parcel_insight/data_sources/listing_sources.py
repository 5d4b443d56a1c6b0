"""Scrapers for Vietnamese real-estate listing sites plus price/area normalization."""
from __future__ import annotations

import json
import math
import random
import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

import requests
import requests_cache
from bs4 import BeautifulSoup
from pydantic import ValidationError
from retry_requests import retry

from parcel_insight.data_sources.base import RawListing
from parcel_insight.domain import PriceListing
from parcel_insight.errors import ExternalSourceError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="listing_sources")

cache_session = requests_cache.CachedSession("listing_pages", backend="memory", expire_after=900)
session = retry(cache_session, retries=1, backoff_factor=0.5)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3.1 Safari/605.1.15",
)

# (slug, lat, lng) for the provinces with meaningful listing volume.
PROVINCES = (
    ("tp-hcm", 10.8231, 106.6297),
    ("ha-noi", 21.0285, 105.8542),
    ("da-nang", 16.0544, 108.2022),
    ("can-tho", 10.0452, 105.7469),
    ("hai-phong", 20.8449, 106.6881),
    ("binh-duong", 10.9804, 106.6519),
    ("dong-nai", 10.9408, 106.8441),
    ("ba-ria-vung-tau", 10.3460, 107.0843),
    ("long-an", 10.6957, 106.2431),
    ("tien-giang", 10.3637, 106.3608),
    ("an-giang", 10.5216, 105.1258),
    ("kien-giang", 10.0125, 105.0808),
    ("khanh-hoa", 12.2388, 109.1967),
    ("binh-dinh", 13.7830, 109.2196),
    ("quang-nam", 15.5393, 108.0192),
    ("thua-thien-hue", 16.4637, 107.5909),
    ("nghe-an", 19.2342, 104.9200),
    ("lam-dong", 11.9465, 108.4419),
    ("dak-lak", 12.6676, 108.0376),
    ("binh-thuan", 10.9273, 108.1022),
    ("tay-ninh", 11.3351, 106.1098),
    ("bac-ninh", 21.1214, 106.1110),
    ("quang-ninh", 21.0064, 107.2925),
    ("thai-nguyen", 21.5671, 105.8252),
    ("thanh-hoa", 19.8067, 105.7851),
)

STATE_MARKERS = ("__INITIAL_STATE__", "__NUXT__", "__REDUX_STATE__")
_STATE_RE = re.compile(r"window\.(?:__INITIAL_STATE__|__NUXT__|__REDUX_STATE__)\s*=\s*(\{.*\})\s*;?\s*$", re.DOTALL)
_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)*")
_THOUSANDS_RE = re.compile(r"^\d{1,3}(?:\.\d{3})+$")
_BILLION_RE = re.compile(r"(\d+(?:[.,]\d+)*)\s*(?:tỷ|tỉ|ty)\b")
_MILLION_RE = re.compile(r"(\d+(?:[.,]\d+)*)\s*(?:triệu|trieu|tr)\b")
_NEGOTIABLE_WORDS = ("thỏa thuận", "thoả thuận", "thoa thuan", "liên hệ")


def determine_location_slug(lat: float, lng: float) -> str:
    """Slug of the nearest known province (planar distance in degrees)."""
    return min(PROVINCES, key=lambda p: (lat - p[1]) ** 2 + (lng - p[2]) ** 2)[0]


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def _to_number(token: str) -> Optional[float]:
    token = token.strip()
    if _THOUSANDS_RE.match(token):
        token = token.replace(".", "")
    elif token.count(",") == 1 and "." not in token:
        token = token.replace(",", ".")
    else:
        token = token.replace(",", "")
    try:
        return float(token)
    except ValueError:
        return None


def _scale_unitless(value: float) -> float:
    """Guess the unit of a bare number: <1000 billions, <100000 millions, else VND."""
    if value < 1000:
        return value * 1e9
    if value < 100000:
        return value * 1e6
    return value


def parse_price_text(value: Any) -> Optional[float]:
    """
    Convert a listing price to VND.

    Understands ``"3,5 tỷ"``, ``"3 tỷ 200 triệu"``, ``"850 triệu"``,
    ``"2.500.000.000"`` and bare numbers. Returns None for negotiable or
    unparseable prices.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        return _scale_unitless(float(value))

    text = str(value).strip().lower()
    if not text or any(word in text for word in _NEGOTIABLE_WORDS):
        return None

    total = 0.0
    billions = _BILLION_RE.search(text)
    millions = _MILLION_RE.search(text)
    if billions:
        total += (_to_number(billions.group(1)) or 0.0) * 1e9
    if millions:
        total += (_to_number(millions.group(1)) or 0.0) * 1e6
    if billions or millions:
        return total if total > 0 else None

    match = _NUMBER_RE.search(text)
    if not match:
        return None
    number = _to_number(match.group(0))
    if number is None or number <= 0:
        return None
    return _scale_unitless(number)


def parse_area_text(value: Any) -> Optional[float]:
    """Area in m² from a number or text such as ``"85 m²"`` or ``"1.200 m2"``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) and value > 0 else None
    match = _NUMBER_RE.search(str(value))
    if not match:
        return None
    number = _to_number(match.group(0))
    return number if number and number > 0 else None


def _parse_posted(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e12 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_listing(raw: RawListing, index: int = 0) -> Optional[PriceListing]:
    """Build a PriceListing from scraped fields; None when price or area is unusable."""
    area = parse_area_text(raw.area)
    price = parse_price_text(raw.price)
    if area is None or price is None:
        return None
    if isinstance(raw.price, str) and "/m" in raw.price.lower():
        price = price * area
    if int(round(price)) <= 0:
        return None
    try:
        return PriceListing(
            id=str(raw.listing_id or f"{raw.source.lower()}-{index}"),
            price=int(round(price)),
            price_per_sqm=int(round(price / area)),
            area=max(1, int(round(area))),
            address=raw.address or "Vietnam",
            source=raw.source,
            url=raw.url,
            posted_at=_parse_posted(raw.posted_at),
        )
    except ValidationError as exc:
        logger.debug("Dropping malformed listing", extra={"source": raw.source, "error": str(exc)})
        return None


def _dig(data: Any, path: str) -> Any:
    for part in path.split("."):
        if not isinstance(data, dict):
            return None
        data = data.get(part)
    return data


def _first_list(data: Any, paths: Iterable[str]) -> List[dict]:
    for path in paths:
        found = _dig(data, path)
        if isinstance(found, list) and found:
            return [item for item in found if isinstance(item, dict)]
    return []


def extract_state_objects(html: str) -> List[dict]:
    """Decode ``window.__INITIAL_STATE__``-style assignments and ``__NEXT_DATA__`` blocks."""
    soup = BeautifulSoup(html, "html.parser")
    states: List[dict] = []
    for script in soup.find_all("script"):
        text = script.string or script.get_text() or ""
        if script.get("id") == "__NEXT_DATA__":
            try:
                states.append(json.loads(text))
            except ValueError:
                logger.debug("Skipping unreadable __NEXT_DATA__ block")
            continue
        if not any(marker in text for marker in STATE_MARKERS):
            continue
        match = _STATE_RE.search(text.strip())
        if not match:
            continue
        try:
            states.append(json.loads(match.group(1)))
        except ValueError:
            logger.debug("Skipping unreadable state script")
    return states


def extract_ld_json_offers(html: str, source: str) -> List[RawListing]:
    """Listings described with schema.org ``Offer``/``floorSize`` in ld+json blocks."""
    soup = BeautifulSoup(html, "html.parser")
    listings: List[RawListing] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            payload = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        queue = payload if isinstance(payload, list) else [payload]
        while queue:
            node = queue.pop(0)
            if not isinstance(node, dict):
                continue
            queue.extend(node.get("@graph") or [])
            for element in node.get("itemListElement") or []:
                if isinstance(element, dict):
                    queue.append(element.get("item", element))
            offers = node.get("offers")
            if isinstance(offers, list):
                offers = offers[0] if offers else None
            floor = node.get("floorSize")
            if not isinstance(offers, dict) or not floor:
                continue
            address = node.get("address")
            if isinstance(address, dict):
                address = address.get("streetAddress") or address.get("addressLocality")
            listings.append(
                RawListing(
                    source=source,
                    listing_id=node.get("@id") or node.get("sku"),
                    price=offers.get("price"),
                    area=floor.get("value") if isinstance(floor, dict) else floor,
                    address=address or node.get("name"),
                    url=node.get("url"),
                    posted_at=node.get("datePosted"),
                )
            )
    return listings


class ScrapingListingSource:
    """Shared fetch loop: rotating User-Agent, timeout, attempts, 403/429 stop."""

    name = "listing"
    source_type = "listing"

    def __init__(self, *, timeout: float = 10.0, attempts: int = 2, http: requests.Session | None = None) -> None:
        self.timeout = timeout
        self.attempts = max(1, int(attempts))
        self.http = http

    def _headers(self) -> dict:
        return {
            "User-Agent": random_user_agent(),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "vi-VN,vi;q=0.9,en;q=0.8",
        }

    def _get_html(self, url: str) -> str:
        client = self.http if self.http is not None else session
        last_error: Optional[Exception] = None
        for attempt in range(1, self.attempts + 1):
            try:
                response = client.get(url, headers=self._headers(), timeout=self.timeout)
            except requests.exceptions.RequestException as exc:
                last_error = exc
                logger.warning("Listing page request failed", extra={"url": url, "attempt": attempt, "error": str(exc)})
                continue
            if response.status_code in (403, 429):
                raise ExternalSourceError(self.name, f"blocked with HTTP {response.status_code}", response.status_code)
            if response.status_code != 200:
                last_error = ExternalSourceError(self.name, f"HTTP {response.status_code}", response.status_code)
                continue
            return response.text or ""
        raise ExternalSourceError(self.name, f"no usable response from {url}: {last_error}")

    def candidate_urls(self, slug: str) -> List[str]:
        raise NotImplementedError

    def parse(self, html: str) -> List[RawListing]:
        raise NotImplementedError

    def fetch_listings(self, lat: float, lng: float, radius: int) -> List[RawListing]:
        """Try each candidate URL until one yields listings."""
        slug = determine_location_slug(lat, lng)
        urls = self.candidate_urls(slug)
        errors: List[str] = []
        for url in urls:
            try:
                listings = self.parse(self._get_html(url))
            except ExternalSourceError as exc:
                if exc.status_code in (403, 429):
                    raise
                errors.append(str(exc))
                continue
            if listings:
                logger.info("Parsed listings", extra={"source": self.name, "url": url, "count": len(listings)})
                return listings
        if urls and len(errors) == len(urls):
            raise ExternalSourceError(self.name, "; ".join(errors))
        return []


class BatdongsanSource(ScrapingListingSource):
    """Batdongsan.com.vn sale listings."""

    name = "Batdongsan.com.vn"
    source_type = "real_estate_portal"

    PRODUCT_PATHS = ("product.productList", "products", "ads.ads", "data.products", "items")

    def candidate_urls(self, slug: str) -> List[str]:
        base = f"https://batdongsan.com.vn/nha-dat-ban-{slug}"
        return [base, f"{base}/p1"]

    def _from_product(self, product: dict) -> RawListing:
        return RawListing(
            source=self.name,
            listing_id=product.get("id") or product.get("productId"),
            price=product.get("priceText") or product.get("price"),
            area=product.get("areaText") or product.get("area") or product.get("size"),
            address=product.get("address") or product.get("title"),
            url=product.get("url") or product.get("link"),
            posted_at=product.get("createdDate") or product.get("publishDate") or product.get("date"),
        )

    def _from_cards(self, html: str) -> List[RawListing]:
        soup = BeautifulSoup(html, "html.parser")
        listings = []
        for card in soup.select(".re__card-full, .js__card"):
            price = card.select_one(".re__card-config-price")
            area = card.select_one(".re__card-config-area")
            if price is None or area is None:
                continue
            location = card.select_one(".re__card-location")
            link = card.find("a", href=True)
            href = link["href"] if link else None
            listings.append(
                RawListing(
                    source=self.name,
                    listing_id=card.get("prid") or card.get("data-product-id"),
                    price=price.get_text(" ", strip=True),
                    area=area.get_text(" ", strip=True),
                    address=location.get_text(" ", strip=True) if location else None,
                    url=f"https://batdongsan.com.vn{href}" if href and href.startswith("/") else href,
                )
            )
        return listings

    def parse(self, html: str) -> List[RawListing]:
        listings: List[RawListing] = []
        for state in extract_state_objects(html):
            listings.extend(self._from_product(p) for p in _first_list(state, self.PRODUCT_PATHS))
        if not listings:
            listings = extract_ld_json_offers(html, self.name)
        if not listings:
            listings = self._from_cards(html)
        return listings


class ChototSource(ScrapingListingSource):
    """Chotot.com (nha.chotot.com) marketplace listings."""

    name = "Chotot.com"
    source_type = "marketplace"

    AD_PATHS = (
        "ads.ads",
        "search.ads",
        "props.initialState.adlisting.data.ads",
        "props.pageProps.initialState.adlisting.data.ads",
    )

    def candidate_urls(self, slug: str) -> List[str]:
        return [
            f"https://nha.chotot.com/{slug}/mua-ban-nha-dat",
            "https://nha.chotot.com/tp-ho-chi-minh/mua-ban-nha-dat",
        ]

    def _from_ad(self, ad: dict) -> RawListing:
        ad_id = ad.get("list_id") or ad.get("ad_id") or ad.get("id")
        return RawListing(
            source=self.name,
            listing_id=f"chotot-{ad_id}" if ad_id else None,
            price=ad.get("price") or ad.get("price_string"),
            area=ad.get("size") or ad.get("size_text") or ad.get("area"),
            address=ad.get("area_name") or ad.get("region_name") or ad.get("street_name"),
            url=f"https://nha.chotot.com/{ad_id}.htm" if ad_id else None,
            posted_at=ad.get("list_time") or ad.get("listed_time"),
        )

    def parse(self, html: str) -> List[RawListing]:
        listings: List[RawListing] = []
        for state in extract_state_objects(html):
            listings.extend(self._from_ad(ad) for ad in _first_list(state, self.AD_PATHS))
        if not listings:
            listings = extract_ld_json_offers(html, self.name)
        return listings
