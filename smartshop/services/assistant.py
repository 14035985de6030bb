"""Shopping assistant backed by the messages API, with local fallbacks.

Every call degrades to the keyword parser or a canned answer when the
upstream API errors, times out or replies with something unparseable.
"""
import json
import logging
import re
import time
import unicodedata
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import sessionmaker

from smartshop.core.config import settings
from smartshop.core.errors import ValidationFailed
from smartshop.db.models import Product
from smartshop.repo.catalog import CatalogRepository

log = logging.getLogger(__name__)

API_VERSION = "2023-06-01"
OVERLOADED = 529

BUDGET_LIMIT = 8_000_000
FLAGSHIP_LIMIT = 20_000_000

BRAND_ALIASES = [
    ("Apple", ("iphone", "apple", "ipad", "macbook")),
    ("Samsung", ("samsung", "galaxy")),
    ("Xiaomi", ("xiaomi", "redmi", "poco", "mi")),
    ("OPPO", ("oppo",)),
    ("Vivo", ("vivo",)),
    ("Realme", ("realme",)),
    ("Nokia", ("nokia",)),
]

FEATURE_KEYWORDS = [
    ("camera", ("camera", "chup anh", "chup hinh")),
    ("selfie", ("selfie", "tu suong")),
    ("battery", ("pin trau", "pin khoe", "pin lau", "battery")),
    ("fast_charging", ("sac nhanh", "fast charge")),
    ("gaming", ("gaming", "choi game", "game")),
    ("zoom", ("zoom",)),
]

TARGET_USERS = [
    ("student", ("hoc sinh", "sinh vien", "hs", "sv")),
    ("senior", ("nguoi gia", "bo me", "ong ba")),
    ("professional", ("doanh nhan", "cong viec", "van phong")),
]

_PRICE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(trieu|tr|k)\b")
_MODEL = re.compile(r"\b(iphone|galaxy|redmi|note|pixel)\s*([a-z]?\d+)\b")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class AssistantUnavailable(Exception):
    pass


def normalize(text: str) -> str:
    """Lower-case and strip Vietnamese diacritics so keywords match either spelling."""
    text = text.lower().replace("đ", "d")
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


def _any(text: str, words) -> bool:
    return any(_has_word(text, w) for w in words)


def _prices(text: str) -> List[int]:
    found = []
    for amount, unit in _PRICE.findall(text):
        value = float(amount.replace(",", "."))
        found.append(int(value * (1_000 if unit == "k" else 1_000_000)))
    return found


def price_segment(price: int) -> str:
    if price < BUDGET_LIMIT:
        return "budget"
    if price <= FLAGSHIP_LIMIT:
        return "mid-range"
    return "flagship"


def fallback_parse_query(query: str) -> Dict[str, Any]:
    q = normalize(query)

    brand = None
    for name, aliases in BRAND_ALIASES:
        if _any(q, aliases):
            brand = name
            break

    min_price = max_price = None
    prices = _prices(q)
    if prices:
        if _any(q, ("duoi", "toi da", "under", "max")):
            max_price = max(prices)
        elif len(prices) >= 2 and _has_word(q, "den"):
            min_price, max_price = min(prices), max(prices)
        elif _any(q, ("tren", "tu", "toi thieu", "over")):
            min_price = min(prices)
        elif _any(q, ("tam", "khoang", "around")):
            min_price, max_price = round(prices[0] * 0.8), round(prices[0] * 1.2)
        else:
            min_price, max_price = round(prices[0] * 0.9), round(prices[0] * 1.1)

    price_range = None
    if max_price is not None:
        price_range = price_segment(max_price)
    elif min_price is not None:
        price_range = price_segment(min_price)

    if _any(q, ("gia re", "re", "tiet kiem")):
        price_range = "budget"
        if max_price is None:
            max_price = BUDGET_LIMIT
    elif _any(q, ("tam trung",)):
        price_range = "mid-range"
        if min_price is None and max_price is None:
            min_price, max_price = BUDGET_LIMIT, FLAGSHIP_LIMIT
    elif _any(q, ("cao cap", "premium", "flagship")):
        price_range = "flagship"
        if min_price is None:
            min_price = FLAGSHIP_LIMIT

    model_match = _MODEL.search(q)
    model = " ".join(model_match.groups()) if model_match else None

    features = [name for name, words in FEATURE_KEYWORDS if _any(q, words)]

    target_user = None
    for name, words in TARGET_USERS:
        if _any(q, words):
            target_user = name

    exclude_brands = []
    if _any(q, ("khong thich", "ghet", "tru", "khong muon")):
        exclude_brands = [name for name, aliases in BRAND_ALIASES if _any(q, aliases)]
        brand = None

    if _any(q, ("so sanh", "compare")):
        intent = "compare"
    elif exclude_brands:
        intent = "exclude"
    else:
        intent = "search"

    return {
        "intent": intent,
        "brand": brand,
        "model": model,
        "exclude_brands": exclude_brands,
        "min_price": min_price,
        "max_price": max_price,
        "price_range": price_range,
        "features": features,
        "target_user": target_user,
        "keywords": [w for w in re.findall(r"[a-z0-9]+", q) if len(w) > 2],
    }


def extract_json(text: str) -> Dict[str, Any]:
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise ValueError("no JSON object in assistant reply")
    return json.loads(match.group(0))


def fallback_comparison(products: List[Dict[str, Any]]) -> Dict[str, Any]:
    cheapest = min(products, key=lambda p: p["price_cents"])
    return {
        "strengths": [
            {
                "product_id": p["id"],
                "product_name": p["name"],
                "strengths": [
                    f"{p.get('brand') or 'Well-known'} brand",
                    "Affordable price" if p["price_cents"] < 15_000_000 else "Premium segment",
                    "Featured product" if p.get("is_featured") else "Solid build quality",
                ],
            }
            for p in products
        ],
        "differences": [
            {
                "category": "price",
                "values": [
                    {"product_id": p["id"], "value": p["price_cents"], "is_best": p is cheapest}
                    for p in products
                ],
            }
        ],
        "best_value": cheapest["name"],
        "recommendations": [
            "Consider how you will actually use the phone",
            "Compare camera and battery details",
            "Check reviews from real buyers",
        ],
        "source": "fallback",
    }


def fallback_image_analysis() -> Dict[str, Any]:
    return {
        "detected_product": "Unknown device",
        "brand": None,
        "category": "electronics",
        "confidence": "low",
        "source": "fallback",
    }


def _product_brief(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "price_cents": product.price_cents,
        "brand": product.brand.name if product.brand else None,
        "description": product.description or "",
        "is_featured": product.is_featured,
    }


_http = None


def get_http_client() -> httpx.Client:
    global _http
    if _http is None:
        _http = httpx.Client(timeout=settings.AI_TIMEOUT_SECONDS)
    return _http


class ShoppingAssistant:
    def __init__(self, session_factory: sessionmaker, http: Optional[httpx.Client] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.session_factory = session_factory
        self.http = http or get_http_client()
        self.sleep = sleep

    # -- upstream --------------------------------------------------------

    def _post(self, model: str, content, max_tokens: int = 1000) -> httpx.Response:
        return self.http.post(
            settings.AI_API_URL,
            headers={
                "x-api-key": settings.AI_API_KEY,
                "anthropic-version": API_VERSION,
                "content-type": "application/json",
            },
            json={
                "model": model,
                "max_tokens": max_tokens,
                "temperature": 0.1,
                "messages": [{"role": "user", "content": content}],
            },
            timeout=settings.AI_TIMEOUT_SECONDS,
        )

    def _complete(self, model: str, content, max_tokens: int = 1000) -> Dict[str, Any]:
        try:
            resp = self._post(model, content, max_tokens)
            resp.raise_for_status()
            return extract_json(resp.json()["content"][0]["text"])
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as exc:
            raise AssistantUnavailable(str(exc)) from exc

    # -- operations ------------------------------------------------------

    def analyze_query(self, message: str) -> Dict[str, Any]:
        prompt = (
            "You help customers of a phone shop. Extract the search intent from the message below and "
            "reply with JSON only, using the keys intent, brand, model, exclude_brands, min_price, max_price "
            "(VND), price_range, features, target_user, keywords.\n\n"
            f"MESSAGE: {message}"
        )
        try:
            analysis = self._complete(settings.AI_MODEL, prompt)
        except AssistantUnavailable as exc:
            log.warning("query analysis fell back to keyword parser: %s", exc)
            return {**fallback_parse_query(message), "source": "fallback"}
        return {**fallback_parse_query(message), **analysis, "source": "ai"}

    def analyze_image(self, image_b64: str, media_type: str = "image/jpeg") -> Dict[str, Any]:
        content = [
            {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": image_b64}},
            {"type": "text", "text": (
                "Identify the device in this photo. Reply with JSON only, using the keys "
                "detected_product, brand, category, confidence (high, medium or low)."
            )},
        ]
        for attempt in range(1, settings.AI_MAX_ATTEMPTS + 1):
            try:
                resp = self._post(settings.AI_VISION_MODEL, content, max_tokens=500)
            except httpx.HTTPError as exc:
                log.warning("image analysis request failed: %s", exc)
                break
            if resp.status_code == OVERLOADED and attempt < settings.AI_MAX_ATTEMPTS:
                delay = attempt * settings.AI_RETRY_BACKOFF_SECONDS
                log.warning("assistant overloaded, retrying image analysis in %.1fs (attempt %d)", delay, attempt)
                self.sleep(delay)
                continue
            if resp.is_success:
                try:
                    return {**extract_json(resp.json()["content"][0]["text"]), "source": "ai"}
                except (KeyError, IndexError, ValueError) as exc:
                    log.warning("unparseable image analysis: %s", exc)
            break
        return fallback_image_analysis()

    def compare_products(self, product_ids: List[int], preferences: Optional[str] = None) -> Dict[str, Any]:
        with self.session_factory() as db:
            products = [_product_brief(p) for p in CatalogRepository(db).products_by_ids(product_ids)]
        if len(products) < 2:
            raise ValidationFailed("Select at least two existing products to compare", product_ids=product_ids)

        prompt = "Compare these phones and reply with JSON only, using the keys strengths, differences, " \
                 "similarities, best_value, best_performance, best_camera, best_battery, recommendations.\n\n"
        prompt += json.dumps(products, ensure_ascii=False)
        if preferences:
            prompt += f"\n\nCUSTOMER PREFERENCES: {preferences}"
        try:
            return {**self._complete(settings.AI_MODEL, prompt, max_tokens=2000), "source": "ai"}
        except AssistantUnavailable as exc:
            log.warning("comparison fell back to local summary: %s", exc)
            return fallback_comparison(products)

    def chat(self, message: str, *, limit: int = 6) -> Dict[str, Any]:
        analysis = self.analyze_query(message)
        products: List[Product] = []
        if analysis.get("intent") != "compare":
            with self.session_factory() as db:
                page = CatalogRepository(db).search_products(
                    analysis.get("model") or "",
                    first=limit,
                    order_by="PRICE_ASC" if analysis.get("price_range") == "budget" else "CREATED_DESC",
                    brand_names=[analysis["brand"]] if analysis.get("brand") else None,
                    exclude_brand_names=analysis.get("exclude_brands") or None,
                    min_price=analysis.get("min_price"),
                    max_price=analysis.get("max_price"),
                )
                products = page.items
        return {
            "analysis": analysis,
            "products": [_product_brief(p) for p in products],
            "reply": _reply(analysis, len(products)),
        }


def _reply(analysis: Dict[str, Any], found: int) -> str:
    if analysis.get("intent") == "compare":
        return "Pick two or three products and I will compare them for you."
    if not found:
        return "I could not find a phone matching that. Try a different budget or brand."
    brand = analysis.get("brand")
    return f"I found {found} {brand + ' ' if brand else ''}phone{'s' if found != 1 else ''} that match what you asked for."
