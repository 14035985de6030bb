import json

import httpx
import pytest

from smartshop.core.errors import ValidationFailed
from smartshop.services.assistant import ShoppingAssistant, fallback_parse_query, normalize


def _reply(text, status=200):
    return httpx.Response(status, json={"content": [{"type": "text", "text": text}]})


def _assistant(session_factory, handler, sleeps=None):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    if sleeps is None:
        sleeps = []
    return ShoppingAssistant(session_factory, http=client, sleep=sleeps.append)


def _timeout(request):
    raise httpx.ConnectTimeout("slow", request=request)


def test_normalize_strips_diacritics():
    assert normalize("Điện thoại dưới 10 triệu") == "dien thoai duoi 10 trieu"


@pytest.mark.parametrize("query, expected", [
    ("iphone dưới 20 triệu", {"brand": "Apple", "max_price": 20_000_000, "min_price": None}),
    ("điện thoại samsung trên 15tr", {"brand": "Samsung", "min_price": 15_000_000}),
    ("redmi tầm 5 triệu", {"brand": "Xiaomi", "min_price": 4_000_000, "max_price": 6_000_000}),
    ("máy từ 5 triệu đến 8 triệu", {"min_price": 5_000_000, "max_price": 8_000_000}),
    ("điện thoại giá rẻ cho sinh viên", {"price_range": "budget", "max_price": 8_000_000, "target_user": "student"}),
    ("flagship chụp ảnh đẹp", {"price_range": "flagship", "min_price": 20_000_000, "features": ["camera"]}),
    ("so sánh iphone 15 và galaxy s24", {"intent": "compare", "model": "iphone 15"}),
    ("không thích samsung", {"intent": "exclude", "exclude_brands": ["Samsung"], "brand": None}),
])
def test_fallback_parser(query, expected):
    parsed = fallback_parse_query(query)
    for key, value in expected.items():
        assert parsed[key] == value, key


def test_premium_words_do_not_pick_a_brand():
    assert fallback_parse_query("premium phone")["brand"] is None


def test_analyze_query_uses_model_reply(session_factory):
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return _reply('Sure! {"intent": "search", "brand": "Apple", "max_price": 30000000}')

    analysis = _assistant(session_factory, handler).analyze_query("iphone dưới 30 triệu")
    assert analysis["source"] == "ai"
    assert analysis["brand"] == "Apple"
    assert analysis["max_price"] == 30_000_000
    assert "x-api-key" in seen["headers"]
    assert seen["body"]["messages"][0]["role"] == "user"


@pytest.mark.parametrize("handler", [
    lambda request: httpx.Response(500, json={"error": "boom"}),
    lambda request: _reply("I cannot answer that"),
    _timeout,
])
def test_analyze_query_falls_back(session_factory, handler):
    analysis = _assistant(session_factory, handler).analyze_query("samsung dưới 10 triệu")
    assert analysis["source"] == "fallback"
    assert analysis["brand"] == "Samsung"
    assert analysis["max_price"] == 10_000_000


def test_image_analysis_retries_only_when_overloaded(session_factory):
    calls, sleeps = [], []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(529, json={"error": {"type": "overloaded_error"}})
        return _reply('{"detected_product": "iPhone 15", "brand": "Apple", "category": "phone", "confidence": "high"}')

    result = _assistant(session_factory, handler, sleeps).analyze_image("aGVsbG8=", "image/png")
    assert result["detected_product"] == "iPhone 15"
    assert len(calls) == 3
    assert sleeps == [2.0, 4.0]


def test_image_analysis_gives_up_after_max_attempts(session_factory):
    sleeps = []
    result = _assistant(session_factory, lambda r: httpx.Response(529), sleeps).analyze_image("aGVsbG8=")
    assert result["confidence"] == "low"
    assert result["category"] == "electronics"
    assert len(sleeps) == 2


def test_image_analysis_does_not_retry_other_errors(session_factory):
    calls, sleeps = [], []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"error": "bad image"})

    result = _assistant(session_factory, handler, sleeps).analyze_image("aGVsbG8=")
    assert result["source"] == "fallback"
    assert len(calls) == 1 and sleeps == []


def test_compare_falls_back_to_local_summary(session_factory, make_product):
    cheap = make_product(name="Redmi Note 13", price_cents=5_000_000, brand="Xiaomi")
    pricey = make_product(name="iPhone 15", price_cents=25_000_000, brand="Apple")
    result = _assistant(session_factory, lambda r: httpx.Response(503)).compare_products([cheap, pricey])
    assert result["source"] == "fallback"
    assert result["best_value"] == "Redmi Note 13"
    assert len(result["strengths"]) == 2


def test_compare_needs_two_products(session_factory, make_product):
    with pytest.raises(ValidationFailed):
        _assistant(session_factory, lambda r: _reply("{}")).compare_products([make_product()])


def test_chat_searches_catalog_with_hints(session_factory, make_product):
    make_product(name="Galaxy A15", price_cents=4_000_000, brand="Samsung")
    make_product(name="Galaxy S24 Ultra", price_cents=30_000_000, brand="Samsung")
    make_product(name="Redmi 13C", price_cents=3_000_000, brand="Xiaomi")

    answer = _assistant(session_factory, lambda r: httpx.Response(503)).chat("samsung dưới 10 triệu")
    assert [p["name"] for p in answer["products"]] == ["Galaxy A15"]
    assert "1 Samsung phone" in answer["reply"]
