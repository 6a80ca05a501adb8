from playforce.token_cache import Token, TokenCache


def test_token_from_response_strips_slash():
    t = Token.from_response({"access_token": "abc", "instance_url": "https://x.my.salesforce.com/", "id": "u"})
    assert t.instance_url == "https://x.my.salesforce.com"
    assert t.raw["id"] == "u"


def test_preview_never_shows_short_tokens():
    assert Token("short", "https://x").preview == "***"
    assert Token("00D1234567890abcdefXYZ", "https://x").preview == "00D1234567...defXYZ"


def test_cache_keyed_by_profile():
    cache = TokenCache()
    a, b = Token("a" * 20, "https://a"), Token("b" * 20, "https://b")
    cache.put("prod", a)
    cache.put("sandbox", b)

    assert cache.get("prod") is a
    assert cache.get("sandbox") is b
    assert cache.get(None) is None
    assert "prod" in cache

    cache.discard("prod")
    assert cache.get("prod") is None
    cache.clear()
    assert len(cache) == 0
