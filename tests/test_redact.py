from dayplan.main import redact_api_keys


def test_redact_key_query_param():
    event = {"url": "https://maps.googleapis.com/maps/api/place/photo?maxwidth=400&photo_reference=ABC123&key=AIzaSECRET"}
    out = redact_api_keys(None, None, dict(event))
    assert out["url"].endswith("key=REDACTED")
    assert "photo_reference=ABC123" in out["url"]


def test_redact_bare_google_key():
    key = "AIza" + "x" * 35
    out = redact_api_keys(None, None, {"event": f"calling maps with {key}"})
    assert key not in out["event"]
    assert "REDACTED" in out["event"]


def test_redact_anthropic_key():
    out = redact_api_keys(None, None, {"error": "invalid x-api-key sk-ant-api03-abcDEF_123"})
    assert "sk-ant-" not in out["error"]


def test_redact_nested_and_lists():
    event = {"a": {"b": ["foo", "https://example.com/?q=1&key=AIzaSECRET"]}, "n": 3}
    out = redact_api_keys(None, None, dict(event))
    assert out["a"]["b"][0] == "foo"
    assert "AIzaSECRET" not in out["a"]["b"][1]
    assert out["n"] == 3
