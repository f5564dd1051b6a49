from __future__ import annotations

from capability_router.orchestration.formatters import FormatterRegistry, generic_payload_text
from capability_router.schemas.results import CallResult


def test_generic_payload_text_prefers_text_then_images_then_json() -> None:
    assert generic_payload_text(CallResult.ok("plain")) == "plain"
    assert generic_payload_text(CallResult.ok({"text": "from mapping"})) == "from mapping"
    assert generic_payload_text(CallResult.ok({"images": ["a.png", "b.png"]})) == "[Generated 2 image(s): a.png, b.png]"
    assert generic_payload_text(CallResult.ok(None)) == "No data available."
    assert generic_payload_text(CallResult.ok({"temp": 71, "unit": "F"})) == '{"temp": 71, "unit": "F"}'


def test_registry_falls_back_to_generic_block_with_escaped_source() -> None:
    registry = FormatterRegistry()

    rendered = registry.render('we"ird', CallResult.ok("Sunny"), "weather")

    assert rendered == '<api_data source="we&quot;ird">\nSunny\n</api_data>'


def test_registry_dispatches_case_insensitively() -> None:
    registry = FormatterRegistry()
    registry.register("AccuWeather", lambda result, text: f"<weather>{result.text}</weather> for {text}")

    assert registry.has_formatter("accuweather") is True
    assert registry.render("ACCUWEATHER", CallResult.ok("Sunny"), "Dallas") == "<weather>Sunny</weather> for Dallas"
