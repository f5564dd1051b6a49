from __future__ import annotations

import json
from typing import Callable

from ..schemas.results import CallResult
from .prompts import escape_xml_attribute

ResponseFormatter = Callable[[CallResult, str], str]


def generic_payload_text(result: CallResult) -> str:
    """Best-effort text view of a success payload for categories without their own formatter."""
    if result.text:
        return result.text
    data = result.data
    if isinstance(data, dict):
        images = data.get("images")
        if isinstance(images, list) and images:
            return f"[Generated {len(images)} image(s): {', '.join(str(image) for image in images)}]"
    if data is None:
        return "No data available."
    try:
        return json.dumps(data, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(data)


def format_generic_external_data(api: str, result: CallResult) -> str:
    return f'<api_data source="{escape_xml_attribute(api)}">\n{generic_payload_text(result)}\n</api_data>'


class FormatterRegistry:
    """Selects the renderer that turns a category's success payload into final-pass context."""

    def __init__(self, formatters: dict[str, ResponseFormatter] | None = None) -> None:
        self._formatters: dict[str, ResponseFormatter] = {}
        for api, formatter in (formatters or {}).items():
            self.register(api, formatter)

    def register(self, api: str, formatter: ResponseFormatter) -> None:
        self._formatters[api.strip().lower()] = formatter

    def has_formatter(self, api: str) -> bool:
        return api.strip().lower() in self._formatters

    def render(self, api: str, result: CallResult, user_text: str) -> str:
        formatter = self._formatters.get(api.strip().lower())
        if formatter is None:
            return format_generic_external_data(api, result)
        return formatter(result, user_text)
