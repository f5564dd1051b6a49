from __future__ import annotations

from typing import Sequence

from ..schemas.capabilities import CapabilityConfig
from ..schemas.results import ChatMessage


def escape_xml_content(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def escape_xml_attribute(text: str) -> str:
    return escape_xml_content(text).replace('"', "&quot;")


def normalize_one_line(text: str) -> str:
    """Return the first non-empty line of a model reply, trimmed."""
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def strip_wrapping_quotes(text: str) -> str:
    stripped = text.strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in {'"', "'"}:
        return stripped[1:-1].strip()
    return stripped


def build_retry_system_prompt(capability: CapabilityConfig) -> str:
    return "\n".join(
        [
            f"You refine parameters for an external ability ({capability.api}) so it can succeed.",
            "Rules:",
            "1) Output ONLY the refined parameters. No explanations.",
            "2) Stay as close as possible to the original intent; only add specificity or fix the format.",
        ]
    )


def build_retry_user_prompt(
    capability: CapabilityConfig,
    *,
    original_text: str,
    last_attempt_text: str,
    error: str,
    instruction: str,
) -> str:
    return "\n".join(
        [
            "<ability_context>",
            capability.describe_ability(),
            "</ability_context>",
            "",
            f"<original_user_input>{escape_xml_content(original_text)}</original_user_input>",
            f"<last_attempt_input>{escape_xml_content(last_attempt_text)}</last_attempt_input>",
            f"<error>{escape_xml_content(error)}</error>",
            "",
            instruction,
        ]
    )


def build_inference_system_prompt(capability: CapabilityConfig) -> str:
    return "\n".join(
        [
            "You extract the required parameters from the user's message for an external ability.",
            "",
            "Rules:",
            "1) Output ONLY the extracted parameter value(s). No explanations, no prefixes.",
            "2) If the user references something indirectly, resolve it to a concrete value.",
            "3) If no parameter can be inferred, output exactly: NONE",
        ]
    )


def build_inference_user_prompt(capability: CapabilityConfig, text: str) -> str:
    return "\n".join(
        [
            "<ability_context>",
            capability.describe_ability(),
            "</ability_context>",
            "",
            f"<user_message>{escape_xml_content(text)}</user_message>",
            "",
            "Extract the required parameter from the user message above. Output ONLY the value.",
        ]
    )


def build_context_eval_prompt(min_depth: int, max_depth: int) -> str:
    return "\n".join(
        [
            "You are a context relevance evaluator. Decide how many recent conversation messages "
            "are relevant to the current user prompt.",
            "",
            "Messages are numbered from most recent (1) to oldest.",
            f"- You MUST include at least {min_depth} message(s).",
            f"- You may include up to {max_depth} message(s) total.",
            "- Prioritize newer messages over older ones.",
            "- Respond with ONLY a single integer: the number of most recent messages to include.",
        ]
    )


def format_history_for_eval(messages: Sequence[ChatMessage]) -> str:
    return "\n".join(
        f"[{index}] ({message.role}): {message.content}"
        for index, message in enumerate(reversed(messages), start=1)
    )


def build_final_pass_prompt(user_text: str, external_data: str) -> str:
    return "\n".join(
        [
            "<external_data>",
            external_data,
            "</external_data>",
            "",
            f"<user_message>{escape_xml_content(user_text)}</user_message>",
        ]
    )
