from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

from housepulse.logging import get_logger

logger = get_logger(__name__)

SENSOR_TOOL = "mcp_get_sensor_data"
SENSOR_KEYWORDS: Tuple[str, ...] = ("temperature", "sensor", "data")

_REPLIES = {
    "sensor": {
        "de": "Ich habe die Sensordaten für Ihr Zuhause abgerufen. Die aktuelle Temperatur beträgt 21°C.",
        "en": "I retrieved the sensor data for your home. The current temperature is 21°C.",
    },
    "generic": {
        "de": "Verstanden. Wie kann ich Ihnen weiter helfen?",
        "en": "Understood. How can I help you further?",
    },
}


@dataclass(frozen=True)
class ToolEvent:
    tool: str
    status: str


@dataclass
class RoutedReply:
    reply: str
    tool_events: List[ToolEvent] = field(default_factory=list)


class Responder(Protocol):
    def respond(self, content: str, locale: Optional[str]) -> RoutedReply: ...


def reply_language(locale: Optional[str]) -> str:
    """German for any locale starting with ``de``, English otherwise."""
    return "de" if locale and locale.startswith("de") else "en"


class KeywordResponder:
    """Placeholder tool router that matches keywords in the latest user message."""

    def __init__(self, keywords: Tuple[str, ...] = SENSOR_KEYWORDS) -> None:
        self.keywords = keywords

    def respond(self, content: str, locale: Optional[str]) -> RoutedReply:
        language = reply_language(locale)
        lowered = content.lower()
        if any(keyword in lowered for keyword in self.keywords):
            logger.info("tool_simulated", tool=SENSOR_TOOL, language=language)
            return RoutedReply(
                reply=_REPLIES["sensor"][language],
                tool_events=[ToolEvent(tool=SENSOR_TOOL, status="success")],
            )
        return RoutedReply(reply=_REPLIES["generic"][language])
