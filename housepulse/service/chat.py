from __future__ import annotations

from typing import Optional, Protocol, Sequence

from housepulse.logging import get_logger
from housepulse.service.errors import RateLimitExceeded
from housepulse.service.pairing import PairingService
from housepulse.service.responder import Responder, RoutedReply
from housepulse.service.usage import UsageCounter

logger = get_logger(__name__)


class Turn(Protocol):
    role: str
    content: str


def latest_user_content(messages: Sequence[Turn]) -> str:
    """Content of the last ``user`` turn, or an empty string when there is none."""
    for message in reversed(messages):
        if message.role == "user":
            return message.content or ""
    return ""


class ChatRelay:
    """Pairing check, daily quota, then the responder.

    Callers authenticate and parse the request first. The quota slot is
    consumed before the responder runs, and a denied request never reaches
    the responder.
    """

    def __init__(
        self,
        pairing: PairingService,
        usage: UsageCounter,
        responder: Responder,
        *,
        daily_limit: int = 50,
    ) -> None:
        self.pairing = pairing
        self.usage = usage
        self.responder = responder
        self.daily_limit = daily_limit

    def relay(
        self,
        user_id: str,
        home_id: str,
        messages: Sequence[Turn],
        locale: Optional[str] = None,
    ) -> RoutedReply:
        self.pairing.require_pairing(home_id, user_id)

        decision = self.usage.increment_if_under_limit(user_id, self.daily_limit)
        if not decision.allowed:
            logger.warning("chat_rate_limited", user_id=user_id, count=decision.new_count)
            raise RateLimitExceeded()

        routed = self.responder.respond(latest_user_content(messages), locale)
        logger.info(
            "chat_relayed",
            user_id=user_id,
            message_count=decision.new_count,
            tool_events=len(routed.tool_events),
        )
        return routed
