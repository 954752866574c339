"""
Negotiation agent: produces the next outbound turn and detects conclusion.

The agent holds no per-conversation state: the orchestrator reads the
history from the store before each call and persists the result afterwards.
A negotiation concludes when the generated text carries a confirmation
marker such as ``[CONFIRMED:15:30]`` with a valid 24-hour time.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from schedulink.agents.generation import ChatMessage, TextGenerator
from schedulink.logging_context import get_conversation_logger
from schedulink.prompts.prompt_templates import (
    build_context_note,
    build_opening_prompt,
    build_reply_prompt,
)
from schedulink.prompts.system_prompts import NEGOTIATOR_SYSTEM_PROMPT
from schedulink.schemas.conversation_schema import (
    ConversationContext,
    Direction,
    MessageLogEntry,
)

logger = get_conversation_logger(__name__)

MARKER_PATTERN = re.compile(r"\[\s*CONFIRMED\s*:\s*([^\]]*)\]")
TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


@dataclass(frozen=True)
class DriverTurn:
    """Generated outbound text and the agreed time, if the turn concludes."""
    text: str
    concluded_time: Optional[str] = None

    @property
    def concluded(self) -> bool:
        return self.concluded_time is not None


def parse_marker_time(payload: str) -> Optional[str]:
    """Validate a marker payload as a 24-hour time; returns ``HH:MM`` or None.

    Examples:
        >>> parse_marker_time("9:05")
        '09:05'
        >>> parse_marker_time("24:61") is None
        True
    """
    match = TIME_PATTERN.match(payload.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def detect_conclusion(text: str) -> Optional[str]:
    """Return the agreed time from the first valid marker in ``text``."""
    for match in MARKER_PATTERN.finditer(text):
        time = parse_marker_time(match.group(1))
        if time is not None:
            return time
        logger.warning("Ignoring confirmation marker with invalid time: %r", match.group(0))
    return None


def strip_marker(text: str) -> str:
    """Remove confirmation markers so the counterpart never sees them."""
    stripped = MARKER_PATTERN.sub("", text)
    return re.sub(r"[ \t]{2,}", " ", stripped).strip()


class NegotiationAgent:
    """Stateless dialogue driver on top of a text-generation capability."""

    def __init__(self, generator: TextGenerator) -> None:
        self._generator = generator

    async def start(self, client_name: str, counterpart_name: Optional[str] = None) -> str:
        """Generate the opening message of a negotiation.

        Raises:
            GenerationFailure: If the generator fails. Not retried.
        """
        messages: list[ChatMessage] = [
            {"role": "system", "content": NEGOTIATOR_SYSTEM_PROMPT},
            {"role": "user", "content": build_opening_prompt(client_name, counterpart_name)},
        ]
        text = await self._generator.generate(messages)
        logger.info("Opening message generated for client %s", client_name)
        return text

    async def continue_(
        self,
        inbound_text: str,
        history: Sequence[MessageLogEntry] = (),
        context: Optional[ConversationContext] = None,
    ) -> DriverTurn:
        """Generate the answer to the counterpart's latest message.

        Args:
            inbound_text: What the counterpart just wrote.
            history: Earlier log entries; sent and received turns become chat history.
            context: Current negotiation context, used to name the parties.

        Raises:
            GenerationFailure: If the generator fails. Not retried.
        """
        messages: list[ChatMessage] = [{"role": "system", "content": NEGOTIATOR_SYSTEM_PROMPT}]
        if context is not None:
            messages.append(
                {
                    "role": "system",
                    "content": build_context_note(context.client_name, context.counterpart_name),
                }
            )
        for entry in history:
            if entry.direction == Direction.SENT:
                messages.append({"role": "assistant", "content": entry.text})
            elif entry.direction == Direction.RECEIVED:
                messages.append({"role": "user", "content": entry.text})
        messages.append({"role": "user", "content": build_reply_prompt(inbound_text)})

        text = await self._generator.generate(messages)
        concluded_time = detect_conclusion(text)
        if concluded_time:
            logger.info("Negotiation concluded at %s", concluded_time)
        return DriverTurn(text=text, concluded_time=concluded_time)
