"""Dynamic prompt construction for each negotiation turn."""

from typing import Optional

from schedulink.config import settings


def build_opening_prompt(client_name: str, counterpart_name: Optional[str] = None) -> str:
    """Build the instruction for the first message of a negotiation."""
    service = settings.negotiation.service_name
    if counterpart_name:
        return (
            f"Write a warm first message to the {service} provider named {counterpart_name} "
            f"to book a {service} appointment on behalf of {client_name}. "
            "Ask which times are available today or tomorrow."
        )
    return (
        f"Write a warm first message to the {service} provider to book a {service} "
        f"appointment on behalf of {client_name}. "
        "Ask which times are available today or tomorrow."
    )


def build_reply_prompt(inbound_text: str) -> str:
    """Build the instruction for answering the provider's latest message."""
    return (
        f'The provider replied: "{inbound_text}"\n\n'
        "Answer this message appropriately. If they proposed a suitable time, accept it "
        "and confirm the appointment. If the appointment is now confirmed, end your "
        "message with [CONFIRMED:HH:MM]."
    )


def build_context_note(client_name: Optional[str], counterpart_name: Optional[str]) -> str:
    """Summarize who is negotiating with whom, for multi-turn requests."""
    lines = ["Conversation details:"]
    lines.append(f"  client: {client_name or 'unknown'}")
    if counterpart_name:
        lines.append(f"  provider: {counterpart_name}")
    return "\n".join(lines)
