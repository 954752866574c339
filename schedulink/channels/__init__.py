from schedulink.channels.base import DeliveryFailure, Presence, Transport
from schedulink.channels.console import ConsoleTransport
from schedulink.channels.delivery import deliver, send_humanized, send_plain

__all__ = [
    "Transport", "Presence", "DeliveryFailure", "ConsoleTransport",
    "deliver", "send_humanized", "send_plain",
]
