"""Console transport used by the offline demo and the local runner."""

from __future__ import annotations

from schedulink.channels.base import Presence, Transport

GREEN = "\033[92m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"


class ConsoleTransport(Transport):
    channel_name = "console"

    def __init__(self, show_presence: bool = True) -> None:
        self.show_presence = show_presence

    async def send_text(self, address: str, text: str) -> None:
        print(f"{GREEN}{BOLD}[to {address}]{RESET} {GREEN}{text}{RESET}")

    async def send_presence(self, address: str, presence: Presence) -> None:
        if self.show_presence and presence == Presence.COMPOSING:
            print(f"{DIM}  >> typing...{RESET}")
