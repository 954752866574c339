"""
Offline console demo: runs a full negotiation without any API keys.

Uses the real orchestrator, state machine, timer scheduler and an in-memory
SQLite store. Outbound turns come from a scripted generator and timers are
shortened to a few seconds so reminders and escalations can be watched live.

Usage:
    python console_demo.py
    python console_demo.py --scenario silent
    python console_demo.py --scenario interactive
"""

import argparse
import asyncio
import dataclasses
from typing import Sequence

from schedulink.agents import GenerationFailure, NegotiationAgent
from schedulink.agents.generation import ChatMessage
from schedulink.channels import ConsoleTransport
from schedulink.config import settings
from schedulink.orchestrator import Orchestrator
from schedulink.storage import ConversationStore
from schedulink.tools.calendar import InMemoryCalendar

BLUE = "\033[94m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

PHONE = "+90 555 123 45 67"
CLIENT = "Ahmet"
COUNTERPART = "Mehmet Usta"


class ScriptedGenerator:
    """Returns canned turns in order instead of calling a model."""

    def __init__(self, turns: Sequence[str]) -> None:
        self._turns = list(turns)

    async def generate(self, messages: Sequence[ChatMessage]) -> str:
        if not self._turns:
            raise GenerationFailure("Script exhausted")
        return self._turns.pop(0)


class ConsoleNotifier:
    async def notify(self, message: str) -> None:
        print(f"{YELLOW}{BOLD}[operator]{RESET} {YELLOW}{message}{RESET}")


SCRIPT = [
    "Merhaba! Ahmet için saç kesimi randevusu almak istiyorum. "
    "Bugün veya yarın müsait saatleriniz var mı?",
    "Harika, 15:00 veya 15:30 olabilir mi?",
    "Süper, 15:30 olarak not aldım. Görüşmek üzere! [CONFIRMED:15:30]",
]

SCENARIOS: dict[str, list[str]] = {
    "booking": [
        "Merhaba, bugün öğleden sonra boşum.",
        "15:30 uygun.",
    ],
    "silent": [],
}


def _demo_config():
    return dataclasses.replace(
        settings,
        timeouts=dataclasses.replace(settings.timeouts, reminder_delay_sec=3, escalation_delay_sec=6),
        delivery=dataclasses.replace(
            settings.delivery, min_typing_delay_sec=0.3, max_typing_delay_sec=1.0
        ),
    )


def _banner(title: str) -> None:
    print()
    print(f"{BOLD}{'=' * 60}{RESET}")
    print(f"{BOLD}  SCHEDULINK - {title}{RESET}")
    print(f"{BOLD}  Client: {CLIENT} | Counterpart: {COUNTERPART}{RESET}")
    print(f"{BOLD}{'=' * 60}{RESET}")
    print()


async def _build() -> Orchestrator:
    store = ConversationStore("sqlite://")
    await store.connect()
    return Orchestrator(
        store=store,
        agent=NegotiationAgent(ScriptedGenerator(SCRIPT)),
        transport=ConsoleTransport(),
        notifier=ConsoleNotifier(),
        calendar=InMemoryCalendar(),
        config=_demo_config(),
    )


async def _summary(orchestrator: Orchestrator, key: str) -> None:
    context = await orchestrator.store.get_context(key)
    appointments = await orchestrator.store.list_appointments(key)
    print(f"\n{BOLD}{'=' * 60}{RESET}")
    print(f"{DIM}  completed={context.is_completed} awaiting={context.awaiting_reply} "
          f"escalated_at={context.escalated_at}{RESET}")
    for appointment in appointments:
        print(f"{DIM}  appointment: {appointment.date} {appointment.time} "
              f"({appointment.external_calendar_id}){RESET}")
    print(f"{BOLD}{'=' * 60}{RESET}")


async def run_scenario(scenario: str) -> None:
    """Auto-play a pre-scripted scenario."""
    replies = SCENARIOS.get(scenario)
    if replies is None:
        print(f"{RED}Unknown scenario: {scenario}{RESET}")
        return

    _banner(f"Scenario: {scenario}")
    orchestrator = await _build()
    key = await orchestrator.start_negotiation(PHONE, CLIENT, COUNTERPART)

    for reply in replies:
        await asyncio.sleep(1)
        print(f"\n{BLUE}[{COUNTERPART}] {RESET}{reply}")
        await orchestrator.handle_inbound(PHONE, reply)

    if not replies:
        print(f"{DIM}  >> waiting for reminder and escalation...{RESET}")
        await asyncio.sleep(orchestrator.config.timeouts.escalation_delay_sec + 1)
        await orchestrator.scheduler.settle()

    await _summary(orchestrator, key)
    await orchestrator.shutdown()
    await orchestrator.store.close()


async def run_interactive() -> None:
    _banner("Interactive (type 'quit' to exit)")
    orchestrator = await _build()
    key = await orchestrator.start_negotiation(PHONE, CLIENT, COUNTERPART)

    while True:
        context = await orchestrator.store.get_context(key)
        if context.is_completed:
            break
        line = (await asyncio.to_thread(input, f"\n{BLUE}[{COUNTERPART}] {RESET}")).strip()
        if line.lower() in ("quit", "exit", "q"):
            print(f"\n{DIM}Session ended.{RESET}")
            break
        if not line:
            continue
        try:
            await orchestrator.handle_inbound(PHONE, line)
        except GenerationFailure:
            print(f"{RED}Script exhausted; no more turns.{RESET}")
            break

    await _summary(orchestrator, key)
    await orchestrator.shutdown()
    await orchestrator.store.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Schedulink offline demo")
    parser.add_argument("--scenario", default="booking", help="booking, silent or interactive")
    args = parser.parse_args()

    if args.scenario == "interactive":
        asyncio.run(run_interactive())
    else:
        asyncio.run(run_scenario(args.scenario))
