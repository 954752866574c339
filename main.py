"""
Schedulink entry point.

Connects the store, recovers unfinished negotiations and runs the event
loop. In console mode one negotiation is started from the command line and
every line typed afterwards is delivered as the counterpart's reply.

Usage:
    Service:      python main.py
    Console mode: python main.py console --phone "+90 555 123 45 67" --client Ahmet
"""

import argparse
import asyncio
import logging
import sys

from schedulink.config import settings

logger = logging.getLogger(__name__)


def _build_orchestrator(transport):
    """Wire the production collaborators from settings."""
    from schedulink.agents import NegotiationAgent, OpenAITextGenerator
    from schedulink.orchestrator import Orchestrator
    from schedulink.storage import ConversationStore
    from schedulink.tools.calendar import InMemoryCalendar
    from schedulink.tools.notifications import build_notifier

    return Orchestrator(
        store=ConversationStore(settings.storage.database_url),
        agent=NegotiationAgent(OpenAITextGenerator()),
        transport=transport,
        notifier=build_notifier(),
        calendar=InMemoryCalendar(),
    )


async def _startup(orchestrator) -> bool:
    """Connect and recover. A store that cannot be reached is fatal."""
    from schedulink.storage import PersistenceFailure

    try:
        await orchestrator.store.connect()
    except PersistenceFailure as exc:
        logger.critical("Cannot connect to the database: %s", exc)
        return False
    await orchestrator.recover()
    return True


async def _run_service() -> int:
    """Run the event loop until interrupted (inbound events come from a transport)."""
    from schedulink.channels import ConsoleTransport

    orchestrator = _build_orchestrator(ConsoleTransport())
    if not await _startup(orchestrator):
        return 1
    try:
        await orchestrator.run()
    finally:
        await orchestrator.shutdown()
        await orchestrator.store.close()
    return 0


async def _run_console(phone: str, client: str, counterpart: str | None) -> int:
    """Start one negotiation and feed typed lines back as replies."""
    from schedulink.channels import ConsoleTransport

    orchestrator = _build_orchestrator(ConsoleTransport())
    if not await _startup(orchestrator):
        return 1

    runner = asyncio.create_task(orchestrator.run())
    orchestrator.submit_start(phone, client, counterpart)
    try:
        while True:
            line = (await asyncio.to_thread(input, "")).strip()
            if line.lower() in ("quit", "exit", "q"):
                break
            if line:
                orchestrator.submit_inbound(phone, line)
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await orchestrator.shutdown()
        await runner
        await orchestrator.store.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Schedulink appointment negotiator")
    sub = parser.add_subparsers(dest="mode")
    console = sub.add_parser("console", help="Negotiate interactively in the terminal")
    console.add_argument("--phone", required=True, help="Counterpart phone number or address")
    console.add_argument("--client", required=True, help="Name of the client being booked")
    console.add_argument("--counterpart", default=None, help="Name of the counterpart")
    args = parser.parse_args(argv)

    if args.mode == "console":
        return asyncio.run(_run_console(args.phone, args.client, args.counterpart))
    return asyncio.run(_run_service())


if __name__ == "__main__":
    sys.exit(main())
