from schedulink.agents.generation import GenerationFailure, OpenAITextGenerator, TextGenerator
from schedulink.agents.negotiator import (
    DriverTurn,
    NegotiationAgent,
    detect_conclusion,
    strip_marker,
)

__all__ = [
    "NegotiationAgent", "DriverTurn", "detect_conclusion", "strip_marker",
    "TextGenerator", "OpenAITextGenerator", "GenerationFailure",
]
