"""cardlink - LLM chat with tool calling for digital business cards."""

__version__ = "0.1.0"
