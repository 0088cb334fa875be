"""Memory Assistant - a chat agent whose sensitive tools wait for a human."""

__version__ = "0.1.0"

from memory_assistant.config import Config
from memory_assistant.web_server import main

__all__ = ["Config", "main", "__version__"]
