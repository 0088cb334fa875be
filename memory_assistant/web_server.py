"""HTTP transport for the chat agent.

``POST /agents/chat/{conversation_id}`` takes ``{"conversation": {...},
"decisions": {call_id: "approve" | "deny"}}`` and streams newline-delimited
JSON events. Requests for the same conversation are served one at a time.
"""

import asyncio
import contextlib
import json
import signal
import sys
from typing import Any

from aiohttp import web

from memory_assistant.agent import ChatAgent
from memory_assistant.config import Config, get_config, set_config
from memory_assistant.conversation import Conversation
from memory_assistant.execution_queue import ConversationLanes
from memory_assistant.logging import configure_logging, get_logger
from memory_assistant.tools.registry import ToolRegistry

log = get_logger(__name__)

NDJSON_CONTENT_TYPE = "application/x-ndjson"


class WebServer:
    """Memory Assistant HTTP server."""

    def __init__(self, agent: ChatAgent, config: Config | None = None):
        self.config = config or get_config()
        self.agent = agent
        self.lanes = ConversationLanes(warn_after_ms=self.config.queue.warn_after_ms)
        # Last completed conversation per id; durable history is the caller's job.
        self.conversations: dict[str, Conversation] = {}

    @staticmethod
    def _error(status: int, message: str) -> web.Response:
        return web.json_response({"error": message}, status=status)

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def get_conversation(self, request: web.Request) -> web.Response:
        conversation_id = request.match_info["conversation_id"]
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return self._error(404, "Conversation not found")
        return web.json_response(conversation.to_dict())

    async def chat(self, request: web.Request) -> web.StreamResponse:
        conversation_id = request.match_info["conversation_id"]
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            return self._error(400, "Invalid JSON")
        if not isinstance(payload, dict):
            return self._error(400, "Request body must be a JSON object")

        raw_conversation = payload.get("conversation") or {}
        try:
            if not isinstance(raw_conversation, dict):
                raise ValueError("conversation must be an object")
            conversation = Conversation.from_dict({**raw_conversation, "id": conversation_id})
        except (ValueError, TypeError) as e:
            log.warning("Rejected malformed conversation", conversation_id=conversation_id, error=str(e))
            return self._error(400, "Malformed conversation")
        decisions = payload.get("decisions") or {}
        if not isinstance(decisions, dict):
            return self._error(400, "decisions must be an object keyed by tool call id")

        response = web.StreamResponse(headers={"Content-Type": NDJSON_CONTENT_TYPE})
        await response.prepare(request)
        abort_event = asyncio.Event()

        async def _store(final: Conversation) -> None:
            self.conversations[conversation_id] = final

        async def _respond() -> None:
            events = self.agent.on_chat_message(
                conversation,
                decisions=decisions,
                abort_event=abort_event,
                on_finish=_store,
            )
            async with contextlib.aclosing(events):
                async for event in events:
                    await response.write(self._encode(event))

        try:
            await self.lanes.run_exclusive(conversation_id, _respond)
        except (ConnectionResetError, asyncio.CancelledError):
            abort_event.set()
            log.info("Client went away", conversation_id=conversation_id)
            raise
        await response.write_eof()
        return response

    @staticmethod
    def _encode(event: dict[str, Any]) -> bytes:
        return (json.dumps(event, default=str) + "\n").encode("utf-8")

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.health)
        app.router.add_post("/agents/chat/{conversation_id}", self.chat)
        app.router.add_get("/agents/chat/{conversation_id}", self.get_conversation)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.agent.provider.close()


def build_agent(config: Config) -> ChatAgent:
    """Wire the tool registry and provider declared in config."""
    if config.tools.factory:
        registry = ToolRegistry.from_factory(config.tools.factory)
    else:
        registry = ToolRegistry.from_config([])
    log.info("Tool registry ready", tools=registry.list_tools())
    return ChatAgent(registry=registry)


async def _run_server(config: Config) -> None:
    """Start the web server and block until SIGINT/SIGTERM."""
    server = WebServer(build_agent(config), config)
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, OSError):
            # Windows doesn't support add_signal_handler for SIGTERM.
            pass

    runner = web.AppRunner(server.create_app())
    await runner.setup()
    site = web.TCPSite(runner, config.web.host, config.web.port)
    await site.start()
    log.info("Memory Assistant listening", host=config.web.host, port=config.web.port)

    try:
        await stop_event.wait()
    finally:
        await runner.cleanup()


def run(
    config_path: str = "",
    host: str = "",
    port: int = 0,
    verbose: bool = False,
) -> None:
    """Load config, apply overrides and serve."""
    cfg = Config.load(config_path or None)
    if host:
        cfg.web.host = host
    if port:
        cfg.web.port = port
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)

    try:
        asyncio.run(_run_server(cfg))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        log.error("Fatal error", error=str(e))
        sys.exit(1)


def main() -> None:
    """Console entry point for memory-assistant-web."""
    import typer

    cli = typer.Typer(help="Memory Assistant - chat agent with human-approved tools")

    @cli.command()
    def serve(
        config: str = typer.Option("", "-c", "--config", help="Path to config file"),
        host: str = typer.Option("", "--host", help="Override bind host"),
        port: int = typer.Option(0, "--port", help="Override bind port"),
        verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
    ) -> None:
        run(config, host, port, verbose)

    @cli.command()
    def version() -> None:
        """Show version information."""
        from memory_assistant import __version__
        typer.echo(f"Memory Assistant v{__version__}")

    cli()


if __name__ == "__main__":
    main()
