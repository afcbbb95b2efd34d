import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict

from mcphost.config import load_config
from mcphost.conversation import Conversation
from mcphost.events import (
    AnswerDeltaEvent,
    AnswerStartedEvent,
    ReasoningDeltaEvent,
    RunItemEvent,
    StreamEvent,
    ThinkingStartedEvent,
    UsageEvent,
)
from mcphost.host import MCPHost

logger = logging.getLogger(__name__)

PROMPT = "\ninput your question (enter 'exit' to quit): "


def configure_logging(verbose: bool = False, log_file: str = "mcphost.log") -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


def banner(title: str) -> str:
    return "\n" + "=" * 20 + title + "=" * 20


def render(event: StreamEvent, out=sys.stdout) -> None:
    """Print one loop event to the terminal."""
    if isinstance(event, ThinkingStartedEvent):
        print(banner("LLM Thinking"), file=out)
    elif isinstance(event, AnswerStartedEvent):
        print(banner("LLM Answer"), file=out)
    elif isinstance(event, (ReasoningDeltaEvent, AnswerDeltaEvent)):
        out.write(event.content)
        out.flush()
    elif isinstance(event, UsageEvent):
        print(banner("usage statistics"), file=out)
        print(json.dumps(asdict(event.usage), indent=2), file=out)
    elif isinstance(event, RunItemEvent):
        if event.name == "tool_call":
            status = "failed" if event.data["is_error"] else "done"
            print(f"\n[mcphost] tool {event.data['tool_name']} {status}", file=out)
        elif event.name == "tool_skipped":
            print(f"\n[mcphost] tool not found: {event.data['tool_name']}", file=out)
        elif event.name == "error":
            print(f"\n[mcphost] turn failed: {event.data['message']}", file=out)


async def repl(host: MCPHost) -> None:
    conversation = Conversation()
    while True:
        try:
            query = await asyncio.to_thread(input, PROMPT)
        except EOFError:
            break
        if query.strip().lower() == "exit":
            print("Thank you for using, goodbye!")
            break
        if not query.strip():
            continue
        try:
            async for event in host.iter_turn(query, conversation):
                render(event)
            print(banner("Dialogue END"))
        except Exception as e:
            logger.exception(f"Dialogue error: {e}")
            print("You can continue to input questions, or enter 'exit' to quit")


async def amain(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    if args.model:
        config.model.model = args.model
    if args.parallel:
        config.parallel_tool_calls = True
    try:
        host = MCPHost(config)
    except ValueError as e:
        logger.error(f"Program error: {e}")
        return 1
    try:
        await host.connect()
        await repl(host)
    except Exception as e:
        logger.error(f"Program error: {e}")
        return 1
    finally:
        await host.shutdown()
    return 0


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mcphost",
        description="Chat with a model that can call tools on MCP servers.",
    )
    parser.add_argument(
        "--config", default="server-config.json",
        help="JSON server map or full host config (default: server-config.json)",
    )
    parser.add_argument("--model", help="override the configured model name")
    parser.add_argument(
        "--parallel", action="store_true",
        help="run the tool calls of one turn concurrently",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    try:
        return asyncio.run(amain(args))
    except KeyboardInterrupt:
        print("Farewell!")
        return 130
