"""Admin commands and the interactive concierge loop."""

import asyncio
import logging
import sys
from typing import TextIO

from .client import APIError, MediflyClient
from .config import CLIConfig
from .formatter import ResponseFormatter, format_progress, format_status

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("exit", "quit", "q")


class ConciergeCLI:
    """Interactive chat with the AI concierge.

    The whole conversation is resent on every turn; the server keeps no
    chat state.
    """

    def __init__(
        self,
        client: MediflyClient,
        input_stream: TextIO = sys.stdin,
        output_stream: TextIO = sys.stdout,
        show_thinking: bool = False,
    ):
        self.client = client
        self.input_stream = input_stream
        self.output_stream = output_stream
        self.show_thinking = show_thinking
        self.messages: list[dict[str, str]] = []

    async def run(self) -> None:
        self._print_welcome()
        while True:
            try:
                query = self._get_user_input()
                if not query:
                    continue
                if query.strip().lower() in EXIT_COMMANDS:
                    self._print("Goodbye!\n")
                    break
                await self._process_query(query)
            except KeyboardInterrupt:
                self._print("\n\nInterrupted. Use 'exit' or 'quit' to exit.\n")
            except EOFError:
                self._print("\nGoodbye!\n")
                break

    async def _process_query(self, query: str) -> None:
        formatter = ResponseFormatter(self.output_stream, self.show_thinking)
        self.messages.append({"role": "user", "content": query})
        async for event in self.client.chat(self.messages):
            formatter.handle_event(event)
        if formatter.answer:
            self.messages.append({"role": "assistant", "content": formatter.answer})
        else:
            # Nothing answered: drop the turn so a retry does not repeat it.
            self.messages.pop()
        formatter.finish_response()
        self._print("\n")

    def _get_user_input(self) -> str:
        self._print("> ")
        line = self.input_stream.readline()
        if not line:
            raise EOFError
        return line.rstrip("\n\r")

    def _print_welcome(self) -> None:
        self._print("MediFly concierge - ask about hospitals and treatments\n")
        self._print(f"Connected to: {self.client.config.chat_url}\n")
        self._print("Type your message and press Enter. Type 'exit' or 'quit' to exit.\n\n")

    def _print(self, text: str) -> None:
        self.output_stream.write(text)
        self.output_stream.flush()


async def run_command(
    client: MediflyClient,
    command: str,
    *,
    batch_size: int | None = None,
    force: bool = False,
    delay_ms: int | None = None,
    hospital_ids: list[str] | None = None,
    watch: bool = False,
    poll_interval: float = 2.0,
    output: TextIO = sys.stdout,
) -> int:
    """Run one admin command; return the process exit code."""
    try:
        if command == "status":
            output.write(format_status(await client.status()))
        elif command == "index":
            body = await client.start_index(batch_size, force, delay_ms)
            output.write(f"Started indexing job {body['job_id']} with {body['options']}\n")
            if watch:
                await _watch_progress(client, poll_interval, output)
        elif command == "progress":
            if watch:
                await _watch_progress(client, poll_interval, output)
            else:
                output.write(format_progress((await client.progress()).get("progress")))
        elif command == "reindex":
            body = await client.reindex(hospital_ids or [])
            output.write(format_progress(body.get("result")))
        elif command == "reset":
            body = await client.reset()
            output.write(f"Cleared {body.get('reset_count', 0)} embedding(s)\n")
        else:
            raise ValueError(f"Unknown command: {command}")
    except APIError as e:
        output.write(f"❌ {e}\n")
        return 1
    return 0


async def _watch_progress(client: MediflyClient, interval: float, output: TextIO) -> None:
    while True:
        status = await client.progress()
        output.write(format_progress(status.get("progress")))
        if not status.get("running"):
            if status.get("error"):
                output.write(f"Job failed: {status['error']}\n")
            return
        await asyncio.sleep(interval)


async def main(
    config: CLIConfig,
    command: str,
    debug: bool = False,
    show_thinking: bool = False,
    **options,
) -> int:
    """Main entry point for the CLI."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    client = MediflyClient(config)
    try:
        if command == "chat":
            await ConciergeCLI(client, show_thinking=show_thinking).run()
            return 0
        return await run_command(client, command, **options)
    finally:
        await client.close()
