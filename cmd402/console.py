"""Interactive ASCII console for the CMD402 mint terminal."""

from __future__ import annotations

import asyncio
import enum
import logging
import sys
from typing import Callable, Optional, TextIO, Tuple

from .config import NetworkConfig
from .dispatcher import CommandDispatcher
from .ledger import RemoteLedgerClient
from .mint import MintOrchestrator, MintPolicy
from .rpc_client import EthRPCClient
from .transcript import CommandHistory, LineKind, Transcript, TranscriptLine, welcome_banner
from .wallet import RPCWalletProvider, WalletProvider

logger = logging.getLogger(__name__)

ASCII_HEADER = """\
 ██████╗███╗   ███╗██████╗ ██╗  ██╗ ██████╗ ██████╗
██╔════╝████╗ ████║██╔══██╗██║  ██║██╔═████╗╚════██╗
██║     ██╔████╔██║██║  ██║███████║██║██╔██║ █████╔╝
██║     ██║╚██╔╝██║██║  ██║╚════██║████╔╝██║██╔═══╝
╚██████╗██║ ╚═╝ ██║██████╔╝     ██║╚██████╔╝███████╗
 ╚═════╝╚═╝     ╚═╝╚═════╝      ╚═╝ ╚═════╝ ╚══════╝
"""

EXIT_WORDS = {"exit", "quit"}
PROMPT = "$ "


class Key(str, enum.Enum):
    CHAR = "char"
    BACKSPACE = "backspace"
    ENTER = "enter"
    UP = "up"
    DOWN = "down"


def build_console(
    config: NetworkConfig,
    *,
    rpc: EthRPCClient | None = None,
    wallet: WalletProvider | None = None,
    ledger: RemoteLedgerClient | None = None,
) -> "ConsoleController":
    """Wire the transcript, history, wallet, ledger and orchestrator together."""

    if rpc is None and (wallet is None or ledger is None):
        rpc = EthRPCClient(config)
    wallet = wallet or RPCWalletProvider(rpc, config)
    ledger = ledger or RemoteLedgerClient(rpc, config)
    orchestrator = MintOrchestrator(
        ledger, MintPolicy.from_config(config), session_probe=wallet.refresh
    )
    dispatcher = CommandDispatcher(
        Transcript(welcome_banner(config)),
        CommandHistory(),
        wallet,
        ledger,
        orchestrator,
        config,
    )
    return ConsoleController(dispatcher)


class ConsoleController:
    """Keyboard-level state: the input buffer and history browsing.

    Enter hands the buffer to the dispatcher as a task. While that task runs,
    Enter and the history keys are ignored; typing still edits the buffer.
    """

    def __init__(self, dispatcher: CommandDispatcher) -> None:
        self.dispatcher = dispatcher
        self.input_buffer = ""
        self._task: asyncio.Task | None = None

    @property
    def transcript(self) -> Transcript:
        return self.dispatcher.transcript

    @property
    def history(self) -> CommandHistory:
        return self.dispatcher.history

    @property
    def wallet(self) -> WalletProvider:
        return self.dispatcher.wallet

    @property
    def busy(self) -> bool:
        pending = self._task is not None and not self._task.done()
        return pending or self.dispatcher.busy

    def handle_key(self, key: Key, char: str = "") -> Optional[asyncio.Task]:
        if key is Key.CHAR:
            self.input_buffer += char
            return None
        if key is Key.BACKSPACE:
            self.input_buffer = self.input_buffer[:-1]
            return None
        if self.busy:
            return None
        if key is Key.ENTER:
            if not self.input_buffer.strip():
                return None
            raw, self.input_buffer = self.input_buffer, ""
            self._task = asyncio.ensure_future(self.dispatcher.submit(raw))
            return self._task
        if key is Key.UP:
            entry = self.history.older()
        elif key is Key.DOWN:
            entry = self.history.newer()
        else:  # pragma: no cover - enum is closed
            raise ValueError(f"Unsupported key: {key}")
        if entry is not None:
            self.input_buffer = entry
        return None

    async def submit_line(self, raw: str) -> bool:
        """Type ``raw`` and press Enter, waiting for the command to finish."""

        if self.busy:
            return False
        self.input_buffer = raw
        task = self.handle_key(Key.ENTER)
        if task is None:
            self.input_buffer = ""
            return False
        return await task


class TranscriptPrinter:
    """Writes transcript events to a text stream.

    Command echoes are skipped by default because a line-oriented terminal
    already shows what was typed at the prompt.
    """

    def __init__(self, stream: TextIO | None = None, *, echo_commands: bool = False) -> None:
        self.stream = stream or sys.stdout
        self.echo_commands = echo_commands

    def _write_line(self, line: TranscriptLine) -> None:
        if line.kind is LineKind.COMMAND and not self.echo_commands:
            return
        print(line.text, file=self.stream)

    def __call__(self, event: str, lines: Tuple[TranscriptLine, ...]) -> None:
        if event == "reset":
            if self.stream.isatty():
                self.stream.write("\033[2J\033[H")
            print(ASCII_HEADER, file=self.stream)
        for line in lines:
            self._write_line(line)
        self.stream.flush()


async def run_console(
    controller: ConsoleController,
    read_line: Callable[[str], str] = input,
    stream: TextIO | None = None,
) -> None:
    printer = TranscriptPrinter(stream)
    unsubscribe = controller.transcript.subscribe(printer)
    printer("reset", controller.transcript.lines)
    try:
        while True:
            try:
                raw = await asyncio.to_thread(read_line, PROMPT)
            except EOFError:
                break
            if raw.strip().lower() in EXIT_WORDS:
                break
            await controller.wallet.refresh()
            await controller.submit_line(raw)
    finally:
        unsubscribe()
    print("Goodbye!", file=printer.stream)


def console_main(config: NetworkConfig) -> None:
    """Launch the interactive ASCII console."""

    controller = build_console(config)
    try:
        asyncio.run(run_console(controller))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
