"""Session transcript and command history for the console."""

from __future__ import annotations

import enum
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

from .config import NetworkConfig

logger = logging.getLogger(__name__)

TERMINAL_TITLE = "CMD402 NFT Terminal v1.0.0"
HELP_HINT = "Type 'help' for available commands"


class LineKind(str, enum.Enum):
    COMMAND = "command"
    OUTPUT = "output"
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class TranscriptLine:
    id: str
    kind: LineKind
    text: str
    sequence: int


BannerSpec = Sequence[Tuple[LineKind, str]]
TranscriptListener = Callable[[str, Tuple[TranscriptLine, ...]], None]


def welcome_banner(config: NetworkConfig) -> List[Tuple[LineKind, str]]:
    return [
        (LineKind.INFO, TERMINAL_TITLE),
        (LineKind.INFO, f"{config.chain_name} Chain NFT Minting Interface"),
        (LineKind.INFO, f"Contract: {config.claim_contract}"),
        (LineKind.INFO, ""),
        (LineKind.INFO, HELP_HINT),
        (LineKind.INFO, ""),
    ]


class Transcript:
    """Append-only log of console lines; only :meth:`reset` discards lines.

    Listeners receive ``("append", (line,))`` for each new line and
    ``("reset", lines)`` with the regenerated banner after a reset.
    """

    def __init__(self, banner: BannerSpec = ()) -> None:
        self._banner = list(banner)
        self._ids = itertools.count(1)
        self._last_sequence = 0
        self._listeners: List[TranscriptListener] = []
        self._lines: List[TranscriptLine] = self._banner_lines()

    @property
    def lines(self) -> Tuple[TranscriptLine, ...]:
        return tuple(self._lines)

    @property
    def banner_size(self) -> int:
        return len(self._banner)

    def __len__(self) -> int:
        return len(self._lines)

    def texts(self) -> List[str]:
        return [line.text for line in self._lines]

    def _next_sequence(self) -> int:
        # Strictly increasing even when the clock does not advance between lines.
        self._last_sequence = max(time.monotonic_ns(), self._last_sequence + 1)
        return self._last_sequence

    def _make_line(self, kind: LineKind, text: str) -> TranscriptLine:
        return TranscriptLine(
            id=f"line-{next(self._ids)}",
            kind=LineKind(kind),
            text=text,
            sequence=self._next_sequence(),
        )

    def _banner_lines(self) -> List[TranscriptLine]:
        return [self._make_line(kind, text) for kind, text in self._banner]

    def subscribe(self, listener: TranscriptListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, lines: Tuple[TranscriptLine, ...]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, lines)
            except Exception:  # a broken renderer must not corrupt the transcript
                logger.exception("Transcript listener failed")

    def append(self, kind: LineKind, text: str) -> TranscriptLine:
        line = self._make_line(kind, text)
        self._lines.append(line)
        self._notify("append", (line,))
        return line

    def command(self, text: str) -> TranscriptLine:
        return self.append(LineKind.COMMAND, text)

    def output(self, text: str = "") -> TranscriptLine:
        return self.append(LineKind.OUTPUT, text)

    def info(self, text: str) -> TranscriptLine:
        return self.append(LineKind.INFO, text)

    def error(self, text: str) -> TranscriptLine:
        return self.append(LineKind.ERROR, text)

    def reset(self) -> None:
        """Drop every line and start over from a freshly generated banner."""

        self._lines = self._banner_lines()
        self._notify("reset", self.lines)


class CommandHistory:
    """Submitted inputs plus a browsing cursor.

    ``cursor`` is ``-1`` when not browsing; otherwise it counts back from the
    newest entry (``0`` is the most recent submission).
    """

    NOT_BROWSING = -1

    def __init__(self) -> None:
        self._entries: List[str] = []
        self.cursor = self.NOT_BROWSING

    @property
    def entries(self) -> Tuple[str, ...]:
        return tuple(self._entries)

    @property
    def browsing(self) -> bool:
        return self.cursor != self.NOT_BROWSING

    def __len__(self) -> int:
        return len(self._entries)

    def push(self, raw: str) -> None:
        self._entries.append(raw)
        self.cursor = self.NOT_BROWSING

    def older(self) -> str | None:
        """Step toward the oldest entry, saturating there."""

        if not self._entries:
            return None
        self.cursor = min(self.cursor + 1, len(self._entries) - 1)
        return self._entries[-1 - self.cursor]

    def newer(self) -> str | None:
        """Step toward "not browsing"; returns ``""`` when leaving the history.

        ``None`` means the cursor was not browsing and nothing changed.
        """

        if not self.browsing:
            return None
        if self.cursor == 0:
            self.cursor = self.NOT_BROWSING
            return ""
        self.cursor -= 1
        return self._entries[-1 - self.cursor]
