"""Check-in note history."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import overload


@dataclass(frozen=True)
class CheckInEntry:
    date: datetime
    note: str

    def to_dict(self) -> dict[str, str]:
        return {"date": self.date.isoformat(), "note": self.note}


def normalize_entry(noted_at: datetime, note: str) -> CheckInEntry:
    """Build an entry from a stored note row; naive timestamps are taken as UTC."""
    if noted_at.tzinfo is None:
        noted_at = noted_at.replace(tzinfo=timezone.utc)
    return CheckInEntry(date=noted_at, note=note)


class CheckInHistory(Sequence[CheckInEntry]):
    """Finite, restartable view over a participation's notes.

    Entries are held oldest-first; ``newest_first`` only changes the iteration
    order, so every ``iter()`` starts a fresh pass in the requested order.
    """

    def __init__(self, entries: Sequence[CheckInEntry], newest_first: bool = False) -> None:
        self._entries = tuple(entries)
        self.newest_first = newest_first

    def __len__(self) -> int:
        return len(self._entries)

    @overload
    def __getitem__(self, index: int) -> CheckInEntry: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[CheckInEntry]: ...

    def __getitem__(self, index: int | slice) -> CheckInEntry | Sequence[CheckInEntry]:
        ordered = self._entries[::-1] if self.newest_first else self._entries
        return ordered[index]

    def __iter__(self) -> Iterator[CheckInEntry]:
        if self.newest_first:
            return reversed(self._entries)
        return iter(self._entries)

    def ordered(self, newest_first: bool) -> CheckInHistory:
        """Same entries, other iteration order."""
        return CheckInHistory(self._entries, newest_first=newest_first)

    def to_list(self) -> list[dict[str, str]]:
        return [entry.to_dict() for entry in self]
