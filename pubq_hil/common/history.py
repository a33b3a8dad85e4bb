"""
Append-only record history used for retroactive matching.
"""
from typing import Generic, Iterator, List, TypeVar

R = TypeVar("R")


class HistoryLog(Generic[R]):
    """Records seen since the last reset, in arrival order."""

    def __init__(self):
        self._records: List[R] = []

    def append(self, record: R) -> R:
        self._records.append(record)
        return record

    def reset(self):
        """Forget every record."""
        self._records = []

    def snapshot(self) -> List[R]:
        """Copy of the current records."""
        return list(self._records)

    def __iter__(self) -> Iterator[R]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)
