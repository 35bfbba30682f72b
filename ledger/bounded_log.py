"""Bounded per-election action logs with never-reclaimed slots"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional

from .ledger import Ledger, LogCapacityError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogEntry:
    """One action recorded against an election"""
    slot: int
    action: str
    details: bytes
    timestamp: int
    resolved: bool = False


class BoundedEventLog:
    """Append-only log keyed by (election, slot).

    Slots come from a monotonic per-election counter. The capacity in force
    at an election's first write is latched for that election; once it is
    reached the log refuses further entries for good.
    """

    def __init__(self, ledger: Ledger, name: str):
        self.ledger = ledger
        self.name = name
        self._entries = ledger.table(f"{name}.entries")
        self._next_slot = ledger.table(f"{name}.next_slot")
        self._capacity = ledger.table(f"{name}.capacity")

    def append(self, election_id: int, action: str, details: bytes, capacity: int) -> int:
        """Write an entry and return its slot"""
        latched = self._capacity.get(election_id)
        if latched is None:
            latched = capacity
            self._capacity.put(election_id, latched)

        slot = self._next_slot.get(election_id, 0)
        if slot >= latched:
            raise LogCapacityError(
                f"{self.name} for election {election_id} is full ({latched} entries)")

        self._entries.put((election_id, slot), LogEntry(
            slot=slot,
            action=action,
            details=bytes(details),
            timestamp=self.ledger.height
        ))
        self._next_slot.put(election_id, slot + 1)
        return slot

    def mark_resolved(self, election_id: int, slot: int) -> bool:
        entry = self._entries.get((election_id, slot))
        if entry is None:
            return False
        self._entries.put((election_id, slot), replace(entry, resolved=True))
        return True

    def entry(self, election_id: int, slot: int) -> Optional[LogEntry]:
        return self._entries.get((election_id, slot))

    def entries(self, election_id: int) -> List[LogEntry]:
        return [self._entries[(election_id, slot)]
                for slot in range(self._next_slot.get(election_id, 0))]

    def size(self, election_id: int) -> int:
        return self._next_slot.get(election_id, 0)

    def capacity(self, election_id: int) -> Optional[int]:
        return self._capacity.get(election_id)
