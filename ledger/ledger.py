"""
Ledger State and Atomic Units of Work
=====================================
Shared state substrate for the proof, tally and audit engines.

Every public engine operation runs as one atomic unit under a single
re-entrant lock. Writes go through journaled tables; when a unit fails the
journal is replayed backwards so no partial effect survives.
"""

import functools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()

# ============================================================================
# ERRORS AND RESULTS
# ============================================================================


class ErrorFamily(Enum):
    """Origin of a rejected operation"""
    AUTHORIZATION = "authorization"
    STATE = "state"
    VALIDATION = "validation"
    CAPACITY = "capacity"
    CONSISTENCY = "consistency"
    CRYPTOGRAPHIC = "cryptographic"
    TIMING = "timing"


class VotingCoreError(Exception):
    """Base exception for rule violations inside an atomic unit"""

    families: Dict[Any, ErrorFamily] = {}

    def __init__(self, code, message: str = "", result_value: Any = None):
        self.code = code
        self.family = self.families.get(code, ErrorFamily.VALIDATION)
        self.message = message or getattr(code, "name", str(code))
        self.result_value = result_value
        super().__init__(self.message)


class LogCapacityError(Exception):
    """Raised when a bounded log has no free slot left for an election"""
    pass


@dataclass(frozen=True)
class OperationResult:
    """Explicit outcome of a public operation"""
    ok: bool
    value: Any = None
    error: Any = None
    family: Optional[ErrorFamily] = None
    message: str = ""

    @classmethod
    def success(cls, value: Any = True) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: VotingCoreError) -> "OperationResult":
        return cls(
            ok=False,
            value=error.result_value,
            error=error.code,
            family=error.family,
            message=error.message
        )

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class AuthoritySlot:
    """One-shot identity latch: unconfigured until the first configure call"""
    identity: Optional[str] = None

    @property
    def configured(self) -> bool:
        return self.identity is not None

    def configure(self, identity: str) -> "AuthoritySlot":
        if self.configured:
            raise ValueError(f"Authority already configured as {self.identity}")
        if not identity:
            raise ValueError("Authority identity must be non-empty")
        return AuthoritySlot(identity)

    def permits(self, caller: Optional[str]) -> bool:
        return self.configured and caller == self.identity

# ============================================================================
# JOURNALED TABLES
# ============================================================================


class LedgerTable:
    """Keyed state table whose writes are journaled by the owning ledger.

    Values must be immutable (frozen dataclasses, tuples, ints, bytes) so
    the journal can restore them by reference.
    """

    def __init__(self, ledger: "Ledger", name: str):
        self.ledger = ledger
        self.name = name
        self._rows: Dict[Hashable, Any] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        return self._rows.get(key, default)

    def __getitem__(self, key: Hashable) -> Any:
        return self._rows[key]

    def __contains__(self, key: Hashable) -> bool:
        return key in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def keys(self):
        return self._rows.keys()

    def values(self):
        return self._rows.values()

    def items(self):
        return self._rows.items()

    def put(self, key: Hashable, value: Any):
        """Write a row, recording its prior value in the active journal"""
        self.ledger._record(self, key, self._rows.get(key, _MISSING))
        self._rows[key] = value

    def setdefault(self, key: Hashable, value: Any) -> Any:
        """Write a row only if absent; returns the stored value"""
        if key not in self._rows:
            self.put(key, value)
        return self._rows[key]

    def delete(self, key: Hashable):
        """Remove a row if present"""
        if key not in self._rows:
            return
        self.ledger._record(self, key, self._rows[key])
        del self._rows[key]

    def _restore(self, key: Hashable, previous: Any):
        if previous is _MISSING:
            self._rows.pop(key, None)
        else:
            self._rows[key] = previous


class Ledger:
    """Logical clock plus journaled tables shared by all engines"""

    def __init__(self, start_height: int = 0):
        if start_height < 0:
            raise ValueError("Ledger height must be non-negative")
        self._height = start_height
        self._lock = threading.RLock()
        self._tables: Dict[str, LedgerTable] = {}
        self._journal: Optional[List[Tuple[LedgerTable, Hashable, Any]]] = None
        self.units_committed = 0
        self.units_rolled_back = 0

    @property
    def height(self) -> int:
        return self._height

    def advance(self, blocks: int = 1) -> int:
        """Move the logical clock forward"""
        if blocks < 0:
            raise ValueError("Ledger height is monotonic")
        with self._lock:
            self._height += blocks
            return self._height

    def table(self, name: str) -> LedgerTable:
        """Get or create a named table"""
        with self._lock:
            if name not in self._tables:
                self._tables[name] = LedgerTable(self, name)
            return self._tables[name]

    @property
    def in_unit(self) -> bool:
        return self._journal is not None

    @contextmanager
    def atomic(self) -> Iterator["Ledger"]:
        """Run a block as one atomic unit.

        Nested units join the enclosing one through a savepoint: a failure
        inside rolls back to the savepoint and re-raises, so the enclosing
        unit decides whether the whole operation fails.
        """
        with self._lock:
            outermost = self._journal is None
            if outermost:
                self._journal = []
            savepoint = len(self._journal)
            try:
                yield self
            except BaseException:
                self._rollback_to(savepoint)
                if outermost:
                    self.units_rolled_back += 1
                raise
            else:
                if outermost:
                    self.units_committed += 1
            finally:
                if outermost:
                    self._journal = None

    def _record(self, table: LedgerTable, key: Hashable, previous: Any):
        if self._journal is not None:
            self._journal.append((table, key, previous))

    def _rollback_to(self, savepoint: int):
        while len(self._journal) > savepoint:
            table, key, previous = self._journal.pop()
            table._restore(key, previous)


def atomic_operation(operation: str) -> Callable:
    """Run an engine method as an atomic unit returning an OperationResult.

    The decorated method raises VotingCoreError subclasses on rule
    violations; any such failure discards the unit's writes.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs) -> OperationResult:
            try:
                with self.ledger.atomic():
                    value = func(self, *args, **kwargs)
            except VotingCoreError as e:
                logger.warning(
                    f"{operation} rejected at height {self.ledger.height}: "
                    f"{getattr(e.code, 'name', e.code)} ({int(e.code)}) - {e.message}")
                return OperationResult.failure(e)
            logger.debug(f"{operation} committed at height {self.ledger.height}")
            return OperationResult.success(value)
        return wrapper
    return decorator
