"""
events.py - Bond Notifications

Notifications are the external audit trail of the bond ledger: one record
per successful issuance, purchase or coupon claim, never one for a failed
call. Each record names the ledger transaction (exec_id) that produced it,
so the notification log can always be reconciled against transaction_log.

Events are just data; the EventLog only appends and filters.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import threading
from typing import Iterator, List, Type, TypeVar, Union


@dataclass(frozen=True, slots=True)
class BondIssued:
    bond_id: int
    issuer: str
    name: str
    face_value: int
    total_supply: int
    exec_id: str = ""


@dataclass(frozen=True, slots=True)
class BondPurchased:
    bond_id: int
    investor: str
    amount: int
    timestamp: datetime
    exec_id: str = ""


@dataclass(frozen=True, slots=True)
class CouponClaimed:
    bond_id: int
    investor: str
    coupon_amount: int
    exec_id: str = ""


BondEvent = Union[BondIssued, BondPurchased, CouponClaimed]
E = TypeVar("E", BondIssued, BondPurchased, CouponClaimed)


class EventLog:
    """
    Append-only, thread-safe list of notifications in emission order.

    Example:
        log = EventLog()
        log.emit(BondIssued(1, "issuer", "Green 2030", 100, 1000))
        log.of_type(BondIssued)   # [BondIssued(...)]
    """

    def __init__(self):
        self._events: List[BondEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: BondEvent) -> BondEvent:
        with self._lock:
            self._events.append(event)
        return event

    def of_type(self, event_type: Type[E]) -> List[E]:
        """All events of one type, in order."""
        return [e for e in self.snapshot() if isinstance(e, event_type)]

    def for_bond(self, bond_id: int) -> List[BondEvent]:
        """All events concerning one bond, in order."""
        return [e for e in self.snapshot() if e.bond_id == bond_id]

    def snapshot(self) -> List[BondEvent]:
        with self._lock:
            return list(self._events)

    def __iter__(self) -> Iterator[BondEvent]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._events)
