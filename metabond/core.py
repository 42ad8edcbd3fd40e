"""
Core types and pure functions for the bond settlement ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the validation / settlement error types
4. Constants: system wallet, unit types, coupon arithmetic constants
5. Transfer rules and unit factories

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Balances are held as Decimal so that every quantity passing through the
# ledger has exact arithmetic. Bond amounts are integral, but the context is
# fixed here so that no caller can change rounding underneath the ledger.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet through which value enters and leaves the ledger.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Unit type constants
UNIT_TYPE_CASH = "CASH"
UNIT_TYPE_BOND = "BOND"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

# Coupon arithmetic. Fixed by the bond terms, never configurable.
BASIS_POINTS = 10_000
MONTHS_PER_YEAR = 12
COUPON_PERIOD = timedelta(days=30)
COUPON_PERIOD_SECONDS = 30 * 24 * 60 * 60

DECIMAL_ROUNDING = {
    UNIT_TYPE_CASH: ROUND_DOWN,
    UNIT_TYPE_BOND: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Internal state for a unit (bond terms, supply).
UnitState = Dict[str, Any]

# One keyed record attached to a unit (an investor's position in a bond).
UnitRecord = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pure functions that build transactions accept a LedgerView and declare
    their read-only intent by doing so. The Ledger class implements this
    protocol; tests use FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit_record(self, unit_symbol: str, key: str) -> Optional[UnitRecord]:
        """Return a copy of one keyed record of a unit, or None if absent."""
        ...

    def list_unit_records(self, unit_symbol: str) -> List[str]:
        """Return the record keys of a unit in order of creation."""
        ...

    def has_unit(self, symbol: str) -> bool:
        """Return True if a unit with this symbol is registered."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed.
    REJECTED: Transaction failed validation; nothing was applied.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Caller-initiated operation
    CONTRACT = "contract"                 # Bond contract logic
    SYSTEM = "system"                     # Value entering the ledger, setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class ValidationError(LedgerError):
    """
    Raised when a request is malformed, names an unknown entity, or is
    incompatible with current state (matured bond, claim too soon, ...).

    Attributes:
        field: Name of the offending parameter or condition.
        message: Human-readable reason.
    """

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class InsufficientPaymentError(LedgerError):
    """Raised when the payment attached to a purchase is below its cost."""

    def __init__(self, required: int, provided: int):
        super().__init__(f"payment of {provided} is below required cost {required}")
        self.required = required
        self.provided = provided


class InsufficientFunds(LedgerError):
    """Raised when a move would take a wallet balance below the unit's minimum."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would take a wallet balance above the unit's maximum."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    pass


class StaleStateError(LedgerError):
    """Raised when a state change was built from state that has since changed."""
    pass


class DuplicateTransaction(LedgerError):
    """Raised when committing a transaction whose intent was already applied."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the caller or component
        unit_symbol: Symbol of the unit the transaction concerns (if any)
        event_type: Operation name (e.g., "ISSUE", "PURCHASE", "COUPON")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    old_state doubles as the optimistic-concurrency guard: the ledger refuses
    to apply the change if the unit's current state differs from it.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Fields that differ between old and new state, as (old, new) pairs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


@dataclass(frozen=True, slots=True)
class UnitRecordChange:
    """
    Change to one keyed record of a unit, with before/after snapshots.

    Records keep per-holder data (an investment) out of the unit state, so a
    change to one holder never copies or compares the others. old_record is
    None when the record is created, and is checked against the current
    record the same way UnitStateChange.old_state is.
    """
    unit: str
    key: str
    old_record: Optional[Dict[str, Any]]
    new_record: Dict[str, Any]


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (Decimal, finite and non-zero).
        unit_symbol: Symbol of the unit being transferred (e.g., "ETH", "BOND-1").
        source: Wallet debited.
        dest: Wallet credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1") agree."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Canonical string form of a value for content hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, set):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
    record_changes: Tuple[UnitRecordChange, ...] = (),
) -> str:
    """
    Deterministic content hash of a transaction's intent.

    Based only on moves, state and record changes, origin and created units,
    never on execution metadata. Move order is part of the intent because moves
    settle in order.
    """
    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(
            f"unit_create:{unit.symbol}|{unit.unit_type}|{_canonicalize(unit.state)}"
        )

    for m in moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    for rc in sorted(record_changes, key=lambda r: (r.unit, r.key)):
        content_parts.append(
            f"record_change:{rc.unit}|{rc.key}|{_canonicalize(rc.old_record)}|{_canonicalize(rc.new_record)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution: represents INTENT.

    Built by the bond functions and submitted to Ledger.commit() or
    Ledger.execute(). intent_id is computed from content when not given.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    record_changes: Tuple[UnitRecordChange, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create,
                self.record_changes,
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """True if the transaction would change nothing."""
        return not (self.moves or self.state_changes or self.units_to_create or self.record_changes)

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
    record_changes: Optional[List[UnitRecordChange]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    State and record snapshots are deep-copied so later mutation of the caller's dicts
    cannot alter the transaction.

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "ETH", "alice", "bob", "payment_001")
        ])
        ledger.commit(tx)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    copied_records: Tuple[UnitRecordChange, ...] = tuple(
        UnitRecordChange(
            unit=rc.unit,
            key=rc.key,
            old_record=copy.deepcopy(rc.old_record),
            new_record=copy.deepcopy(rc.new_record),
        )
        for rc in record_changes or ()
    )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
        record_changes=copied_records,
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """A PendingTransaction with nothing to do."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes: represents FACT.

    Attributes:
        moves: Value transfers, in settlement order
        state_changes: Unit state changes (old and new state)
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: Ledger time at execution
        sequence_number: Monotonic sequence within the ledger
        units_to_create: Units registered by this transaction
        record_changes: Keyed unit record changes (old and new record)
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    record_changes: Tuple[UnitRecordChange, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not (self.moves or self.state_changes or self.units_to_create or self.record_changes):
            raise ValueError("Transaction must have moves, state or record changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        bar = "─" * w
        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Units Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        if self.record_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Record Changes (' + str(len(self.record_changes)) + '):')}│")
            for rc in self.record_changes:
                action = "created" if rc.old_record is None else "updated"
                lines.append(f"│{pad('   [' + rc.unit + '] ' + rc.key + ' ' + action)}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of an asset type held in the ledger.

    Attributes:
        symbol: Short identifier (e.g., "ETH", "BOND-1").
        name: Human-readable name.
        unit_type: Category of the unit (CASH, BOND).
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves of this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a new dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Quantize a value to this unit's decimal places."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def primary_market_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Bond tokens only leave the wallet that holds the unsold supply.

    The unit state names that wallet as 'custodian_wallet'. Tokens may be
    minted from SYSTEM_WALLET into it and allocated from it to investors;
    any other transfer (a secondary-market trade) is rejected.

    Raises:
        TransferRuleViolation: If the unit has no custodian or the move's
                               source is not authorized.
    """
    state = view.get_unit_state(move.unit_symbol)
    custodian = state.get('custodian_wallet')
    if not custodian:
        raise TransferRuleViolation(
            f"Bond {move.unit_symbol} missing custodian_wallet state"
        )
    if move.source not in (custodian, SYSTEM_WALLET):
        raise TransferRuleViolation(
            f"Bond {move.unit_symbol}: {move.source} cannot transfer, "
            f"bonds are only allocated by {custodian}"
        )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def native_currency(symbol: str = "ETH", name: str = "Ether") -> Unit:
    """
    Create the ledger's native currency unit.

    Amounts are integers in the smallest denomination (no decimal places)
    and no wallet other than the system wallet may go negative, matching a
    chain's native value.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CASH,
        decimal_places=0,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({'issuer': SYSTEM_WALLET}),
    )
