"""
ledger.py - Settlement Ledger

The Ledger is the value-transfer substrate under the bond ledger: wallets,
balances, registered units, a logical clock and the transaction log. It is
the only module that mutates balances or unit state.

Key responsibilities:
    - Implements LedgerView for read-only access by pure functions
    - Commits transactions atomically (state, records and all moves, or nothing)
    - Serializes commits so concurrent callers cannot overdraw a wallet
    - Always validates and always logs; replay() rebuilds state from the log
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Set, Optional, Any
import copy
import threading

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState, UnitRecord,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError, InsufficientFunds, BalanceConstraintViolation,
    TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
    StaleStateError, DuplicateTransaction,
    # Helper functions
    _freeze_state,
)


class Ledger:
    """
    Double-entry settlement ledger with full validation and audit trail.

    Design Principles:
        - Always validates: registration, transfer rules, balance limits,
          timestamps and the freshness of every state and record change.
        - Moves settle in order: every intermediate balance must respect the
          unit's limits, so a wallet cannot spend value it receives later
          in the same transaction.
        - Always logs: every committed transaction is appended to
          transaction_log; replay() re-executes the log.

    Thread Safety:
        commit()/execute(), registration and advance_time() are serialized
        by an internal lock. Reads take no lock: unit state is replaced, not
        mutated, so a reader sees either the old or the new state. A unit
        record is likewise replaced whole on every change.

    Example:
        ledger = Ledger("main", verbose=False)
        ledger.register_unit(native_currency("ETH", "Ether"))
        ledger.register_wallet("alice")
        ledger.commit(build_transaction(ledger, [
            Move(Decimal("1000"), "ETH", SYSTEM_WALLET, "alice", "deposit")
        ]))
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print registrations and transactions (default: True)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._next_sequence: int = 0
        # Inverted index unit -> {wallet -> quantity}
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)
        # Keyed unit records unit -> {key -> record}, in creation order
        self._records: Dict[str, Dict[str, UnitRecord]] = defaultdict(dict)
        self._lock = threading.RLock()

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Balance of a unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Deep copy of a unit's internal state; safe to mutate.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        state = self.units[unit_symbol].state
        return copy.deepcopy(state) if state else {}

    def get_positions(self, unit_symbol: str) -> Positions:
        """All non-zero positions for a unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def get_unit_record(self, unit_symbol: str, key: str) -> Optional[UnitRecord]:
        """
        Copy of one keyed record of a unit, or None if it has none under key.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        record = self._records.get(unit_symbol, {}).get(key)
        return dict(record) if record is not None else None

    def list_unit_records(self, unit_symbol: str) -> List[str]:
        """Record keys of a unit, in order of creation."""
        with self._lock:
            return list(self._records.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """All registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """All registered unit symbols, sorted."""
        return sorted(self.units.keys())

    def has_unit(self, symbol: str) -> bool:
        """True if the unit is registered."""
        return symbol in self.units

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a unit's balances across all wallets, system wallet included.

        Zero for every unit whose value only ever moves inside the ledger.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Verify that every unit's balances sum to zero across all wallets.

        Value only enters through SYSTEM_WALLET, so the system wallet's
        negative balance must exactly offset everything held elsewhere.

        Returns:
            Dict with 'valid', 'supplies' (unit -> sum) and 'discrepancies'.
        """
        supplies = {}
        discrepancies = []
        for unit_symbol in sorted(self.units):
            supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = supply
            if abs(supply) > QUANTITY_EPSILON:
                discrepancies.append({'unit': unit_symbol, 'actual': supply})
        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the logical clock. Time only moves forward.

        Raises:
            ValueError: If new_time is before the current time, or is
                timezone-aware where the clock is naive (or the reverse)
        """
        with self._lock:
            if (new_time.tzinfo is None) != (self._current_time.tzinfo is None):
                raise ValueError(
                    f"Cannot mix naive and timezone-aware times: {new_time} vs {self._current_time}"
                )
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If the id is empty or already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet id cannot be empty")
        with self._lock:
            if wallet_id in self.registered_wallets:
                raise ValueError(f"Wallet {wallet_id} already registered")
            self.registered_wallets.add(wallet_id)
            self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists."""
        with self._lock:
            if wallet_id not in self.registered_wallets:
                self.register_wallet(wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit.

        Raises:
            ValueError: If unit symbol is already registered
        """
        with self._lock:
            if unit.symbol in self.units:
                raise ValueError(f"Unit {unit.symbol} already registered")
            self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """exec:{ledger_name}:{sequence:012d}:{timestamp_micros}"""
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically, reporting the outcome.

        Returns:
            ExecuteResult.APPLIED if successful (or if pending was empty)
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if validation failed; nothing was applied
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED
        try:
            self.commit(pending)
        except DuplicateTransaction:
            return ExecuteResult.ALREADY_APPLIED
        except LedgerError:
            return ExecuteResult.REJECTED
        return ExecuteResult.APPLIED

    def commit(
        self,
        pending: PendingTransaction,
        wallets_to_open: Iterable[str] = (),
    ) -> Transaction:
        """
        Commit a PendingTransaction atomically and return its log record.

        Order of application: units_to_create are registered, state changes
        and record changes are applied, then moves settle in order. Validation
        of all of these happens first, under the ledger lock, so either
        everything is applied or nothing is.

        wallets_to_open are registered together with the transaction: a
        wallet that did not exist before stays unregistered if the
        transaction is rejected.

        Raises:
            DuplicateTransaction: If the intent was already applied
            UnitNotRegistered / WalletNotRegistered: Unknown unit or wallet
            TransferRuleViolation: A move breaks its unit's transfer rule
            InsufficientFunds / BalanceConstraintViolation: A balance limit
            StaleStateError: A state or record change was built from outdated state
            LedgerError: Empty transaction or future timestamp
        """
        if pending.is_empty():
            raise LedgerError("Cannot commit an empty transaction")

        with self._lock:
            if pending.intent_id in self.seen_intent_ids:
                if self.verbose:
                    print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
                raise DuplicateTransaction(f"Intent {pending.intent_id} already applied")

            # Units and wallets are registered for validation and removed again on rejection
            newly_opened: List[str] = []
            for wallet_id in wallets_to_open:
                if wallet_id not in self.registered_wallets:
                    self.registered_wallets.add(wallet_id)
                    self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
                    newly_opened.append(wallet_id)

            newly_registered: List[str] = []
            for unit in pending.units_to_create:
                if unit.symbol not in self.units:
                    self.units[unit.symbol] = unit
                    newly_registered.append(unit.symbol)

            try:
                self._validate_pending(pending)
            except LedgerError as e:
                for sym in newly_registered:
                    del self.units[sym]
                for wallet_id in newly_opened:
                    self.registered_wallets.discard(wallet_id)
                    del self.balances[wallet_id]
                if self.verbose:
                    print(f"✗ REJECTED: {e}")
                raise

            sequence = self._next_sequence
            self._next_sequence += 1
            tx = Transaction(
                moves=pending.moves,
                state_changes=pending.state_changes,
                origin=pending.origin,
                timestamp=pending.timestamp,
                intent_id=pending.intent_id,
                exec_id=self._generate_exec_id(sequence),
                ledger_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
                units_to_create=pending.units_to_create,
                record_changes=pending.record_changes,
            )

            for sc in tx.state_changes:
                new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
                self.units[sc.unit] = replace(
                    self.units[sc.unit], _frozen_state=_freeze_state(new_state)
                )
            for rc in tx.record_changes:
                self._records[rc.unit][rc.key] = dict(rc.new_record)
            self._execute_moves(tx.moves)

            self.transaction_log.append(tx)
            self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            for sym in newly_registered:
                unit = self.units[sym]
                print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")
            self._print_tx_result(tx, "APPLIED", "✓")
        return tx

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print the boxed transaction with a result line appended."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w
        text = ' ' + icon + ' ' + result
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{text[:w].ljust(w)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> None:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Timestamp (a transaction cannot come from the future)
        2. State freshness (old_state must equal the unit's current state)
        3. Record freshness (old_record must equal the current record)
        4. Unit and wallet registration, transfer rules
        5. Balance limits after each move, in settlement order

        Raises the LedgerError describing the first failure.
        """
        if pending.timestamp > self._current_time:
            raise LedgerError(
                f"future timestamp: {pending.timestamp} > {self._current_time}"
            )

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                raise UnitNotRegistered(f"Unit {sc.unit} not registered")
            if sc.old_state is not None:
                current = self.units[sc.unit].state
                expected = sc.old_state if isinstance(sc.old_state, dict) else {}
                if current != expected:
                    raise StaleStateError(f"State of {sc.unit} changed since transaction was built")

        for rc in pending.record_changes:
            if rc.unit not in self.units:
                raise UnitNotRegistered(f"Unit {rc.unit} not registered")
            if self._records.get(rc.unit, {}).get(rc.key) != rc.old_record:
                raise StaleStateError(
                    f"Record {rc.key} of {rc.unit} changed since transaction was built"
                )

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                raise UnitNotRegistered(f"Unit {move.unit_symbol} not registered")
            if move.source not in self.registered_wallets:
                raise WalletNotRegistered(f"Wallet {move.source} not registered")
            if move.dest not in self.registered_wallets:
                raise WalletNotRegistered(f"Wallet {move.dest} not registered")
            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                unit.transfer_rule(self, move)

        running: Dict[tuple, Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            for wallet, delta in ((move.source, -move.quantity), (move.dest, move.quantity)):
                key = (wallet, move.unit_symbol)
                current = running.get(key, self.balances[wallet][move.unit_symbol])
                proposed = unit.round(current + delta)
                running[key] = proposed
                # SYSTEM_WALLET is exempt: value enters and leaves through it
                if wallet == SYSTEM_WALLET:
                    continue
                if proposed < unit.min_balance:
                    raise InsufficientFunds(
                        f"{wallet} {move.unit_symbol}: {proposed} < min {unit.min_balance}"
                    )
                if proposed > unit.max_balance:
                    raise BalanceConstraintViolation(
                        f"{wallet} {move.unit_symbol}: {proposed} > max {unit.max_balance}"
                    )

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Keep the unit -> wallet index in step with a balance change."""
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply moves to balances (with unit rounding) and the position index."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Independent deep copy of this ledger.

        Modifications to the clone never affect the original. The copy is
        taken under the ledger lock, so it is a consistent snapshot.
        """
        with self._lock:
            cloned = Ledger(self.name, self._current_time, verbose=self.verbose)
            cloned.units = {
                symbol: replace(unit, _frozen_state=_freeze_state(copy.deepcopy(unit.state)))
                for symbol, unit in self.units.items()
            }
            cloned.registered_wallets = self.registered_wallets.copy()
            cloned.seen_intent_ids = self.seen_intent_ids.copy()
            cloned.transaction_log = list(self.transaction_log)
            cloned._next_sequence = self._next_sequence
            cloned.balances = {
                wallet: defaultdict(lambda: Decimal("0"), bals)
                for wallet, bals in self.balances.items()
            }
            cloned._positions_by_unit = defaultdict(dict, {
                unit_symbol: dict(positions)
                for unit_symbol, positions in self._positions_by_unit.items()
            })
            cloned._records = defaultdict(dict, {
                unit_symbol: {key: dict(record) for key, record in records.items()}
                for unit_symbol, records in self._records.items()
            })
        return cloned

    def replay(self) -> Ledger:
        """
        Build a new ledger by re-executing the transaction log from the start.

        Units registered outside of transactions (the currency) are copied
        with their original state; units created by transactions are created
        again by replay. The result must match this ledger's balances and
        unit states exactly.

        Raises:
            LedgerError: If any logged transaction is rejected on replay
        """
        with self._lock:
            log = list(self.transaction_log)
            created_in_log = {u.symbol for tx in log for u in tx.units_to_create}
            base_units = [u for s, u in self.units.items() if s not in created_in_log]
            wallets = sorted(self.registered_wallets - {SYSTEM_WALLET})

        start = log[0].timestamp if log else self._current_time
        new_ledger = Ledger(f"{self.name}_replayed", start, verbose=self.verbose)
        for unit in base_units:
            new_ledger.units[unit.symbol] = unit
        for wallet in wallets:
            new_ledger.register_wallet(wallet)

        for tx in log:
            if tx.execution_time > new_ledger.current_time:
                new_ledger.advance_time(tx.execution_time)
            pending = PendingTransaction(
                moves=tx.moves,
                state_changes=tx.state_changes,
                origin=tx.origin,
                timestamp=tx.timestamp,
                units_to_create=tx.units_to_create,
                record_changes=tx.record_changes,
            )
            try:
                new_ledger.commit(pending)
            except LedgerError as e:
                raise LedgerError(f"Replay failed at tx {tx.exec_id}: {e}") from e

        if self._current_time > new_ledger.current_time:
            new_ledger.advance_time(self._current_time)
        return new_ledger
