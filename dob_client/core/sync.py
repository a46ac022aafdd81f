"""
State Synchronizer

Keeps one ``Snapshot`` of oracle parameters, pool reserves, the bound
user's balances and liquidity node balances. A refresh cycle issues every
read concurrently, lets them all settle, and only then publishes a new
snapshot. A failed read keeps the field's previous value and records the
error, so one bad read never blanks out the rest.

Cycles run at startup, on a fixed interval and on demand. They never
overlap: a refresh requested during a running cycle runs after it.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Tuple, TypeVar, Union

from . import intents
from .balances import BalanceResolver


logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[["Snapshot"], Union[None, Awaitable[None]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _settled(*reads):
    """Await every read, then raise the first failure so none goes unretrieved."""
    results = await asyncio.gather(*reads, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class FieldState(Generic[T]):
    """Last known value of one snapshot field plus the outcome of the latest attempt."""
    value: Optional[T] = None
    updated_at: Optional[datetime] = None
    attempted_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_stale(self) -> bool:
        """The latest attempt failed; ``value`` is from an earlier cycle (or empty)."""
        return self.error is not None

    @property
    def has_value(self) -> bool:
        return self.value is not None

    def succeeded(self, value: T, now: datetime) -> "FieldState[T]":
        return FieldState(value=value, updated_at=now, attempted_at=now, error=None)

    def failed(self, error: str, now: datetime) -> "FieldState[T]":
        return replace(self, attempted_at=now, error=error)

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        return {
            "value": value.to_dict() if hasattr(value, "to_dict") else value,
            "updated_at": _iso(self.updated_at),
            "attempted_at": _iso(self.attempted_at),
            "error": self.error,
            "stale": self.is_stale,
        }


@dataclass(frozen=True)
class OracleParams:
    fair_price: int        # USDC base units per DOB unit
    risk_bps: int
    fetched_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"fair_price": self.fair_price, "risk_bps": self.risk_bps, "fetched_at": _iso(self.fetched_at)}


@dataclass(frozen=True)
class PoolReserves:
    usdc: int
    dob: int
    total_lp_shares: int

    def to_dict(self) -> Dict[str, Any]:
        return {"usdc": self.usdc, "dob": self.dob, "total_lp_shares": self.total_lp_shares}


@dataclass(frozen=True)
class UserBalances:
    usdc: int
    dob: int
    lp_shares: int

    def to_dict(self) -> Dict[str, Any]:
        return {"usdc": self.usdc, "dob": self.dob, "lp_shares": self.lp_shares}


@dataclass(frozen=True)
class NodeBalances:
    address: str
    usdc: int
    dob: int

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "usdc": self.usdc, "dob": self.dob}


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of the read state. Replaced wholesale on every publish."""
    oracle: FieldState[OracleParams] = field(default_factory=FieldState)
    pool: FieldState[PoolReserves] = field(default_factory=FieldState)
    user: FieldState[UserBalances] = field(default_factory=FieldState)
    nodes: Dict[str, FieldState[NodeBalances]] = field(default_factory=dict)
    user_address: Optional[str] = None
    cycle: int = 0
    refreshed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "refreshed_at": _iso(self.refreshed_at),
            "user_address": self.user_address,
            "oracle": self.oracle.to_dict(),
            "pool": self.pool.to_dict(),
            "user": self.user.to_dict(),
            "nodes": {address: state.to_dict() for address, state in self.nodes.items()},
        }


class StateSynchronizer:
    """
    Periodically refreshes the snapshot.

    Args:
        manager: lifecycle manager used for read-only calls
        config: ledger configuration (contracts, nodes, interval, user)
        balances: balance resolver; built from ``manager`` when omitted
    """

    def __init__(self, manager, config, balances: Optional[BalanceResolver] = None):
        self.manager = manager
        self.config = config
        self.balances = balances or BalanceResolver(manager, config.pool)
        self.interval_seconds = config.refresh_interval_seconds

        self._snapshot = Snapshot(user_address=config.user_address)
        self._user_address: Optional[str] = config.user_address
        self._discovered_nodes: Tuple[str, ...] = ()
        self._listeners: List[Listener] = []

        self._lock = asyncio.Lock()          # start/stop
        self._cycle_lock = asyncio.Lock()    # one cycle at a time
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._pending_refresh: Optional[asyncio.Task] = None
        self._refresh_wanted = False

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def user_address(self) -> Optional[str]:
        return self._user_address

    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Subscriptions and binding
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every published snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def bind_user(self, address: Optional[str]) -> None:
        """Track balances for ``address`` (None unbinds)."""
        if address == self._user_address:
            return
        self._user_address = address
        self._snapshot = replace(self._snapshot, user=FieldState(), user_address=address)
        logger.info("Bound user %s", address or "<none>")
        if self._running:
            self.request_refresh()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            logger.info("Synchronizer starting (interval %.1fs)", self.interval_seconds)
            self._loop_task = asyncio.create_task(self._run_loop(), name="snapshot-sync-loop")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            logger.info("Synchronizer stopping")
            for task in (self._loop_task, self._pending_refresh):
                if task is None or task.done():
                    continue
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            self._loop_task = None
            self._pending_refresh = None
            self._refresh_wanted = False

    async def _run_loop(self) -> None:
        try:
            while self._running:
                try:
                    await self.refresh_now()
                except Exception as exc:  # noqa: BLE001
                    logger.error("Refresh cycle crashed: %s", exc, exc_info=True)
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            pass

    def request_refresh(self) -> None:
        """
        Schedule a cycle without waiting for it.

        Requests made before the scheduled cycle starts reading coalesce into
        it. A request made while that cycle is reading gets one more cycle.
        """
        self._refresh_wanted = True
        if self._pending_refresh is not None and not self._pending_refresh.done():
            return
        self._pending_refresh = asyncio.create_task(self._serve_refresh_requests(), name="snapshot-refresh")

    async def _serve_refresh_requests(self) -> None:
        while self._refresh_wanted:
            async with self._cycle_lock:
                self._refresh_wanted = False
                try:
                    await self._run_cycle()
                except Exception as exc:  # noqa: BLE001
                    logger.error("Requested refresh crashed: %s", exc, exc_info=True)

    async def refresh_now(self) -> Snapshot:
        """Run one cycle (after any cycle already running) and return the published snapshot."""
        async with self._cycle_lock:
            return await self._run_cycle()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _resolve_nodes(self) -> Tuple[str, ...]:
        if self.config.liquidity_nodes:
            return tuple(self.config.liquidity_nodes)
        try:
            nodes = await self.manager.read(intents.liquid_nodes(self.config.pool))
            self._discovered_nodes = tuple(str(node) for node in nodes or [])
        except Exception as exc:  # noqa: BLE001
            logger.warning("Liquidity node discovery failed, keeping %d known nodes: %s",
                           len(self._discovered_nodes), exc)
        return self._discovered_nodes

    async def _read_oracle(self) -> OracleParams:
        fair_price, risk = await _settled(
            self.manager.read(intents.fair_price(self.config.oracle)),
            self.manager.read(intents.default_risk(self.config.oracle)),
        )
        return OracleParams(fair_price=int(fair_price), risk_bps=int(risk), fetched_at=_utcnow())

    async def _read_pool(self) -> PoolReserves:
        reserves, total = await _settled(
            self.manager.read(intents.reserves(self.config.pool)),
            self.manager.read(intents.total_lp_shares(self.config.pool)),
        )
        usdc, dob = reserves
        return PoolReserves(usdc=int(usdc), dob=int(dob), total_lp_shares=int(total))

    async def _read_user(self, address: str) -> UserBalances:
        usdc, dob, lp_shares = await _settled(
            self.balances.get_balance(self.config.usdc, address),
            self.balances.get_balance(self.config.token, address),
            self.balances.get_lp_shares(address),
        )
        return UserBalances(usdc=usdc, dob=dob, lp_shares=lp_shares)

    async def _read_node(self, address: str) -> NodeBalances:
        usdc, dob = await _settled(
            self.balances.get_balance(self.config.usdc, address),
            self.balances.get_balance(self.config.token, address),
        )
        return NodeBalances(address=address, usdc=usdc, dob=dob)

    def _settle(self, name: str, previous: FieldState, result: Any, now: datetime) -> FieldState:
        if isinstance(result, BaseException):
            error = str(result) or type(result).__name__
            logger.warning("Snapshot read %s failed, keeping previous value: %s", name, error)
            return previous.failed(error, now)
        return previous.succeeded(result, now)

    async def _run_cycle(self) -> Snapshot:
        user = self._user_address
        nodes = await self._resolve_nodes()

        reads = [self._read_oracle(), self._read_pool()]
        if user:
            reads.append(self._read_user(user))
        reads.extend(self._read_node(node) for node in nodes)

        results = await asyncio.gather(*reads, return_exceptions=True)
        now = _utcnow()
        previous = self._snapshot

        oracle_result, pool_result = results[0], results[1]
        rest = list(results[2:])

        user_state = previous.user
        if user:
            user_result = rest.pop(0)
            # Discard balances fetched for an address unbound mid-cycle
            if self._user_address == user:
                user_state = self._settle("user", previous.user, user_result, now)

        node_states: Dict[str, FieldState[NodeBalances]] = {}
        for node, node_result in zip(nodes, rest):
            prior = previous.nodes.get(node, FieldState())
            node_states[node] = self._settle(f"node:{node}", prior, node_result, now)

        snapshot = Snapshot(
            oracle=self._settle("oracle", previous.oracle, oracle_result, now),
            pool=self._settle("pool", previous.pool, pool_result, now),
            user=user_state,
            nodes=node_states,
            user_address=self._user_address,
            cycle=previous.cycle + 1,
            refreshed_at=now,
        )
        self._snapshot = snapshot
        logger.debug("Published snapshot cycle %d", snapshot.cycle)
        await self._notify(snapshot)
        return snapshot

    async def _notify(self, snapshot: Snapshot) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                logger.warning("Snapshot listener failed: %s", exc, exc_info=True)
