"""
Cart Sync Controller

Applies cart intents to the local store immediately, mirrors them to the
remote cart service in the background, and reconciles the outcome:

- success: line settles; a server-side correction is applied and reported
- transient failure: retried with backoff while the optimistic value stays
- definite failure (or retries exhausted): line rolls back and is reported
- stale response (a newer intent on the same key was issued): discarded

Each intent bumps the key's generation in the store. Every intent is sent;
a response is applied only if the generation it was issued under is still
current, so responses arriving out of order never regress the cart.

Whether a line goes out as add or update depends on what the server is known
to hold, not on the optimistic local line. A rollback restores the last value
the server confirmed for the key.
"""
import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from storefront.cart.models import CartSnapshot, LineItem, LineKey
from storefront.cart.pricing import InclusionPredicate, PricingBreakdown, PricingRules, compute, include_all
from storefront.cart.remote import RemoteCartClient
from storefront.cart.store import CartStore
from storefront.config import get_settings
from storefront.errors import (
    ERROR_REMOTE_UNAVAILABLE,
    ERROR_RETRIES_EXHAUSTED,
    DefiniteSyncError,
    LineNotFound,
    SyncError,
    TransientSyncError,
)
from storefront.logging import get_logger, sanitize_id_for_logging

logger = get_logger(__name__)


class MutationKind(str, Enum):
    """User intent behind a mutation."""
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


class SyncOutcome(str, Enum):
    """Terminal outcome of a mutation."""
    SETTLED = "settled"
    ROLLED_BACK = "rolled_back"
    SUPERSEDED = "superseded"  # a newer intent on the same key took over


class NoticeKind(str, Enum):
    DISCREPANCY = "discrepancy"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class SyncNotice:
    """Line-scoped event for toast/inline display."""
    kind: NoticeKind
    key: LineKey
    message: str
    error: Optional[SyncError] = None


@dataclass(frozen=True)
class SyncResult:
    """How a mutation ended."""
    key: LineKey
    kind: MutationKind
    outcome: SyncOutcome
    item: Optional[LineItem] = None
    error: Optional[SyncError] = None

    @property
    def ok(self) -> bool:
        return self.outcome != SyncOutcome.ROLLED_BACK


class _Superseded(Exception):
    """Raised inside the retry loop once a newer intent owns the key."""


@dataclass
class _Mutation:
    key: LineKey
    kind: MutationKind
    generation: int
    before: Optional[LineItem]  # None: line was absent
    target: Optional[LineItem]  # None: line is being removed
    index: Optional[int] = None  # position of a removed line


# Last server-confirmed value of an unsettled key (None: absent) and its position
_Origin = Tuple[Optional[LineItem], Optional[int]]


class PendingMutation:
    """
    Handle returned by every intent.

    ``snapshot`` is the optimistic cart right after the intent; awaiting the
    handle yields the SyncResult once the remote call settles.
    """

    def __init__(
        self,
        key: LineKey,
        kind: MutationKind,
        generation: int,
        snapshot: CartSnapshot,
        task: "asyncio.Task[SyncResult]",
    ):
        self.key = key
        self.kind = kind
        self.generation = generation
        self.snapshot = snapshot
        self._task = task

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> SyncResult:
        return await self._task

    def __await__(self):
        return self._task.__await__()

    def __repr__(self) -> str:
        return f"PendingMutation(key={self.key!s}, kind={self.kind.value}, generation={self.generation})"


class CartSyncController:
    """
    Single writer of a CartStore.

    Usage:
        controller = CartSyncController(HttpCartClient(token=token))
        mutation = controller.add_or_increment(item)   # optimistic, returns at once
        render(mutation.snapshot)
        result = await mutation                         # settled / rolled back
    """

    def __init__(
        self,
        remote: RemoteCartClient,
        store: Optional[CartStore] = None,
        rules: Optional[PricingRules] = None,
        include: InclusionPredicate = include_all,
        max_retries: Optional[int] = None,
        backoff: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ):
        settings = get_settings()
        self.remote = remote
        self.rules = rules or PricingRules.from_settings(settings)
        self.include = include
        self.max_retries = settings.sync_max_retries if max_retries is None else max_retries
        self.backoff = settings.sync_backoff if backoff is None else backoff
        self.backoff_max = settings.sync_backoff_max if backoff_max is None else backoff_max
        self._store = store if store is not None else CartStore()
        # A preloaded store mirrors the server cart
        self._server_keys: Set[LineKey] = set(self._store.snapshot().keys)
        self._origins: Dict[LineKey, _Origin] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[SyncNotice], None]] = []

    # ==================== Reads ====================

    @property
    def snapshot(self) -> CartSnapshot:
        return self._snapshot()

    @property
    def pending_keys(self) -> Tuple[LineKey, ...]:
        """Keys with unsettled mutations, removed lines included."""
        return tuple(self._origins)

    @property
    def has_pending(self) -> bool:
        return bool(self._origins)

    def summary(self) -> PricingBreakdown:
        """Price breakdown of the current (optimistic) cart."""
        return compute(self._store.snapshot().items, self.rules, self.include)

    def subscribe(self, listener: Callable[[SyncNotice], None]) -> Callable[[], None]:
        """Register a notice listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ==================== Intents ====================

    def add_or_increment(self, item: LineItem) -> PendingMutation:
        """Add a line or increase the quantity of an existing one."""
        self._require_loop()
        key = item.key
        before = self._store.get(key)
        self._store.add_or_increment(item)
        return self._issue(MutationKind.ADD, key, before, self._store.get(key))

    def set_quantity(self, key: LineKey, quantity: int) -> PendingMutation:
        """
        Set a line's quantity.

        Raises:
            InvalidQuantity: If quantity < 1 (nothing is sent)
            StockExceeded: If quantity is above known stock (nothing is sent)
            LineNotFound: If the line is not in the cart
        """
        self._require_loop()
        before = self._store.get(key)
        self._store.set_quantity(key, quantity)
        return self._issue(MutationKind.UPDATE, key, before, self._store.get(key))

    def change_quantity(self, key: LineKey, delta: int) -> PendingMutation:
        """Step a line's quantity by delta (the +/- buttons); never goes below 1."""
        current = self._store.get(key)
        if current is None:
            raise LineNotFound(key)
        return self.set_quantity(key, max(1, current.quantity + delta))

    def remove(self, key: LineKey) -> PendingMutation:
        """Remove a line. Wins over any in-flight add or quantity change for the key."""
        self._require_loop()
        before = self._store.get(key)
        index = self._store.position(key)
        self._store.remove(key)
        return self._issue(MutationKind.REMOVE, key, before, None, index)

    async def refresh(self) -> CartSnapshot:
        """
        Reload the cart from the remote listing.

        Lines with unsettled mutations, or mutated while the listing was in
        flight, keep their local value.

        Raises:
            SyncError: If the listing could not be fetched
        """
        issued = dict(self._store.generations())
        items = await self._with_retries(self.remote.list, key=None)
        current = self._store.generations()
        changed = {key for key, gen in current.items() if issued.get(key, 0) != gen}
        snapshot = self._store.replace_all(items, keep=changed | set(self._origins))
        self._server_keys = {item.key for item in items}
        logger.info(f"Cart refreshed: {len(snapshot)} line(s), {len(changed)} kept local")
        return self._snapshot()

    async def drain(self) -> List[SyncResult]:
        """Wait until every in-flight mutation has settled."""
        results: List[SyncResult] = []
        while self._tasks:
            results.extend(await asyncio.gather(*list(self._tasks)))
        return results

    # ==================== Protocol ====================

    @staticmethod
    def _require_loop() -> None:
        """Intents schedule the remote call as a task; fail before touching the store otherwise."""
        asyncio.get_running_loop()

    def _snapshot(self) -> CartSnapshot:
        return replace(self._store.snapshot(), unsettled=tuple(self._origins))

    def _issue(
        self,
        kind: MutationKind,
        key: LineKey,
        before: Optional[LineItem],
        target: Optional[LineItem],
        index: Optional[int] = None,
    ) -> PendingMutation:
        if key not in self._origins:
            position = index if target is None else self._store.position(key)
            self._origins[key] = (before, position)
        generation = self._store.next_generation(key)
        self._store.mark_pending(key)
        mutation = _Mutation(key, kind, generation, before, target, index)

        task = asyncio.get_running_loop().create_task(self._settle(mutation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.debug(
            f"Optimistic {kind.value} on {sanitize_id_for_logging(key)} (generation {generation})"
        )
        return PendingMutation(key, kind, generation, self._snapshot(), task)

    def _is_stale(self, mutation: _Mutation) -> bool:
        return self._store.generation(mutation.key) != mutation.generation

    def _remote_call(self, mutation: _Mutation) -> Awaitable:
        key = mutation.key
        if mutation.target is None:
            return self.remote.remove(key)
        # Absolute targets keep retries and repeated adds idempotent
        if key not in self._server_keys:
            return self.remote.add(key, mutation.target.quantity)
        return self.remote.update_quantity(key, mutation.target.quantity)

    async def _settle(self, mutation: _Mutation) -> SyncResult:
        try:
            confirmed = await self._with_retries(
                lambda: self._remote_call(mutation),
                key=mutation.key,
                mutation=mutation,
            )
        except _Superseded:
            return self._superseded(mutation)
        except SyncError as e:
            if self._is_stale(mutation):
                return self._superseded(mutation)
            return self._roll_back(mutation, e.for_key(mutation.key))
        except Exception as e:
            logger.exception(f"Unexpected cart sync failure for {sanitize_id_for_logging(mutation.key)}")
            if self._is_stale(mutation):
                return self._superseded(mutation)
            error = DefiniteSyncError(f"{ERROR_REMOTE_UNAVAILABLE}: {e}", key=mutation.key)
            return self._roll_back(mutation, error)

        self._record_server_state(mutation, confirmed)
        if self._is_stale(mutation):
            return self._superseded(mutation)
        return self._confirm(mutation, confirmed)

    async def _with_retries(
        self,
        call: Callable[[], Awaitable],
        key: Optional[LineKey],
        mutation: Optional[_Mutation] = None,
    ):
        """
        Run a remote call, retrying transient failures.

        Raises:
            _Superseded: If the mutation went stale before a retry
            DefiniteSyncError: On rejection, or once retries are exhausted
        """
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                f"Transient cart sync failure for {sanitize_id_for_logging(key)} "
                f"(attempt {retry_state.attempt_number}/{self.max_retries + 1}): {error}"
            )
            if mutation is not None and not self._is_stale(mutation):
                self._store.mark_retrying(mutation.key)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff, max=self.backoff_max),
            retry=retry_if_exception_type(TransientSyncError),
            before_sleep=before_sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    # The first attempt always goes out; only retries are dropped once stale
                    retrying_stale = (
                        mutation is not None
                        and attempt.retry_state.attempt_number > 1
                        and self._is_stale(mutation)
                    )
                    if retrying_stale:
                        raise _Superseded()
                    return await call()
        except TransientSyncError as e:
            raise DefiniteSyncError(
                f"{ERROR_RETRIES_EXHAUSTED}: {e.reason}", key=key, status_code=e.status_code
            ) from e

    @staticmethod
    def _merge_display(confirmed: LineItem, local: LineItem) -> LineItem:
        """Server value under the local key, keeping display fields the server omitted."""
        return replace(
            confirmed,
            product_id=local.product_id,
            variant_key=local.variant_key,
            name=confirmed.name or local.name,
            color=confirmed.color or local.color,
            size=confirmed.size or local.size,
            image_url=confirmed.image_url or local.image_url,
            expiry_date=confirmed.expiry_date or local.expiry_date,
        )

    def _record_server_state(self, mutation: _Mutation, confirmed: Optional[LineItem]) -> None:
        """Note what a successful call left on the server, whether or not it is still current."""
        key = mutation.key
        if mutation.target is None:
            self._server_keys.discard(key)
            known = None
        else:
            self._server_keys.add(key)
            known = mutation.target if confirmed is None else self._merge_display(confirmed, mutation.target)
        if key in self._origins:
            self._origins[key] = (known, self._origins[key][1])

    def _confirm(self, mutation: _Mutation, confirmed: Optional[LineItem]) -> SyncResult:
        key = mutation.key
        self._origins.pop(key, None)

        if mutation.target is None or confirmed is None:
            self._store.mark_pending(key, False)
            return SyncResult(key, mutation.kind, SyncOutcome.SETTLED, self._store.get(key))

        local = self._store.get(key) or mutation.target
        server = self._merge_display(confirmed, local)
        self._store.put(server)
        self._store.mark_pending(key, False)

        if server.quantity != local.quantity or server.unit_price != local.unit_price:
            message = self._describe_discrepancy(local, server)
            logger.info(f"Server corrected {sanitize_id_for_logging(key)}: {message}")
            self._emit(SyncNotice(NoticeKind.DISCREPANCY, key, message))

        return SyncResult(key, mutation.kind, SyncOutcome.SETTLED, server)

    @staticmethod
    def _describe_discrepancy(local: LineItem, server: LineItem) -> str:
        parts = []
        if server.quantity != local.quantity:
            parts.append(f"quantity adjusted to {server.quantity} (requested {local.quantity})")
        if server.unit_price != local.unit_price:
            parts.append(f"price changed from {local.unit_price} to {server.unit_price}")
        label = server.name or server.product_id
        return f"{label}: " + ", ".join(parts)

    def _roll_back(self, mutation: _Mutation, error: SyncError) -> SyncResult:
        key = mutation.key
        if not isinstance(error, DefiniteSyncError):
            error = DefiniteSyncError(error.reason, key=key, status_code=error.status_code)

        # Back to the last value the server confirmed, not to an unconfirmed optimistic one
        origin, index = self._origins.pop(key, (mutation.before, mutation.index))
        if origin is None:
            self._store.remove(key)
        elif key in self._store:
            self._store.put(origin)
        else:
            self._store.restore(origin, index)
        self._store.mark_pending(key, False)

        logger.warning(
            f"Rolled back {mutation.kind.value} on {sanitize_id_for_logging(key)}: {error.reason}"
        )
        previous = origin or mutation.before or mutation.target
        label = previous.name if previous is not None and previous.name else str(key)
        message = f"{label}: {error.reason}"
        self._emit(SyncNotice(NoticeKind.ROLLBACK, key, message, error))
        return SyncResult(key, mutation.kind, SyncOutcome.ROLLED_BACK, self._store.get(key), error)

    def _superseded(self, mutation: _Mutation) -> SyncResult:
        logger.debug(
            f"Discarded stale {mutation.kind.value} response for "
            f"{sanitize_id_for_logging(mutation.key)} (generation {mutation.generation})"
        )
        return SyncResult(mutation.key, mutation.kind, SyncOutcome.SUPERSEDED)

    def _emit(self, notice: SyncNotice) -> None:
        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception:
                logger.exception(f"Cart notice listener failed for {notice.kind.value}")
