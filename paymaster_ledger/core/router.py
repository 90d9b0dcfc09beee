"""
Event Router

Entry point of the ledger. Selects the handler for each decoded event
by (contract variant, event kind) and runs it inside one unit of work.

Processing contract:
- One event is fully applied (or fully discarded) before the next
- An event already applied is skipped (ProcessedEvent marker)
- A LedgerError abandons that event only; the stream continues
- Store errors and programming errors propagate
- Events delivered without a log index take their emission order
  within the transaction

Events sharing semantics across variants (deposit, leaf insertion,
ownership transfer, pool death, revenue withdrawal) share one handler.
Only sponsorship and nullifier events differ, and those differences are
resolved by the account's policies inside the handler.
"""

import time
from collections import Counter
from enum import Enum
from typing import Callable, Iterable, Optional

from ..db import EntityStore
from ..observability import MetricsCollector, event_log_context, get_logger, get_metrics
from ..schemas import ContractVariant, DecodedEvent, EventKind, ProcessedEvent
from .identity import ContractIdentity, IdentityResolver
from .keys import processed_event_key
from .ledger import LedgerEngine, LedgerError, UnsupportedEventError
from .settings import EngineSettings


logger = get_logger(__name__)


class ProcessingOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    ABANDONED = "abandoned"
    UNSUPPORTED = "unsupported"


Handler = Callable[[DecodedEvent, ContractIdentity], None]


_SHARED_ROUTES = {
    EventKind.DEPOSITED: "on_deposited",
    EventKind.LEAF_INSERTED: "on_leaf_inserted",
    EventKind.OWNERSHIP_TRANSFERRED: "on_ownership_transferred",
    EventKind.POOL_DIED: "on_pool_died",
    EventKind.REVENUE_WITHDRAWN: "on_revenue_withdrawn",
    EventKind.USER_OP_SPONSORED: "on_user_op_sponsored",
}

_POOL_ROUTES = {
    EventKind.POOL_CREATED: "on_pool_created",
    EventKind.MEMBER_ADDED: "on_member_added",
    EventKind.MEMBERS_ADDED: "on_members_added",
}


def _build_routes() -> dict[tuple[ContractVariant, EventKind], str]:
    routes = {}
    for variant in (ContractVariant.GAS_LIMITED, ContractVariant.ONE_TIME_USE):
        for kind, name in {**_SHARED_ROUTES, **_POOL_ROUTES}.items():
            routes[(variant, kind)] = name

    cache_enabled = ContractVariant.CACHE_ENABLED_GAS_LIMITED
    for kind, name in _SHARED_ROUTES.items():
        routes[(cache_enabled, kind)] = name
    routes[(cache_enabled, EventKind.NULLIFIER_CONSUMED)] = "on_nullifier_consumed"
    return routes


# (variant, kind) -> LedgerEngine method name
ROUTES: dict[tuple[ContractVariant, EventKind], str] = _build_routes()


class EventRouter:
    """
    Dispatches decoded events to the ledger engine.

    Usage:
        router = EventRouter(InMemoryEntityStore())
        router.handle(ContractVariant.GAS_LIMITED, event)
    """

    def __init__(
        self,
        store: EntityStore,
        resolver: Optional[IdentityResolver] = None,
        settings: Optional[EngineSettings] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._store = store
        self._resolver = resolver if resolver is not None else IdentityResolver()
        self._settings = settings if settings is not None else EngineSettings()
        self._metrics = metrics if metrics is not None else get_metrics()
        self._engine = LedgerEngine(store, self._resolver, self._settings, self._metrics)

        # Emission order within the current transaction
        self._position_tx: Optional[str] = None
        self._next_position = 0

    @property
    def store(self) -> EntityStore:
        return self._store

    @property
    def engine(self) -> LedgerEngine:
        return self._engine

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    def handler_for(self, variant: ContractVariant, kind: EventKind) -> Handler:
        name = ROUTES.get((ContractVariant(variant), kind))
        if name is None:
            raise UnsupportedEventError(
                f"{ContractVariant(variant).value} does not emit {kind.value}"
            )
        return getattr(self._engine, name)

    # ================================================================
    # ENTRY POINTS
    # ================================================================

    def handle(self, variant: ContractVariant, event: DecodedEvent) -> ProcessingOutcome:
        """Per-(variant, kind) entry point: the caller knows the contract family."""
        return self._process(event, variant)

    def dispatch(self, event: DecodedEvent) -> ProcessingOutcome:
        """Route by the identity table, falling back to the event's variant hint."""
        return self._process(event, event.contract_variant)

    def replay(self, events: Iterable[DecodedEvent]) -> Counter:
        """
        Dispatch a sequence of events in order.

        Returns:
            Count of events per outcome
        """
        outcomes: Counter = Counter()
        for event in events:
            outcomes[self.dispatch(event).value] += 1
        return outcomes

    # ================================================================
    # PROCESSING
    # ================================================================

    def _process(
        self,
        event: DecodedEvent,
        variant: Optional[ContractVariant],
    ) -> ProcessingOutcome:
        start = time.perf_counter()
        event = self._positioned(event)
        with event_log_context(event.transaction_hash, event.block_number):
            outcome = self._apply(event, variant)
        self._metrics.record_event(outcome.value, (time.perf_counter() - start) * 1000)
        return outcome

    def _positioned(self, event: DecodedEvent) -> DecodedEvent:
        """
        Fill a missing log index with the event's position in its transaction.

        Delivery is ordered, so the events of one transaction arrive
        together; the counter restarts whenever the transaction changes.
        """
        if event.transaction_hash != self._position_tx:
            self._position_tx = event.transaction_hash
            self._next_position = 0
        if event.log_index is None:
            event = event.model_copy(update={"log_index": self._next_position})
        self._next_position = max(self._next_position, event.log_index + 1)
        return event

    def _apply(
        self,
        event: DecodedEvent,
        variant: Optional[ContractVariant],
    ) -> ProcessingOutcome:
        identity = self._resolver.resolve(event.address, variant)

        try:
            if identity.variant is None:
                raise UnsupportedEventError(
                    f"No contract variant known for {identity.address}"
                )
            handler = self.handler_for(identity.variant, event.kind)
        except UnsupportedEventError as e:
            logger.warning(
                "Event skipped",
                reason=str(e),
                kind=event.kind.value,
                address=identity.address,
            )
            return ProcessingOutcome.UNSUPPORTED

        marker_key = processed_event_key(
            identity.network, event.transaction_hash, event.log_index
        )

        try:
            with self._store.unit_of_work():
                if (
                    self._settings.deduplicate
                    and self._store.load(ProcessedEvent, marker_key) is not None
                ):
                    logger.debug(
                        "Event already applied",
                        kind=event.kind.value,
                        log_index=event.log_index,
                    )
                    return ProcessingOutcome.DUPLICATE

                handler(event, identity)

                if self._settings.deduplicate:
                    self._store.upsert(ProcessedEvent(
                        id=marker_key,
                        network=identity.network,
                        transaction_hash=event.transaction_hash,
                        log_index=event.log_index,
                        block_number=event.block_number,
                        kind=event.kind.value,
                    ))
        except LedgerError as e:
            logger.error(
                "Event abandoned",
                error=str(e),
                kind=event.kind.value,
                address=identity.address,
            )
            return ProcessingOutcome.ABANDONED

        return ProcessingOutcome.APPLIED
