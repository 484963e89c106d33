"""Multi-tenant store: the only writer of persisted business state.

:class:`TenantStore` owns the canonical :class:`~.models.Store` snapshot and
the storage handle it is flushed to. Every mutation goes through one of the
scoped primitives below, which swap in a new immutable snapshot and persist
it before returning. Because actions run one at a time, the last committed
snapshot always wins.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Dict, Optional

from . import data_manager, log
from .models import Business, BusinessData, Store, empty_store


BusinessDataUpdater = Callable[[BusinessData], BusinessData]
BusinessUpdater = Callable[[Business], Business]


class TenantStore:
    """Holder of the live store snapshot and its persistence target."""

    def __init__(self, storage: data_manager.LocalStorage, key: str, state: Optional[Store] = None) -> None:
        self.storage = storage
        self.key = key
        self._state = state if state is not None else empty_store()
        self.last_save_ok = True

    @property
    def state(self) -> Store:
        return self._state

    def _commit(self, new_state: Store) -> None:
        self._state = new_state
        self.last_save_ok = data_manager.save_store(self.storage, self.key, new_state)

    def update_business_data(self, business_id: Optional[str], updater: BusinessDataUpdater) -> bool:
        """Apply ``updater`` to one tenant's partition and persist the result.

        Args:
            business_id (str | None): Active tenant. ``None`` (no session, or
                admin mode) turns the call into a no-op.
            updater (Callable[[BusinessData], BusinessData]): Pure function
                returning the replacement partition. Returning the input
                object unchanged signals that nothing should be written.

        Returns:
            bool: ``True`` when a new snapshot was committed.
        """

        if business_id is None:
            log.debug("Ignoring business data update without an active business")
            return False
        current = self._state.data.get(business_id)
        if current is None:
            log.warning("Ignoring update for unknown business '%s'", business_id)
            return False
        updated = updater(current)
        if updated is current:
            return False
        data: Dict[str, BusinessData] = dict(self._state.data)
        data[business_id] = updated
        self._commit(replace(self._state, data=data))
        return True

    def update_business(self, business_id: Optional[str], updater: BusinessUpdater) -> bool:
        """Replace one tenant row using ``updater``; same contract as above."""

        current = self._state.find_business(business_id)
        if current is None:
            log.warning("Ignoring update for unknown business '%s'", business_id)
            return False
        updated = updater(current)
        if updated is current:
            return False
        businesses = tuple(updated if biz.id == business_id else biz for biz in self._state.businesses)
        self._commit(replace(self._state, businesses=businesses))
        return True

    def add_tenant(self, business: Business, business_data: BusinessData) -> bool:
        if self._state.find_business(business.id) is not None or business.id in self._state.data:
            log.warning("Refusing to register duplicate business id '%s'", business.id)
            return False
        data: Dict[str, BusinessData] = dict(self._state.data)
        data[business.id] = business_data
        self._commit(Store(businesses=(*self._state.businesses, business), data=data))
        return True

    def reset(self) -> None:
        """Drop every tenant. Irreversible once persisted."""

        self._commit(empty_store())
