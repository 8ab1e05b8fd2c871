"""
Module: connectors.price_book

Owned, versioned current-price record per product. Writers must present the
version they read; a stale version is rejected instead of overwriting.
"""

import logging
from datetime import datetime

from models.errors import ConcurrencyConflictError, NotFoundError
from models.state import PriceMutation, ProductPriceState

logger = logging.getLogger(__name__)


class PriceBook:
    """Current price per product with optimistic concurrency."""

    def __init__(self):
        self._states: dict[str, ProductPriceState] = {}
        self.mutations: list[PriceMutation] = []

    def set_initial(self, product_id: str, price: float, actor_id: str = "system") -> ProductPriceState:
        """Seed a product's price (catalog load). Existing state is left untouched."""
        if product_id in self._states:
            return self._states[product_id]
        state = ProductPriceState(product_id=product_id, price=round(price, 2), updated_by=actor_id)
        self._states[product_id] = state
        return state

    def get(self, product_id: str) -> ProductPriceState:
        try:
            return self._states[product_id]
        except KeyError:
            raise NotFoundError(f"No current price for product {product_id}") from None

    def current_price(self, product_id: str) -> float:
        return self.get(product_id).price

    def apply(
        self,
        product_id: str,
        new_price: float,
        expected_version: int,
        actor_id: str,
        reason: str = "",
        now: datetime | None = None,
    ) -> PriceMutation:
        """
        Set a new price if the caller's version matches.

        Raises:
            ConcurrencyConflictError: the record changed since it was read.
        """
        state = self.get(product_id)
        if state.version != expected_version:
            raise ConcurrencyConflictError(
                f"Price for {product_id} is at version {state.version}, expected {expected_version}"
            )
        ts = now or datetime.now()
        updated = ProductPriceState(
            product_id=product_id,
            price=round(new_price, 2),
            version=state.version + 1,
            updated_at=ts,
            updated_by=actor_id,
        )
        self._states[product_id] = updated
        mutation = PriceMutation(
            product_id=product_id,
            before_price=state.price,
            after_price=updated.price,
            version=updated.version,
            actor_id=actor_id,
            reason=reason,
            applied_at=ts,
        )
        self.mutations.append(mutation)
        logger.info(f"Price {product_id}: {state.price:.2f} -> {updated.price:.2f} (v{updated.version}, {actor_id})")
        return mutation

    def restore(self, previous: ProductPriceState, mutation: PriceMutation) -> None:
        """Undo ``mutation`` when the paired audit write failed."""
        current = self.get(previous.product_id)
        if current.version != mutation.version:
            raise ConcurrencyConflictError(
                f"Cannot restore {previous.product_id}: version moved to {current.version}"
            )
        self._states[previous.product_id] = previous
        if self.mutations and self.mutations[-1] is mutation:
            self.mutations.pop()
        logger.warning(f"Rolled back price for {previous.product_id} to {previous.price:.2f}")
