"""Shopping Cart aggregate (CQRS).

A cart belongs to a registered customer or, for anonymous shoppers, to a
browser session. Guest carts expire: every change pushes ``expires_at``
forward by the guest TTL, and the expiration sweep deletes guest carts whose
timestamp has passed. Customer carts never expire.
"""

import os
from datetime import timedelta
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from ordering.cart.events import CartCreated, CartItemAdded
from ordering.domain import ordering
from shared.lifecycle import has_expired, utc_now


def guest_cart_ttl() -> timedelta:
    return timedelta(hours=float(os.getenv("ORDERING_GUEST_CART_TTL_HOURS", "72")))


class CartStatus(Enum):
    ACTIVE = "Active"
    CONVERTED = "Converted"
    ABANDONED = "Abandoned"


@ordering.entity(part_of="ShoppingCart")
class CartItem:
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    added_at = DateTime()


@ordering.aggregate
class ShoppingCart:
    customer_id = Identifier()  # Nullable for guest carts
    session_id = String(max_length=255)  # For guest cart identification
    items = HasMany(CartItem)
    status = String(choices=CartStatus, default=CartStatus.ACTIVE.value)
    created_at = DateTime()
    updated_at = DateTime()
    expires_at = DateTime()  # Guest carts only

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, customer_id=None, session_id=None, now=None):
        now = now or utc_now()
        cart = cls(
            customer_id=customer_id,
            session_id=session_id,
            status=CartStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
            expires_at=None if customer_id else now + guest_cart_ttl(),
        )
        cart.raise_(
            CartCreated(
                cart_id=str(cart.id),
                customer_id=customer_id,
                session_id=session_id,
                expires_at=cart.expires_at,
                created_at=now,
            )
        )
        return cart

    @property
    def is_guest(self) -> bool:
        return self.customer_id is None

    def is_expired(self, as_of=None) -> bool:
        return self.is_guest and has_expired(self.expires_at, as_of or utc_now())

    def _touch(self, now):
        self.updated_at = now
        if self.is_guest:
            self.expires_at = now + guest_cart_ttl()

    # -------------------------------------------------------------------
    # Item management
    # -------------------------------------------------------------------
    def add_item(self, product_id, variant_id, quantity, now=None):
        """Add an item to the cart (or increase quantity if already present)."""
        if CartStatus(self.status) != CartStatus.ACTIVE:
            raise ValidationError({"status": ["Items can only be added to an active cart"]})

        now = now or utc_now()
        if self.is_expired(now):
            raise ValidationError({"cart": ["This guest cart has expired"]})

        existing = next(
            (i for i in self.items if str(i.product_id) == str(product_id) and str(i.variant_id) == str(variant_id)),
            None,
        )

        if existing:
            existing.quantity += quantity
            item_id = str(existing.id)
        else:
            item = CartItem(
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                added_at=now,
            )
            self.add_items(item)
            item_id = str(item.id)

        self._touch(now)

        self.raise_(
            CartItemAdded(
                cart_id=str(self.id),
                item_id=item_id,
                product_id=str(product_id),
                variant_id=str(variant_id),
                quantity=quantity,
                expires_at=self.expires_at,
            )
        )

    def clear_items(self) -> int:
        """Detach every item ahead of deleting the cart. Returns how many were removed."""
        items = list(self.items)
        for item in items:
            self.remove_items(item)
        return len(items)
