"""Guest cart expiry: command and handler for purging expired anonymous carts.

Designed to be triggered periodically by the maintenance runner or via the
maintenance API endpoint. Only ownerless carts are candidates; a cart that
belongs to a customer never expires.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Identifier
from protean.utils.globals import current_domain

from ordering.cart.cart import ShoppingCart
from ordering.domain import ordering
from shared.lifecycle import ExpirationReaper, utc_now

logger = structlog.get_logger(__name__)

PAGE_SIZE = 500


@ordering.command(part_of="ShoppingCart")
class PurgeExpiredGuestCarts:
    """Delete guest carts whose expiry lies before ``as_of``."""

    as_of = DateTime()  # Optional: defaults to now


@ordering.command(part_of="ShoppingCart")
class PurgeGuestCart:
    cart_id = Identifier(required=True)


def find_expired_guest_carts(as_of) -> list:
    dao = current_domain.repository_for(ShoppingCart)._dao
    expired = []
    offset = 0
    while True:
        page = dao.query.offset(offset).limit(PAGE_SIZE).all().items
        expired.extend(cart for cart in page if cart.is_expired(as_of))
        if len(page) < PAGE_SIZE:
            return expired
        offset += PAGE_SIZE


@ordering.command_handler(part_of=ShoppingCart)
class GuestCartExpiryHandler:
    @handle(PurgeGuestCart)
    def purge_guest_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        try:
            cart = repo.get(command.cart_id)
        except ObjectNotFoundError:
            return False

        # Items before the cart row
        cart.clear_items()
        repo.add(cart)
        repo._dao.delete(cart)
        return True

    @handle(PurgeExpiredGuestCarts)
    def purge_expired_guest_carts(self, command):
        reaper = ExpirationReaper(
            name="guest_carts",
            find_expired=find_expired_guest_carts,
            purge=lambda cart: current_domain.process(PurgeGuestCart(cart_id=str(cart.id)), asynchronous=False),
            describe=lambda cart: {
                "cart_id": str(cart.id),
                "session_id": cart.session_id,
                "item_count": len(cart.items),
                "expires_at": str(cart.expires_at),
            },
        )
        return reaper.sweep(command.as_of or utc_now()).removed
