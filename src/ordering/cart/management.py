"""Cart management: opening carts and adding items.

Both commands accept an optional ``as_of`` so a guest cart's sliding expiry
is computed from the moment the request was made.
"""

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from ordering.cart.cart import ShoppingCart
from ordering.domain import ordering

logger = structlog.get_logger(__name__)


@ordering.command(part_of="ShoppingCart")
class CreateCart:
    """Open a cart for a registered customer, or for a guest's browser session."""

    customer_id = Identifier()  # Null for guests
    session_id = String(max_length=255)
    as_of = DateTime()


@ordering.command(part_of="ShoppingCart")
class AddToCart:
    cart_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    as_of = DateTime()


@ordering.command_handler(part_of=ShoppingCart)
class ManageCartHandler:
    @handle(CreateCart)
    def create_cart(self, command):
        cart = ShoppingCart.create(
            customer_id=command.customer_id,
            session_id=command.session_id,
            now=command.as_of,
        )
        current_domain.repository_for(ShoppingCart).add(cart)

        if cart.is_guest:
            logger.info("Guest cart opened", cart_id=str(cart.id), expires_at=str(cart.expires_at))
        return str(cart.id)

    @handle(AddToCart)
    def add_to_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.add_item(command.product_id, command.variant_id, command.quantity, now=command.as_of)
        repo.add(cart)
        return cart.expires_at
