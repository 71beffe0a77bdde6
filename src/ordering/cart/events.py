"""Domain events for the ShoppingCart aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from ordering.domain import ordering


@ordering.event(part_of="ShoppingCart")
class CartCreated:
    """A cart was opened for a customer or an anonymous guest."""

    __version__ = 1

    cart_id = Identifier(required=True)
    customer_id = Identifier()
    session_id = String()
    expires_at = DateTime()
    created_at = DateTime(required=True)


@ordering.event(part_of="ShoppingCart")
class CartItemAdded:
    """An item was added; for guests this also renews the cart's expiry."""

    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity = Integer(required=True)
    expires_at = DateTime()  # Pushed forward for guest carts
