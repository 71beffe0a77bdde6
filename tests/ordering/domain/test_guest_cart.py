"""Tests for guest cart expiry on the ShoppingCart aggregate."""

from datetime import UTC, datetime, timedelta

import pytest
from ordering.cart.cart import ShoppingCart, guest_cart_ttl
from ordering.cart.events import CartCreated
from protean.exceptions import ValidationError

NOW = datetime(2026, 5, 4, 9, 30, tzinfo=UTC)


class TestGuestCartExpiry:
    def test_guest_cart_gets_an_expiry(self):
        cart = ShoppingCart.create(session_id="browser-1", now=NOW)

        assert cart.is_guest
        assert cart.expires_at == NOW + timedelta(hours=72)
        assert isinstance(cart._events[-1], CartCreated)

    def test_customer_cart_never_expires(self):
        cart = ShoppingCart.create(customer_id="cust-1", now=NOW)

        assert cart.expires_at is None
        assert not cart.is_expired(NOW + timedelta(days=365))

    def test_expired_only_strictly_after_the_deadline(self):
        cart = ShoppingCart.create(session_id="browser-1", now=NOW)

        assert not cart.is_expired(cart.expires_at)
        assert cart.is_expired(cart.expires_at + timedelta(seconds=1))

    def test_activity_slides_the_expiry(self):
        cart = ShoppingCart.create(session_id="browser-1", now=NOW)
        later = NOW + timedelta(hours=10)

        cart.add_item("prod-1", "var-1", 2, now=later)

        assert cart.expires_at == later + timedelta(hours=72)

    def test_expired_cart_rejects_items(self):
        cart = ShoppingCart.create(session_id="browser-1", now=NOW)

        with pytest.raises(ValidationError) as exc:
            cart.add_item("prod-1", "var-1", 1, now=NOW + timedelta(hours=73))

        assert "cart" in exc.value.messages

    def test_ttl_from_environment(self, monkeypatch):
        monkeypatch.setenv("ORDERING_GUEST_CART_TTL_HOURS", "1.5")
        assert guest_cart_ttl() == timedelta(minutes=90)


class TestCartItems:
    def test_same_variant_increases_quantity(self):
        cart = ShoppingCart.create(customer_id="cust-1", now=NOW)

        cart.add_item("prod-1", "var-1", 1, now=NOW)
        cart.add_item("prod-1", "var-1", 2, now=NOW)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3

    def test_clear_items(self):
        cart = ShoppingCart.create(session_id="browser-1", now=NOW)
        cart.add_item("prod-1", "var-1", 1, now=NOW)
        cart.add_item("prod-2", "var-2", 1, now=NOW)

        assert cart.clear_items() == 2
        assert len(cart.items) == 0
