from datetime import timedelta

import pytest
from protean.integrations.pytest import DomainFixture
from shared.lifecycle import utc_now


@pytest.fixture(scope="session")
def ordering_bed():
    from ordering.domain import ordering

    bed = DomainFixture(ordering)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(ordering_bed):
    with ordering_bed.domain_context():
        yield


@pytest.fixture()
def stored_cart():
    """Persist a cart as if it had been created ``hours_ago`` hours back."""
    from ordering.cart.cart import ShoppingCart
    from protean import current_domain

    def _store(customer_id=None, session_id="browser-1", hours_ago=0, items=0):
        created = utc_now() - timedelta(hours=hours_ago)
        cart = ShoppingCart.create(customer_id=customer_id, session_id=session_id, now=created)
        for index in range(items):
            cart.add_item(f"prod-{index}", f"var-{index}", 1, now=created)
        current_domain.repository_for(ShoppingCart).add(cart)
        return str(cart.id)

    return _store
