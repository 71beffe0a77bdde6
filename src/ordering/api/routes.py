"""FastAPI routes for the Ordering domain: carts."""

from fastapi import APIRouter, HTTPException
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from ordering.api.schemas import (
    AddToCartRequest,
    CartIdResponse,
    CreateCartRequest,
    PurgeGuestCartsRequest,
    PurgeResponse,
    StatusResponse,
)
from ordering.cart.expiry import PurgeExpiredGuestCarts
from ordering.cart.management import AddToCart, CreateCart

# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/carts", tags=["carts"])


@cart_router.post("", status_code=201, response_model=CartIdResponse)
async def create_cart(body: CreateCartRequest) -> CartIdResponse:
    command = CreateCart(
        customer_id=body.customer_id,
        session_id=body.session_id,
    )
    result = current_domain.process(command, asynchronous=False)
    return CartIdResponse(cart_id=result)


@cart_router.post("/{cart_id}/items", response_model=StatusResponse)
async def add_cart_item(cart_id: str, body: AddToCartRequest) -> StatusResponse:
    command = AddToCart(
        cart_id=cart_id,
        product_id=body.product_id,
        variant_id=body.variant_id,
        quantity=body.quantity,
    )
    try:
        current_domain.process(command, asynchronous=False)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="Cart not found") from None
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.messages) from exc
    return StatusResponse()


@cart_router.post("/maintenance/purge", response_model=PurgeResponse)
async def purge_expired_guest_carts(body: PurgeGuestCartsRequest | None = None) -> PurgeResponse:
    """Delete expired guest carts (also run periodically by the maintenance runner)."""
    command = PurgeExpiredGuestCarts(as_of=body.as_of if body else None)
    removed = current_domain.process(command, asynchronous=False)
    return PurgeResponse(removed=removed)
