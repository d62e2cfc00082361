"""Payment method endpoints."""

from fastapi import APIRouter

from payments import get_available_payment_methods

# Create router
router = APIRouter(
    prefix="/payments",
    tags=["Payments"]
)


@router.get("/methods")
async def payment_methods():
    """Payment methods offered to buyers."""
    return {'methods': get_available_payment_methods()}
