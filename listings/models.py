"""Listing value models."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

CONDITION_STATUSES = ('new', 'dswt', 'never_used', 'excellent', 'good', 'fair')
AUTHENTICITY_LEVELS = ('guaranteed', 'likely_authentic', 'unknown')


class ConditionAssessment(BaseModel):
    """Seller-declared condition of the item, stored verbatim with the listing."""
    status: str = Field(..., pattern='^(new|dswt|never_used|excellent|good|fair)$')
    description: str = ''
    defects: List[str] = Field(default_factory=list)
    wear_signs: List[str] = Field(default_factory=list)
    alterations: List[str] = Field(default_factory=list)
    authenticity: str = Field('unknown', pattern='^(guaranteed|likely_authentic|unknown)$')
    has_box: bool = False
    has_tags: bool = False
    has_receipt: bool = False


class ShippingOption(BaseModel):
    available: bool = True
    cost: Decimal = Field(Decimal('0'), ge=0)
    estimated_days: Optional[int] = Field(None, ge=0)


class ShippingOptions(BaseModel):
    domestic: Optional[ShippingOption] = None
    international: Optional[ShippingOption] = None
    local_pickup: bool = False
