from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Product(BaseModel):
    """One purchasable item, stored as ``<id>.json`` in the products dir."""

    # Unknown keys in a product file survive a rewrite
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    amount: int = Field(..., ge=0, description="Unit price in minor currency units")
    currency: str
    stock: int = Field(0, ge=0, description="Purchasable units on hand")


class CheckoutRequest(BaseModel):
    product_id: Optional[str] = Field(None, validate_default=True)
    quantity: int = Field(1, validate_default=True)

    @field_validator("product_id", mode="before")
    @classmethod
    def _require_product_id(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Product ID is required")
        return value

    @field_validator("quantity", mode="before")
    @classmethod
    def _positive_quantity(cls, value: Any) -> int:
        if value is None:
            raise ValueError("Quantity is required")
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError("Quantity must be a positive integer")
        return value
