"""
Purchase availability checks.

The check is advisory: nothing is reserved, stock only moves when the
payment provider confirms the session.
"""

from typing import Any, Dict

from checkout_backend.errors import InsufficientStock, InvalidInput, OutOfStock
from checkout_backend.logs import log_json
from checkout_backend.models import Product
from checkout_backend.store import ProductStore


def check_availability(store: ProductStore, product_id: str, quantity: int) -> Product:
    """
    Load ``product_id`` and make sure ``quantity`` units can be sold.

    Raises:
        InvalidInput: quantity is not a positive integer
        NotFound: no record for product_id
        OutOfStock: stock is zero
        InsufficientStock: quantity exceeds stock
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidInput("Quantity must be a positive integer")

    product = store.read(product_id)

    if product.stock <= 0:
        log_json("WARN", "Product out of stock",
                 product_id=product_id, requested_quantity=quantity)
        raise OutOfStock(
            "Product out of stock",
            f"The product with ID {product_id} is out of stock",
            available=False,
        )

    if quantity > product.stock:
        log_json("WARN", "Insufficient stock detected",
                 product_id=product_id,
                 available_stock=product.stock,
                 requested_quantity=quantity)
        raise InsufficientStock(
            "Insufficient stock",
            f"Requested quantity ({quantity}) exceeds available stock ({product.stock})",
            available=True,
            stock=product.stock,
            requested=quantity,
        )

    return product


def describe_product(product: Product) -> Dict[str, Any]:
    data = product.model_dump()
    in_stock = product.stock > 0
    data.update(available=in_stock, inStock=in_stock, outOfStock=not in_stock)
    return data
