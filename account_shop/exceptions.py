# exceptions.py
"""
Error taxonomy shared by the workflow, the bot dispatcher and the REST layer.

Lookups never raise: a missing entity is returned as None/False by the store.
These are raised where a caller has to be told *why* something did not happen.
"""


class ShopError(Exception):
    """Base class for all shop errors."""
    pass


class NotFoundError(ShopError, LookupError):
    """Entity is absent (HTTP 404)."""
    pass


class ValidationError(ShopError, ValueError):
    """Bad input such as a malformed bot token or a duplicate unique key (HTTP 400)."""
    pass


class EmptyCartError(ShopError):
    """Checkout attempted without a cart or without purchasable lines."""
    pass


class OutOfStockError(ShopError):
    """No undelivered Account left for a product; no order is created."""

    def __init__(self, product_id: int, product_name: str = ""):
        self.product_id = product_id
        self.product_name = product_name
        super().__init__(f"No accounts available for product {product_id} {product_name}".strip())


class DeliveryError(ShopError):
    """Credential message could not be delivered after all retries."""

    def __init__(self, order_id: int, attempts: int, sent: int = 0):
        self.order_id = order_id
        self.attempts = attempts
        # messages that did reach the chat before the failing one
        self.sent = sent
        super().__init__(f"Delivery of order {order_id} failed after {attempts} attempts")
