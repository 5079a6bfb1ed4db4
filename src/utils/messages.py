"""
Translation keys for every user-facing message the core can produce.

The presentation layer owns the real catalogues; the core only needs a
``translate(key, **params)`` callable. ``default_translate`` renders the
English fallback below so the core is usable (and testable) on its own.
"""

from typing import Callable, Dict

Translate = Callable[..., str]

INVALID_TABLE_NUMBER = "errors.invalidTableNumber"
INVALID_DINER_NAME = "errors.invalidDinerName"
INVALID_PRICE = "errors.invalidPrice"
INVALID_QUANTITY = "errors.invalidQuantity"
INVALID_NOTES = "errors.invalidNotes"
INVALID_ORDER_STATUS = "errors.invalidOrderStatus"
INVALID_SPLIT_METHOD = "errors.invalidSplitMethod"
INVALID_PAYMENT_METHOD = "errors.invalidPaymentMethod"
UNKNOWN_PRODUCT = "errors.unknownProduct"
NO_ACTIVE_SESSION = "errors.noActiveSession"
SESSION_CLOSED = "errors.sessionClosed"
EMPTY_CART = "cart.emptyCartError"
PENDING_CART = "closeTable.cartErrorPending"
NOTHING_TO_CLOSE = "closeTable.noOrdersToClose"
CLOSE_IN_PROGRESS = "closeTable.alreadyRequested"
STORAGE_UNAVAILABLE = "errors.storageUnavailable"
SESSION_EXPIRED = "errors.sessionExpired"
NETWORK_ERROR = "errors.network"

CLOSE_STATUS = {
    "idle": "closeTable.requestBill",
    "requesting": "closeTable.requestingBill",
    "waiting": "closeTable.waitingWaiterAccept",
    "waiter_coming": "closeTable.waiterOnWay",
    "bill_ready": "closeTable.deliveredBill",
    "paid": "closeTable.paid",
}

ENGLISH: Dict[str, str] = {
    INVALID_TABLE_NUMBER: "Table '{table}' is not a valid table number.",
    INVALID_DINER_NAME: "Please enter a name between 1 and {max} characters.",
    INVALID_PRICE: "Price must be between 0.01 and {max}.",
    INVALID_SPLIT_METHOD: "Unknown way to split the bill: {split_method}.",
    INVALID_PAYMENT_METHOD: "Unknown payment method: {method}.",
    INVALID_QUANTITY: "Quantity must be a whole number between {min} and {max}.",
    INVALID_NOTES: "Notes can be at most {max} characters.",
    INVALID_ORDER_STATUS: "An order cannot move from {current} to {status}.",
    UNKNOWN_PRODUCT: "Product {product_id} is not on the menu.",
    NO_ACTIVE_SESSION: "Join a table first.",
    SESSION_CLOSED: "This table is already closed.",
    EMPTY_CART: "Your cart is empty.",
    PENDING_CART: "Send or clear the items in your cart before requesting the bill.",
    NOTHING_TO_CLOSE: "There are no orders to pay yet.",
    CLOSE_IN_PROGRESS: "The bill has already been requested.",
    STORAGE_UNAVAILABLE: "Changes could not be saved on this device.",
    SESSION_EXPIRED: "Your table session has expired.",
    NETWORK_ERROR: "Connection problem, please try again.",
    "closeTable.requestBill": "Request bill",
    "closeTable.requestingBill": "Requesting the bill...",
    "closeTable.waitingWaiterAccept": "Waiting for a waiter to accept",
    "closeTable.waiterOnWay": "{waiter} is on the way (~{minutes} min)",
    "closeTable.deliveredBill": "{waiter} delivered the bill",
    "closeTable.paid": "Paid. Thanks for visiting!",
}


def default_translate(key: str, **params) -> str:
    """Render ``key`` from the English fallback, or the key itself if unknown."""
    template = ENGLISH.get(key)
    if template is None:
        return key
    try:
        return template.format(**params)
    except (KeyError, IndexError):
        return template
