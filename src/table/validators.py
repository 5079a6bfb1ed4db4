import re
from typing import Callable, Optional

from table.errors import InvalidTableNumber, ValidationError
from utils import messages

MIN_QUANTITY = 1
MAX_QUANTITY = 99
MAX_NAME_LENGTH = 50
MAX_NOTES_LENGTH = 200

# Table labels printed on the QR stickers: "12", "VIP-1", "T3".
TABLE_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]{0,9}$")

TableValidator = Callable[[str], bool]


def is_valid_table_number(table_number: str) -> bool:
    return isinstance(table_number, str) and bool(TABLE_NUMBER_PATTERN.match(table_number))


def validate_table_number(
    table_number, validator: Optional[TableValidator] = None
) -> str:
    """Return the trimmed table number or raise InvalidTableNumber."""
    check = validator or is_valid_table_number
    cleaned = table_number.strip() if isinstance(table_number, str) else table_number
    if not isinstance(cleaned, str) or not check(cleaned):
        raise InvalidTableNumber(table=table_number)
    return cleaned


def validate_diner_name(name) -> str:
    cleaned = name.strip() if isinstance(name, str) else ""
    if not cleaned or len(cleaned) > MAX_NAME_LENGTH:
        raise ValidationError(key=messages.INVALID_DINER_NAME, max=MAX_NAME_LENGTH)
    return cleaned


def validate_quantity(quantity) -> int:
    """None defaults to 1; anything else must be an int in [1, 99]."""
    if quantity is None:
        return MIN_QUANTITY
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(
            key=messages.INVALID_QUANTITY, min=MIN_QUANTITY, max=MAX_QUANTITY
        )
    if not MIN_QUANTITY <= quantity <= MAX_QUANTITY:
        raise ValidationError(
            key=messages.INVALID_QUANTITY, min=MIN_QUANTITY, max=MAX_QUANTITY
        )
    return quantity


def clamp_quantity(quantity: int) -> int:
    return max(MIN_QUANTITY, min(MAX_QUANTITY, int(quantity)))


def validate_notes(notes) -> Optional[str]:
    if notes is None:
        return None
    cleaned = str(notes).strip()
    if len(cleaned) > MAX_NOTES_LENGTH:
        raise ValidationError(key=messages.INVALID_NOTES, max=MAX_NOTES_LENGTH)
    return cleaned or None
