# shop_service/validation.py
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from shop_service.errors import BadRequest

# Верхняя граница колонки Integer
MAX_QUANTITY = 2 ** 31 - 1


def required_string(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > 0


def clean_string(value: Any) -> Optional[str]:
    """Обрезает пробелы; пустые и нестроковые значения превращаются в None."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def to_decimal(value: Any) -> Optional[Decimal]:
    """Число или строка с числом -> конечный Decimal, иначе None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not number.is_finite():
        return None
    return number


def parse_quantity(value: Any, *, default: Optional[int], minimum: int, message: str) -> Optional[int]:
    """
    Разбирает количество из тела запроса.

    None и пустая строка дают default. Допускаются целые числа, float с
    целым значением и строки с таким числом. Остальное и значения меньше
    minimum или больше MAX_QUANTITY -> BadRequest(message).
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise BadRequest(message)
    if isinstance(value, int):
        quantity = value
    else:
        number = to_decimal(value)
        if number is None or abs(number) > MAX_QUANTITY or number != number.to_integral_value():
            raise BadRequest(message)
        quantity = int(number)
    if quantity < minimum or quantity > MAX_QUANTITY:
        raise BadRequest(message)
    return quantity
