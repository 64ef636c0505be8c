# shop_service/errors.py
from fastapi import HTTPException


class BadRequest(HTTPException):
    """Отсутствующие или некорректные входные данные."""

    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Invalid token"):
        super().__init__(status_code=401, detail=detail)


class Forbidden(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=403, detail=detail)


class NotFound(HTTPException):
    """Сущность не существует или не видна запрашивающему пользователю."""

    def __init__(self, detail: str, status_code: int = 404):
        super().__init__(status_code=status_code, detail=detail)


class UnknownProduct(NotFound):
    """Товар из тела запроса не найден; клиенту отдается как 400."""

    def __init__(self, detail: str):
        super().__init__(detail, status_code=400)


class Conflict(HTTPException):
    """Запрос корректен, но нарушает текущее состояние остатков."""

    def __init__(self, detail: str):
        super().__init__(status_code=409, detail=detail)


class UnknownAddress(NotFound):
    """Сохраненный адрес из тела заказа не найден; тоже 400."""

    def __init__(self, detail: str):
        super().__init__(detail, status_code=400)
