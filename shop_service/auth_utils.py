# shop_service/auth_utils.py
from dataclasses import dataclass
from typing import Optional, Union
import jwt
from shop_service.config import JWT_SECRET, JWT_ALGORITHM
from shop_service.errors import BadRequest, Unauthorized, Forbidden

GUEST_PREFIX = "guest_"


@dataclass(frozen=True)
class Authenticated:
    user_id: str

    @property
    def key(self) -> str:
        return self.user_id


@dataclass(frozen=True)
class Guest:
    token: str

    @property
    def key(self) -> str:
        return self.token


AccountRef = Union[Authenticated, Guest]


def verify_token(token: str) -> str:
    """Проверяет JWT и возвращает userId из токена."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise Unauthorized("Invalid token")
    user_id = payload.get("userId")
    if not isinstance(user_id, str) or not user_id.strip():
        raise Unauthorized("Invalid token")
    return user_id.strip()


def parse_account(user_id: str) -> AccountRef:
    if user_id.startswith(GUEST_PREFIX):
        return Guest(token=user_id)
    return Authenticated(user_id=user_id)


def resolve_account(user_id: Optional[str], token: Optional[str] = None) -> AccountRef:
    """
    Определяет владельца корзины/заказа.

    Токен, если передан, имеет приоритет; userId из запроса должен с ним
    совпадать. Без токена идентификатор вида guest_* означает гостя.
    """
    user_id = user_id.strip() if isinstance(user_id, str) else None
    if token:
        token_user_id = verify_token(token)
        if user_id and user_id != token_user_id:
            raise Forbidden("userId does not match token")
        return Authenticated(user_id=token_user_id)
    if not user_id:
        raise BadRequest("userId is required")
    return parse_account(user_id)
