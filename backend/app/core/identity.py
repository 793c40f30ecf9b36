from dataclasses import dataclass
from typing import Optional

from app.core.errors import ValidationError


@dataclass(frozen=True)
class CustomerIdentity:
    """Покупатель: авторизованный пользователь или гость, но не оба сразу"""
    user_id: Optional[int] = None
    guest_id: Optional[str] = None

    def __post_init__(self):
        if (self.user_id is None) == (not self.guest_id):
            raise ValidationError("Exactly one of user id or guest id is required")

    @property
    def key(self) -> str:
        if self.user_id is not None:
            return f"user:{self.user_id}"
        return f"guest:{self.guest_id}"

    @classmethod
    def user(cls, user_id: int) -> "CustomerIdentity":
        return cls(user_id=user_id)

    @classmethod
    def guest(cls, guest_id: str) -> "CustomerIdentity":
        return cls(guest_id=guest_id)
