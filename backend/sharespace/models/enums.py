from __future__ import annotations

import enum


class AppRole(str, enum.Enum):
    """Platform-wide role assignment (user_roles.role)."""
    admin = "admin"
    user = "user"

    @classmethod
    def values(cls) -> list[str]:
        return [e.value for e in cls]


class ProductStatus(str, enum.Enum):
    active = "active"
    blocked = "blocked"

    @classmethod
    def values(cls) -> list[str]:
        return [e.value for e in cls]


class ProductCondition(str, enum.Enum):
    new = "New"
    like_new = "Like New"
    good = "Good"
    fair = "Fair"

    @classmethod
    def values(cls) -> list[str]:
        return [e.value for e in cls]


class FeedbackCategory(str, enum.Enum):
    product = "Product"
    faculty = "Faculty"
    platform = "Platform"
    other = "Other"

    @classmethod
    def values(cls) -> list[str]:
        return [e.value for e in cls]


class FeedbackStatus(str, enum.Enum):
    # Admins may move between any two states; there is no forward-only rule.
    pending = "pending"
    reviewed = "reviewed"
    resolved = "resolved"

    @classmethod
    def values(cls) -> list[str]:
        return [e.value for e in cls]


class ChangeEvent(str, enum.Enum):
    """Row change kinds published on a table's change feed."""
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"


class SessionEvent(str, enum.Enum):
    signed_in = "SIGNED_IN"
    signed_out = "SIGNED_OUT"
    token_expired = "TOKEN_EXPIRED"


class AuthEmailType(str, enum.Enum):
    registration = "registration"
    login = "login"
