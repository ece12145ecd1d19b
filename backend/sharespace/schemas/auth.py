from __future__ import annotations

from pydantic import BaseModel


class AuthResult(BaseModel):
    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> "AuthResult":
        return cls(success=True)

    @classmethod
    def fail(cls, error: str) -> "AuthResult":
        return cls(success=False, error=error)
