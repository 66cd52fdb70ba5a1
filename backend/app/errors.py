from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class ApiError(HTTPException):
    """
    HTTPException with a JSON body: {"error": message, **extra}.
    Rendered as-is by the handler in main.py.
    """

    def __init__(self, status_code: int, error: str, **extra: Any) -> None:
        super().__init__(status_code=status_code, detail={"error": error, **extra})
        self.error = error
