"""
Error types raised by the Electric Buddy API.

Each one is an HTTPException so FastAPI renders it with a stable status code.
"""
from typing import List, Optional

from fastapi import HTTPException


class ValidationError(HTTPException):
    def __init__(self, message: str = "Validation failed", errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        super().__init__(status_code=400, detail={"message": message, "errors": self.errors})


class NotFoundError(HTTPException):
    def __init__(self, message: str = "Not found"):
        super().__init__(status_code=404, detail=message)


class ForbiddenError(HTTPException):
    def __init__(self, message: str = "Access denied"):
        super().__init__(status_code=403, detail=message)


class ConflictError(HTTPException):
    def __init__(self, message: str):
        super().__init__(status_code=409, detail=message)
