"""
Standardized error helpers for the API.

Pipeline validation errors are answered with a flat ``{"error": message}``
body; everything else goes through HTTPException.
"""

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse


def error_body(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def error_response(
    message: str = "An error occurred",
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> HTTPException:
    return HTTPException(status_code=status_code, detail=message)


def not_found_response(message: str = "Resource not found") -> HTTPException:
    return error_response(message=message, status_code=status.HTTP_404_NOT_FOUND)


def conflict_response(message: str) -> HTTPException:
    return error_response(message=message, status_code=status.HTTP_409_CONFLICT)


def unauthorized_response(message: str = "Authentication required") -> HTTPException:
    """Create an unauthorized error response"""
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )
