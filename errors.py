"""
Error taxonomy. Every domain failure is an AppError carrying the HTTP status
and the machine-readable code the API returns alongside the message.
"""
from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code}


class InternalError(AppError):
    pass


class StoreError(InternalError):
    code = "STORE_ERROR"


# 400
class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Input validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None, code: Optional[str] = None):
        super().__init__(message, code)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.errors:
            body["errors"] = self.errors
        return body


class ProductInactive(ValidationError):
    code = "PRODUCT_INACTIVE"
    message = "Product is not available"


class InsufficientStock(ValidationError):
    code = "INSUFFICIENT_STOCK"
    message = "Insufficient stock"


class InvalidTransition(ValidationError):
    code = "INVALID_TRANSITION"
    message = "Invalid status transition"


class NoChanges(ValidationError):
    code = "NO_CHANGES"
    message = "No valid changes provided"


# 401
class AuthenticationError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Authentication required"


class NoToken(AuthenticationError):
    code = "NO_TOKEN"
    message = "Access denied. No valid token provided."


class MalformedToken(AuthenticationError):
    code = "INVALID_TOKEN_FORMAT"
    message = "Invalid token format"


class InvalidSignature(AuthenticationError):
    code = "INVALID_TOKEN"
    message = "Invalid token"


class TokenExpired(AuthenticationError):
    code = "TOKEN_EXPIRED"
    message = "Token expired"


class InvalidPayload(AuthenticationError):
    code = "INVALID_PAYLOAD"
    message = "Invalid token payload"


class InvalidCredentials(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"


# 403
class AuthorizationError(AppError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Access denied"


# 404
class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class ProductNotFound(NotFoundError):
    code = "PRODUCT_NOT_FOUND"
    message = "Product not found"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"
    message = "Order not found"


# 409
class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"
    message = "Resource already exists"


class UserExists(ConflictError):
    code = "USER_EXISTS"
    message = "User already exists with this email or username"


class ProductExists(ConflictError):
    code = "PRODUCT_EXISTS"
    message = "Product with this name already exists"


# 429
class RateLimitError(AppError):
    status_code = 429
    code = "RATE_LIMITED"
    message = "Too many requests, please try again later."

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["retryAfter"] = self.retry_after
        return body
