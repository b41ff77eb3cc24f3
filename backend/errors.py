"""
Application error taxonomy.

Every error carries an HTTP status, a stable machine-readable code and a
human-readable message. The handlers registered in main.py serialize them to

    {"error": "<message>", "code": "<CODE>", ...extra}
"""

from typing import Any


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error"

    def __init__(self, message: str | None = None, code: str | None = None, **extra: Any):
        self.message = message or self.message
        if code:
            self.code = code
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body


# ==================== AUTHENTICATION (401) ====================

class AuthenticationError(AppError):
    status_code = 401
    code = "INVALID_TOKEN"
    message = "Authentication failed"


class InvalidCredentials(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid username or password"


# ==================== AUTHORIZATION (403) ====================

class AuthorizationError(AppError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Access denied"


class CrossTenantForbidden(AuthorizationError):
    code = "CROSS_TENANT_FORBIDDEN"
    message = "You do not have access to this cafe"


class SubscriptionInactive(AuthorizationError):
    code = "SUBSCRIPTION_INACTIVE"
    message = "Cafe subscription is not active"


class FeatureAccessDenied(AuthorizationError):
    code = "FEATURE_ACCESS_DENIED"
    message = "This feature is not available on your current plan"


class RoleForbidden(AuthorizationError):
    code = "ROLE_FORBIDDEN"
    message = "Your role does not permit this action"


class OnboardingRequired(AuthorizationError):
    code = "ONBOARDING_REQUIRED"
    message = "Cafe onboarding must be completed first"


# ==================== VALIDATION (400) ====================

class ValidationFailed(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request"


class InvalidRole(ValidationFailed):
    code = "INVALID_ROLE"
    message = "Invalid role"


class MissingTenant(ValidationFailed):
    code = "MISSING_TENANT"
    message = "A cafe is required for this user"


class InvalidSlug(ValidationFailed):
    code = "INVALID_SLUG"
    message = "Slug must be 1-64 characters of a-z, 0-9 or '-'"


class UnknownFeature(ValidationFailed):
    code = "UNKNOWN_FEATURE"
    message = "Unknown feature"


class InvalidPlan(ValidationFailed):
    code = "INVALID_PLAN"
    message = "Plan must be one of FREE, PRO"


class InvalidStatus(ValidationFailed):
    code = "INVALID_STATUS"
    message = "Status must be one of active, inactive, expired"


class CafeIdRequired(ValidationFailed):
    code = "CAFE_ID_REQUIRED"
    message = "A cafe is required for this request"


class InsufficientPoints(ValidationFailed):
    code = "INSUFFICIENT_POINTS"
    message = "Insufficient loyalty points"


# ==================== NOT FOUND (404) ====================

class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"


class TenantNotFound(NotFound):
    code = "TENANT_NOT_FOUND"
    message = "Cafe not found"


class CafeNotFound(NotFound):
    code = "CAFE_NOT_FOUND"
    message = "Cafe not found"


class UserNotFound(NotFound):
    code = "USER_NOT_FOUND"
    message = "User not found"


# ==================== CONFLICT (409) ====================

class Conflict(AppError):
    status_code = 409
    code = "CONFLICT"
    message = "Resource already exists"


class DuplicateIdentity(Conflict):
    code = "DUPLICATE_IDENTITY"
    message = "A user with this email or username already exists"


class DuplicateSlug(Conflict):
    code = "DUPLICATE_SLUG"
    message = "A cafe with this slug already exists"


# Kept for clients built against the module-gating API
MODULE_ACCESS_DENIED = "MODULE_ACCESS_DENIED"
