"""Error taxonomy shared by every control panel operation.

Services raise these; route handlers translate them into the
``{"success": false, "error": ...}`` envelope at the operation boundary.
"""

from __future__ import annotations


class ControlPanelError(Exception):
    code = "unexpected"
    status_code = 500
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class UnauthenticatedError(ControlPanelError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Not authenticated."


class ForbiddenError(ControlPanelError):
    code = "forbidden"
    status_code = 403
    default_message = "You do not have access to this resource."


class NotFoundError(ControlPanelError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class AlreadyUsedError(ControlPanelError):
    code = "already_used"
    status_code = 400
    default_message = "This link has already been used."


class RevokedError(ControlPanelError):
    code = "revoked"
    status_code = 400
    default_message = "This invitation has been revoked."


class ExpiredError(ControlPanelError):
    code = "expired"
    status_code = 400
    default_message = "This link has expired."


class EmailMismatchError(ControlPanelError):
    code = "email_mismatch"
    status_code = 400
    default_message = "Email mismatch - please sign in with the invited email."


class EmailTakenError(ControlPanelError):
    code = "email_taken"
    status_code = 400
    default_message = "An account with this email already exists. Please sign in instead."


class SlugTakenError(ControlPanelError):
    code = "slug_taken"
    status_code = 400
    default_message = "An organization with this slug already exists."


class ValidationFailedError(ControlPanelError):
    code = "validation_failed"
    status_code = 400
    default_message = "Invalid input."


class CannotImpersonateAdminError(ControlPanelError):
    code = "cannot_impersonate_admin"
    status_code = 400
    default_message = "Cannot impersonate super admins."


class InvalidTokenError(ControlPanelError):
    code = "invalid_token"
    status_code = 400
    default_message = "Invalid token."


class ConflictError(ControlPanelError):
    code = "conflict"
    status_code = 400
    default_message = "The request conflicts with existing data."
