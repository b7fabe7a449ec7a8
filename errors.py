"""Application error taxonomy.

Every error carries the user-visible message and the HTTP status it maps to.
Form routes re-render the originating page with ``message``; API routes turn
it into a JSON ``{"error": message}`` body.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Please fill in all fields"


class DuplicateAccountError(AppError):
    status_code = 409
    default_message = "This email is already registered and verified. Please log in."


class NotFound(AppError):
    status_code = 404
    default_message = "Not found."


class Expired(AppError):
    status_code = 410
    default_message = "Your OTP has expired. Please request a new one."


class Mismatch(AppError):
    status_code = 400
    default_message = "The OTP you entered is incorrect."


class InvalidCredentials(AppError):
    status_code = 401
    default_message = "Invalid credentials"


class NotVerified(AppError):
    status_code = 403
    default_message = "Please verify your email before logging in."


class AlreadyVerified(AppError):
    status_code = 400
    default_message = "Account is already verified."


class InvalidOrExpiredToken(AppError):
    status_code = 400
    default_message = "Password reset token is invalid or has expired."


class Unauthorized(AppError):
    status_code = 401
    default_message = "Not authenticated."


class UpstreamError(AppError):
    status_code = 502
    default_message = "Failed to get response from AI."


class InternalError(AppError):
    status_code = 500
