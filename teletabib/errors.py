"""API errors rendered as {"success": false, "error": ...} by the app's exception handler."""


class ApiError(Exception):
    status_code = 400
    error = "Request failed"

    def __init__(self, error: str | None = None, message: str | None = None):
        self.error = error or self.error
        self.message = message
        super().__init__(self.error)

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.error}
        if self.message:
            body["message"] = self.message
        return body


class InvalidCredentialsError(ApiError):
    status_code = 401
    error = "Invalid email or password"


class InfrastructureError(ApiError):
    """Store or database unreachable. Details are logged, never returned."""

    status_code = 500
    error = "Internal server error"
