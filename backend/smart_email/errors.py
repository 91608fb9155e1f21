"""Error taxonomy shared by the service, the tools and the API layer."""


class SmartEmailError(Exception):
    """Base class for every error the engine raises on purpose."""

    code = "internal_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(SmartEmailError):
    code = "not_found"
    status_code = 404


class UnauthorizedError(SmartEmailError):
    code = "unauthorized"
    status_code = 403


class BadRequestError(SmartEmailError):
    code = "bad_request"
    status_code = 400


class ValidationError(SmartEmailError):
    """Model output or tool arguments that do not match the expected schema."""

    code = "validation_error"
    status_code = 422
    retryable = True


class UpstreamTimeoutError(SmartEmailError):
    code = "upstream_timeout"
    status_code = 504
    retryable = True


class UpstreamError(SmartEmailError):
    code = "upstream_error"
    status_code = 503
    retryable = True


class InternalError(SmartEmailError):
    code = "internal_error"
    status_code = 500
