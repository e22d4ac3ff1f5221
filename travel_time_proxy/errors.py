# Error taxonomy. Each class carries the HTTP status it is reported with.


class ServiceError(Exception):
    status = 500
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status = 400
    code = "validation_error"


class RateLimitExceeded(ServiceError):
    status = 429
    code = "rate_limited"

    def __init__(self, message: str = "Rate limit exceeded. Please wait before making more requests."):
        super().__init__(message)


class ConfigurationError(ServiceError):
    status = 503
    code = "configuration_error"


class StorageError(ServiceError):
    code = "storage_error"


class InternalError(ServiceError):
    code = "internal_error"


class UpstreamError(ServiceError):
    code = "upstream_error"

    def __init__(self, message: str, upstream_status: int = 0):
        super().__init__(message)
        self.upstream_status = upstream_status


class UpstreamTimeoutError(UpstreamError):
    code = "upstream_timeout"


class UpstreamUnavailableError(UpstreamError):
    code = "upstream_unavailable"


class UpstreamAuthError(UpstreamError):
    code = "upstream_auth"


class UpstreamRateLimitError(UpstreamError):
    code = "upstream_rate_limited"


class UpstreamBadRequestError(UpstreamError):
    code = "upstream_bad_request"


class InvalidUpstreamResponseError(UpstreamError):
    code = "invalid_upstream_response"


RateLimitedError = UpstreamRateLimitError
BadRequestError = UpstreamBadRequestError
AuthError = UpstreamAuthError
InvalidResponseError = InvalidUpstreamResponseError
