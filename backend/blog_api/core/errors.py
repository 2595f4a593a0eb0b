class ServiceError(Exception):
    """Base for failures a service reports back to the caller."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    # Referenced entities that do not exist are reported as bad requests.
    status_code = 400


class InvalidTransitionError(ServiceError):
    status_code = 400


class UnauthorizedError(ServiceError):
    status_code = 401


class InternalError(ServiceError):
    status_code = 500
