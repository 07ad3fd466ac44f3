"""
Error taxonomy shared by the incident core.

Every failure raised by the lifecycle, query and analytics layers is one of
these; the HTTP boundary turns them into error envelopes using `status_code`.
"""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Malformed or missing input the caller can fix."""
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    """Authenticated, but not allowed to touch the target incident."""
    status_code = 403


class ConflictError(ServiceError):
    """Valid request, but the incident is not in a state that allows it."""
    status_code = 409


class InfrastructureError(ServiceError):
    """Store, notification or attachment backend failure."""
    status_code = 500
