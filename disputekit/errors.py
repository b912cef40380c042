"""Error taxonomy shared by services and routes.

Every error carries the HTTP status it maps to and a message that is safe to
show to the caller. Upstream details belong in the logs, not in ``message``.
"""


class DisputeKitError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(DisputeKitError):
    status_code = 401
    default_message = "Unauthorized"


class ValidationFailed(DisputeKitError):
    status_code = 400
    default_message = "Invalid request"


class NotConnected(DisputeKitError):
    status_code = 400
    default_message = "No Stripe account connected"


class NotFound(DisputeKitError):
    status_code = 404
    default_message = "Not found"


class UpstreamFailure(DisputeKitError):
    status_code = 500
    default_message = "Upstream service failed"


class ConfigurationError(DisputeKitError):
    status_code = 500
    default_message = "Server is not configured"
