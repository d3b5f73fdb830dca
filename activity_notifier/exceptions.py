"""
Error taxonomy for the notification pipeline.

Validation and not-found errors are terminal for the request and surface as
4xx responses. Dependency errors abort the request with a 500. Partial
dispatch failures and alert bookkeeping failures are never raised.
"""


class NotifierError(Exception):
    """Base error for the activity notifier"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(NotifierError):
    """The request or the activity lacks a field required to notify"""

    status_code = 400


class MissingActivityIdError(ValidationError):
    def __init__(self, field: str = "activity_id"):
        super().__init__(f"{field} is required")


class MissingLocationError(ValidationError):
    def __init__(self, activity_id):
        super().__init__(f"Activity {activity_id} has neither region_id nor comuna_id")
        self.activity_id = activity_id


class MissingSportError(ValidationError):
    def __init__(self, activity_id):
        super().__init__(f"Activity {activity_id} has no sport_id")
        self.activity_id = activity_id


class ActivityNotFoundError(NotifierError):
    status_code = 404

    def __init__(self, activity_id):
        super().__init__(f"Activity {activity_id} not found")
        self.activity_id = activity_id


class DependencyError(NotifierError):
    """An upstream collaborator (store, identity provider) failed"""

    status_code = 500


class StoreError(DependencyError):
    pass


class TokenAcquisitionError(DependencyError):
    """
    The service account could not be exchanged for an access token.

    `provider_error` holds the identity provider's raw response text (or the
    local signing error) so it can be logged verbatim.
    """

    def __init__(self, message: str, provider_error: str = ""):
        super().__init__(message)
        self.provider_error = provider_error

    def __str__(self) -> str:
        if self.provider_error:
            return f"{self.message}: {self.provider_error}"
        return self.message
