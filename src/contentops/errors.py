"""
Domain exceptions.

Routes translate these into HTTP errors; workers translate them into item
state. ``ClaimConflict`` and ``PublishConflict`` are resolved internally and
never reach a caller.
"""


class ContentOpsError(Exception):
    """Base class for all domain errors."""


class InvalidRequest(ContentOpsError):
    pass


class NotFound(ContentOpsError):
    pass


class StateConflict(ContentOpsError):
    """The resource has moved past the state the operation needs."""


class InsufficientCredits(ContentOpsError):
    def __init__(self, tenant_id: str, required: int, available: int):
        self.tenant_id = tenant_id
        self.required = required
        self.available = available
        super().__init__(
            f"You need {required} credits but only have {available} remaining."
        )


class ClaimConflict(ContentOpsError):
    """Another worker flipped the candidate item first."""

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Item {item_id} was claimed by another worker")


class GenerationFailure(ContentOpsError):
    """The external generation provider rejected or failed a request."""


class NotReady(ContentOpsError):
    def __init__(self, item_id: int, status: str):
        self.item_id = item_id
        self.status = status
        super().__init__(f"Item {item_id} is {status}, only DONE items can be published")


class PublishConflict(ContentOpsError):
    """A PublishRecord already exists for the item."""


class PublishFailed(ContentOpsError):
    pass


class StaleClaim(ContentOpsError):
    def __init__(self, item_ids: list[int]):
        self.item_ids = item_ids
        super().__init__(f"{len(item_ids)} claimed item(s) exceeded the staleness threshold")


class ReconciliationRefused(ContentOpsError):
    pass
