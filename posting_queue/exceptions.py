"""
Posting Queue Errors

Typed failures raised by the services and stores. Delivery problems
(disconnected integration, unknown poster, remote rejection) are not
exceptions: they travel as PostResult values.
"""


class PostingQueueError(Exception):
    """Base class for posting queue errors."""
    pass


class QueueItemNotFound(PostingQueueError):
    """Raised when a queue item id does not exist."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Queue item not found: {item_id}")


class ConnectionNotFound(PostingQueueError):
    """Raised when an integration connection id does not exist."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Integration connection not found: {connection_id}")


class ItemNotClaimable(PostingQueueError):
    """
    Raised when a claim finds the row in a non-claimable state.

    This is what the losing side of a concurrent claim observes, and what
    a claim on a terminal or not-yet-due row observes.
    """

    def __init__(self, item_id: str, status: str):
        self.item_id = item_id
        self.status = status
        super().__init__(f"Queue item {item_id} is not claimable (status={status})")


class InvalidStateTransition(PostingQueueError):
    """Raised when an action is not allowed from the item's current status."""

    def __init__(self, item_id: str, status: str, action: str):
        self.item_id = item_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} queue item {item_id} in status {status}")
