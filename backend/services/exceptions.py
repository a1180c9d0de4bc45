"""Service-layer exceptions for webhook handling and item lifecycle."""

from datetime import datetime


class SignatureInvalidError(Exception):
    """Inbound webhook failed the authenticity check."""

    pass


class PersistenceError(Exception):
    """A repository write failed; the transaction has been rolled back."""

    pass


class RateLimitedError(Exception):
    """Item deletion requested inside the cooldown window."""

    def __init__(self, days_until_next: int, last_deletion_date: datetime | None = None):
        self.days_until_next = days_until_next
        self.last_deletion_date = last_deletion_date
        super().__init__(
            "Deletion rate limit exceeded. You can delete another item in "
            f"{days_until_next} days."
        )


class ItemNotFoundError(Exception):
    """Item does not exist or does not belong to the user."""

    pass


class ItemAlreadyDeletedError(Exception):
    """Item has already been soft deleted."""

    pass
