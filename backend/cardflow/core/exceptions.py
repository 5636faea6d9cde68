"""
Domain errors raised by the enrichment pipeline.

Errors carry a ``retryable`` flag that the step executor consults: input
errors fail their stage immediately, everything else goes through the
step's retry policy.
"""


class CardflowError(Exception):
    """Base class for pipeline errors."""

    retryable: bool = True


class CardNotFoundError(CardflowError):
    """The card disappeared (or never existed)."""

    retryable = False

    def __init__(self, card_id: str):
        self.card_id = card_id
        super().__init__(f"Card {card_id} not found")


class WrongCardTypeError(CardflowError):
    """A step was asked to process a card of a type it does not handle."""

    retryable = False

    def __init__(self, card_id: str, card_type: str, expected: str):
        self.card_id = card_id
        self.card_type = card_type
        self.expected = expected
        super().__init__(f"Card {card_id} has type '{card_type}', expected '{expected}'")


class PermissionDeniedError(CardflowError):
    """Caller neither owns nor administers the card."""

    retryable = False
