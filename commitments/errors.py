"""Exception types raised by the commitment accumulator and its stores."""
from __future__ import annotations


class CommitmentError(Exception):
    """Base class for accumulator, store and proof failures."""


class CapacityError(CommitmentError):
    """Raised for an invalid tree depth or when the tree has no free leaf slot."""


class UnknownLeafError(CommitmentError):
    """Raised when a proof is requested for a leaf that was never inserted."""

    def __init__(self, leaf_index: int, next_index: int) -> None:
        super().__init__(f"leaf_index {leaf_index} out of range (next_index={next_index})")
        self.leaf_index = leaf_index
        self.next_index = next_index


class StoreUnavailableError(CommitmentError):
    """Raised when a node store cannot complete a read or write."""


class MalformedProofError(CommitmentError):
    """Raised when a proof cannot be interpreted at all (bad width, bad encoding)."""
