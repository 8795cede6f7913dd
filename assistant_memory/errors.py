"""
Exception hierarchy for the memory subsystem.

- ValidationError: caller handed us something we refuse (foreign suggestion,
  malformed candidate). Always raised.
- StorageError: persistence failed. The store raises it after restoring the
  previous file; the manager turns it into a ``save_error:<key>`` rejection.
- EvaluationError: unexpected failure inside one evaluation. Caught at the top
  of the manager and reported as ``evaluation_error``.
"""


class MemorySubsystemError(Exception):
    """Base class for all memory subsystem errors."""


class ValidationError(MemorySubsystemError):
    """Input rejected by ownership or shape checks."""


class StorageError(MemorySubsystemError):
    """Reading or writing the persisted document failed."""


class EvaluationError(MemorySubsystemError):
    """Evaluation of an utterance failed unexpectedly."""
