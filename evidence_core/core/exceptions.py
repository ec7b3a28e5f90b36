"""
Error taxonomy for the evidence and governance engine.

Propagation policy:
- Storage and contention errors (WriteConflict, EvidenceStorageError,
  ComplianceError) are raised only after a bounded local retry.
- State-machine and reference-integrity errors (InvalidStateTransition,
  InvalidReference, AlreadySealed) are never retried; they indicate a caller
  or data bug.
- LineageCycleDetected is a warning: lineage traversal reports it and keeps
  returning the acyclic prefix.
"""

import uuid


class EngineError(Exception):
    """Base exception for engine errors."""

    pass


class NotFound(EngineError):
    """Raised when a named entity does not exist."""

    def __init__(self, kind: str, ident: object):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} {ident} not found")


class InvalidReference(EngineError):
    """Raised when a write names a nonexistent related entity."""

    pass


class WriteConflict(EngineError):
    """Raised when a revision race could not be won within the retry ceiling."""

    def __init__(self, message: str, attempts: int):
        self.attempts = attempts
        super().__init__(message)


class InvalidStateTransition(EngineError):
    """Raised when an operation violates the approval or contradiction state machine."""

    pass


class AlreadySealed(EngineError):
    """Raised when an ingestion run is completed (or written to) after it was sealed."""

    def __init__(self, run_id: uuid.UUID):
        self.run_id = run_id
        super().__init__(f"Ingestion run {run_id} is already sealed")


class EvidenceStorageError(EngineError):
    """Raised when a raw object could not be written to blob storage."""

    pass


class ComplianceError(EngineError):
    """Raised when the compliance screening collaborator cannot be reached."""

    pass


class ImmutableRecordError(EngineError):
    """Raised when an append-only record is updated or deleted through the ORM."""

    pass


class LineageCycleDetected(UserWarning):
    """Issued when lineage traversal re-enters an entry already on the current path."""

    def __init__(self, entry_id: uuid.UUID, ref: str):
        self.entry_id = entry_id
        self.ref = ref
        super().__init__(f"Lineage cycle detected at ledger entry {entry_id} (reached via {ref})")
