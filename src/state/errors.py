from __future__ import annotations


class VisitEngineError(Exception):
    pass


class InvalidInputError(VisitEngineError):
    """Malformed request or argument; a caller bug, never retried."""


class NotFoundError(VisitEngineError):
    pass


class AlreadyLiftedError(VisitEngineError):
    pass


class ConflictError(VisitEngineError):
    pass


class StorageError(VisitEngineError):
    """Ledger I/O failure. The whole evaluate call may be retried."""


class EvaluationTimeoutError(VisitEngineError, TimeoutError):
    pass
