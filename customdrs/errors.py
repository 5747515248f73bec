class DRSError(Exception):
    """Base class for all CustomDRS errors."""


class CollaboratorUnavailable(DRSError):
    """
    The control-plane client could not be reached while enumerating hosts.
    Fatal for the whole pass: no partial snapshot is ever used.
    """


class DataUnavailable(DRSError):
    """
    A host or workload is missing telemetry (capacity or demand).
    The entity is excluded from the snapshot and the pass continues.
    """

    def __init__(self, entity_id, reason):
        super().__init__(f"{entity_id}: {reason}")
        self.entity_id = entity_id
        self.reason = reason


class ExecutionFailure(DRSError):
    """A relocate, power or maintenance call against the control plane failed."""

    def __init__(self, item_id, message):
        super().__init__(f"{item_id}: {message}")
        self.item_id = item_id
        self.message = message


class RuleValidationError(DRSError):
    """An affinity rule record read from the rule store is malformed."""
