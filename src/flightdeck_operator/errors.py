"""Exceptions raised by the reconciliation engine."""


class FlightdeckError(Exception):
    """Base class for operator errors."""


class AlreadyOwnedError(FlightdeckError):
    """An object this instance needs is managed by a different instance."""

    def __init__(self, kind, name, namespace, owner_kind, owner_name):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.owner_kind = owner_kind
        self.owner_name = owner_name
        location = f" in namespace {namespace}" if namespace else ""
        super().__init__(
            f"{kind} {name}{location} is already owned by {owner_kind} {owner_name}"
        )


class ImmutableFieldConflict(FlightdeckError):
    """Raised by a merge function when an immutable field would change."""

    def __init__(self, field):
        self.field = field
        super().__init__(f"immutable field {field} has been modified")


class CertManagerUnavailableError(FlightdeckError):
    """TLS is requested but cert-manager is not installed in the cluster."""


class RecreateIncompleteError(FlightdeckError):
    """An object deleted to change an immutable field is still present."""

    def __init__(self, kind, name, namespace, field):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.field = field
        location = f" in namespace {namespace}" if namespace else ""
        super().__init__(
            f"{kind} {name}{location} still has a modified {field} after being deleted, "
            f"it may be held by a finalizer"
        )


class InvalidSpecError(FlightdeckError):
    """A custom resource is missing a field it cannot be reconciled without."""
