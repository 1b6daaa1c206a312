"""Generic fetch-or-create, merge, own and apply primitive.

Every write the operator makes to child objects goes through
``ResourceApplier``. The caller supplies a pure merge function that takes
the live object (``None`` when it does not exist yet) and returns the
desired object.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from . import merge as M
from .errors import AlreadyOwnedError, ImmutableFieldConflict
from .kube import kind_of

logger = logging.getLogger(__name__)

MergeFn = Callable[[Optional[Dict[str, Any]]], Dict[str, Any]]


class Operation(enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    IMMUTABLE_CONFLICT = "immutable-conflict"


@dataclass
class ApplyResult:
    operation: Operation
    object: Optional[Dict[str, Any]] = None


def keep_live(stub: Dict[str, Any]) -> MergeFn:
    """Merge function that leaves the object as it is apart from ownership."""
    return lambda live: M.start_from(live, stub)


class ResourceApplier:
    """Applies desired state for any resource kind."""

    def __init__(self, client):
        self.client = client

    def apply(
        self,
        stub: Dict[str, Any],
        merge: MergeFn,
        owner=None,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> ApplyResult:
        """Fetch or create the object, merge desired state and write it if it changed.

        Args:
            stub: Object carrying kind and identity only
            merge: Pure function from the live object (or None) to the desired object
            owner: Instance to link the object to, if any
            log: Logger for the current reconcile
        """
        log = log or logger
        kind = kind_of(stub)
        name = stub["metadata"]["name"]
        namespace = stub["metadata"].get("namespace")

        live = self.client.get(kind, name, namespace)
        if live is not None and owner is not None:
            self._check_ownership(live, owner)

        try:
            desired = merge(live)
        except ImmutableFieldConflict as e:
            log.info(f"{kind.value} {_describe(name, namespace)} has a modified {e.field}")
            return ApplyResult(Operation.IMMUTABLE_CONFLICT, live)

        if owner is not None:
            self._link(desired, owner)

        if live is None:
            created = self.client.create(desired)
            log.info(f"{kind.value} {_describe(name, namespace)} created")
            return ApplyResult(Operation.CREATED, created)
        if desired == live:
            log.debug(f"{kind.value} {_describe(name, namespace)} unchanged")
            return ApplyResult(Operation.UNCHANGED, live)

        # Optimistic concurrency, the write fails if the object changed since we read it
        desired["metadata"]["resourceVersion"] = live["metadata"].get("resourceVersion")
        updated = self.client.replace(desired)
        log.info(f"{kind.value} {_describe(name, namespace)} updated")
        return ApplyResult(Operation.UPDATED, updated)

    def delete(self, stub: Dict[str, Any], owner=None, log: Optional[logging.LoggerAdapter] = None) -> bool:
        """Delete an object. Objects that are already gone count as deleted.

        When an owner is given, objects managed by a different instance are
        left alone and False is returned.
        """
        log = log or logger
        kind = kind_of(stub)
        name = stub["metadata"]["name"]
        namespace = stub["metadata"].get("namespace")

        if owner is not None:
            live = self.client.get(kind, name, namespace)
            if live is None:
                log.info(f"No {kind.value} {_describe(name, namespace)} to delete")
                return True
            if self._managed_by_other(live, owner):
                log.warning(
                    f"Not deleting {kind.value} {_describe(name, namespace)}, "
                    f"it is managed by another instance"
                )
                return False

        if self.client.delete(kind, name, namespace):
            log.info(f"{kind.value} {_describe(name, namespace)} deleted")
        else:
            log.info(f"No {kind.value} {_describe(name, namespace)} to delete")
        return True

    def _link(self, obj: Dict[str, Any], owner) -> None:
        """Attach owner linkage: a controller reference where possible, labels otherwise."""
        namespace = obj["metadata"].get("namespace")
        if namespace is not None and namespace == owner.install_namespace:
            M.set_controller_reference(obj, owner)
        else:
            M.merge_labels_and_annotations(obj["metadata"], M.tracking_labels(owner))

    def _check_ownership(self, live: Dict[str, Any], owner) -> None:
        if not self._managed_by_other(live, owner):
            return
        metadata = live["metadata"]
        ref = M.controller_of(live)
        if ref is not None:
            owner_kind, owner_name = ref.get("kind", ""), ref.get("name", "")
        else:
            owner_kind, owner_name, owner_namespace = M.tracked_by(live)
            owner_name = f"{owner_namespace}/{owner_name}" if owner_namespace else owner_name
        raise AlreadyOwnedError(
            live.get("kind", ""),
            metadata["name"],
            metadata.get("namespace"),
            owner_kind,
            owner_name,
        )

    def _managed_by_other(self, live: Dict[str, Any], owner) -> bool:
        ref = M.controller_of(live)
        if ref is not None:
            return ref.get("uid") != owner.uid
        tracked = M.tracked_by(live)
        if tracked is not None:
            return tracked != (owner.kind, owner.name, owner.install_namespace)
        return False


def _describe(name: str, namespace: Optional[str]) -> str:
    return f"{namespace}/{name}" if namespace else name
