"""Reporting of objects already managed by another Flightdeck."""

import contextlib
import logging

import kopf

from . import constants as C
from .errors import AlreadyOwnedError


class EventRecorder:
    """Posts Kubernetes events about an instance through kopf."""

    def warning(self, instance, reason: str, message: str) -> None:
        kopf.warn(instance.object, reason=reason, message=message)


def conflict_message(instance, error: AlreadyOwnedError) -> str:
    location = f" in namespace {error.namespace}" if error.namespace else ""
    return (
        f"{error.kind} {error.name}{location} already exists and is owned by "
        f"{error.owner_kind} {error.owner_name}. "
        f"Rename {instance.kind} {instance.name} or delete the conflicting object."
    )


class ConflictResolver:
    """Logs and reports ownership collisions, then lets the error propagate."""

    def __init__(self, recorder: EventRecorder):
        self.recorder = recorder

    @contextlib.contextmanager
    def guard(self, instance, log: logging.LoggerAdapter):
        try:
            yield
        except AlreadyOwnedError as e:
            log.error(f"Could not reconcile {instance.kind} {instance.name}: {e}")
            self.recorder.warning(instance, C.EVENT_NAME_CONFLICT, conflict_message(instance, e))
            raise
