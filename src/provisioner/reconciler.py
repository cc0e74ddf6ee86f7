"""Idempotent check-then-act reconciliation of external resources.

Every provisioned entity (provider registration, resource group, AD
application, federated credential, role assignment, GitHub secret, ...) is
described by a Resource carrying its identity key and desired attributes.
The Reconciler drives each one through the same sequence:

1. Fetch current state. Absence is a valid state ("not yet provisioned").
2. If it exists and matches the desired attributes, do nothing.
3. Otherwise issue exactly one mutating call. An "already exists" conflict
   counts as satisfied only when a re-fetch then finds a matching entity;
   any other conflict (locked scope, operation in progress) is a failure.
4. Any other provider failure is reported as Failed with the raw message.

Applying the same resource twice converges to the same end state. There is
no rollback: re-running the whole sequence is the recovery path.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from azure.core.exceptions import AzureError, HttpResponseError

from .errors import ProvisioningError, ResourceConflictError

logger = logging.getLogger(__name__)

HTTP_CONFLICT = 409

# ARM error codes for a 409 that means the entity is already there. Other
# 409s (ScopeLocked, AnotherOperationInProgress, ResourceGroupBeingDeleted)
# are failures.
ALREADY_EXISTS_CODES = frozenset({"RoleAssignmentExists", "ResourceAlreadyExists", "AlreadyExists"})


class Outcome(str, Enum):
    """Result of reconciling one resource."""

    ALREADY_SATISFIED = "AlreadySatisfied"
    APPLIED = "Applied"
    FAILED = "Failed"


@dataclass
class ReconcileResult:
    """Outcome of a single reconcile call."""

    kind: str
    key: str
    outcome: Outcome
    reason: str | None = None
    outputs: dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.outcome != Outcome.FAILED


class Resource:
    """Desired-state descriptor for one external entity.

    Subclasses set ``kind`` and implement fetch/matches/apply. ``fetch``
    returns None when the entity does not exist.
    """

    kind: str = "resource"

    @property
    def key(self) -> str:
        raise NotImplementedError("Subclasses must implement key")

    def fetch(self) -> Any | None:
        raise NotImplementedError("Subclasses must implement fetch")

    def matches(self, current: Any) -> bool:
        return True

    def apply(self) -> Any:
        raise NotImplementedError("Subclasses must implement apply")

    def outputs(self, state: Any) -> dict[str, str]:
        """Named values later steps may consume."""
        return {}


def _is_conflict(error: Exception) -> bool:
    """True when the provider says the entity already exists."""
    if isinstance(error, ResourceConflictError):
        return True
    if not isinstance(error, HttpResponseError) or error.status_code != HTTP_CONFLICT:
        return False
    code = getattr(error.error, "code", None)
    return code in ALREADY_EXISTS_CODES or "already exists" in (error.message or "").lower()


def _describe(error: Exception) -> str:
    if isinstance(error, HttpResponseError):
        return f"Azure API error ({error.status_code}): {error.message}"
    return str(error)


class Reconciler:
    """Applies Resources one at a time, synchronously."""

    def reconcile(self, resource: Resource) -> ReconcileResult:
        """Converge one resource to its desired state.

        Provider errors never escape; they become a Failed result. Anything
        else (programming errors) propagates.
        """
        start = time.monotonic()
        result = ReconcileResult(kind=resource.kind, key=resource.key, outcome=Outcome.FAILED)

        try:
            current = resource.fetch()
            if current is not None and resource.matches(current):
                result.outcome = Outcome.ALREADY_SATISFIED
                result.outputs = resource.outputs(current)
            else:
                try:
                    state = resource.apply()
                    result.outcome = Outcome.APPLIED
                except (ProvisioningError, AzureError) as e:
                    if not _is_conflict(e):
                        raise
                    state = resource.fetch()
                    if state is None or not resource.matches(state):
                        logger.warning(
                            f"{resource.kind} '{resource.key}' reported as existing "
                            f"but not found in the desired state",
                            extra={"kind": resource.kind, "key": resource.key},
                        )
                        raise
                    logger.info(
                        f"{resource.kind} '{resource.key}' already exists",
                        extra={"kind": resource.kind, "key": resource.key},
                    )
                    result.outcome = Outcome.ALREADY_SATISFIED
                if state is not None:
                    result.outputs = resource.outputs(state)

        except (ProvisioningError, AzureError) as e:
            result.outcome = Outcome.FAILED
            result.reason = _describe(e)
            logger.error(
                f"Failed to reconcile {resource.kind} '{resource.key}': {result.reason}",
                extra={"kind": resource.kind, "key": resource.key},
            )

        result.duration_seconds = time.monotonic() - start
        if result.success:
            logger.info(
                f"{resource.kind} '{resource.key}': {result.outcome.value}",
                extra={"kind": resource.kind, "key": resource.key, "outcome": result.outcome.value},
            )
        return result
