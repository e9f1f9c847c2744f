"""
Lifecycle drivers for disks, instances and firewall rules.

Each driver follows the same flow: one mutation request, then polling until
the terminal condition holds. Create polls the returned operation until it is
DONE and then fetches the resource; delete polls the resource itself until it
is gone.
"""

import logging
from typing import Dict, List, Optional

from clients import ComputeRestClient
from errors import (
    CreateFailed,
    DeleteFailed,
    MetadataUpdateFailed,
    OperationFailed,
    ProvisionerError,
)
from models import OperationStatus, PollOutcome, Probe, ResourceKind, ResourceRef
from poller import OperationPoller, operation_done, resource_gone

logger = logging.getLogger(__name__)


class ResourceDriver:
    """Create/delete state machine for one resource kind."""

    kind: ResourceKind

    def __init__(
        self,
        api: ComputeRestClient,
        poller: Optional[OperationPoller] = None,
        default_attempts: int = 60,
    ):
        """
        Initialize the driver.

        Args:
            api: Compute Engine REST client
            poller: Poller used to wait for operations; a default one is created if omitted
            default_attempts: Attempt budget used when a call does not pass one
        """
        self.api = api
        self.poller = poller or OperationPoller()
        self.default_attempts = default_attempts

    def _check_ref(self, ref: ResourceRef) -> None:
        ref.validate()
        if ref.kind is not self.kind:
            raise ValueError(
                f"{type(self).__name__} cannot handle {ref.kind.value} '{ref.name}'"
            )

    def _operation_probe(self, operation: Dict):
        """Probe that refreshes a single operation document."""

        def check() -> Probe:
            op = self.api.get_operation(operation)
            if op is None:
                return Probe(
                    OperationStatus.NOT_FOUND,
                    error=f"operation {operation.get('name', '?')} no longer exists",
                )
            status = OperationStatus.from_operation(op)
            error = None
            if status is OperationStatus.DONE and op.get("error"):
                errors = op["error"].get("errors") or [{}]
                error = errors[0].get("message") or str(op["error"])
            return Probe(status, document=op, error=error)

        return check

    def _lookup_probe(self, ref: ResourceRef):
        """Probe that looks up the resource itself."""

        def check() -> Probe:
            doc = self.api.get(ref.kind, ref.project, ref.zone, ref.name)
            if doc is None:
                return Probe(OperationStatus.NOT_FOUND)
            return Probe(OperationStatus.RUNNING, document=doc)

        return check

    def _failed(self, error: Exception, start: float) -> PollOutcome:
        """Outcome for a call that failed before any probe was made."""
        return PollOutcome(
            succeeded=False,
            last_status=None,
            attempts_used=0,
            elapsed=self.poller.clock() - start,
            error=error,
        )

    def _wait_for_operation(
        self,
        ref: ResourceRef,
        operation: Dict,
        attempts: Optional[int],
        start: float,
        action: str,
    ) -> PollOutcome:
        return self.poller.poll(
            self._operation_probe(operation),
            operation_done,
            deadline_start=start,
            max_attempts=attempts or self.default_attempts,
            description=f"{action} {ref.kind.value} {ref.name}",
        )

    def create(
        self,
        ref: ResourceRef,
        body: Dict,
        attempts: Optional[int] = None,
        start: Optional[float] = None,
    ) -> Dict:
        """
        Create a resource and wait until it is ready.

        Args:
            ref: Resource to create
            body: Insert request body
            attempts: Attempt budget for polling the insert operation
            start: When the overall operation began (clock seconds)

        Returns:
            The materialised resource document

        Raises:
            CreateFailed: If the operation fails, polling gives up or the
                resource is missing afterwards
        """
        self._check_ref(ref)
        start = start if start is not None else self.poller.clock()
        logger.info(f"Creating {ref.kind.value} {ref.name} in {ref.project}/{ref.zone}")

        try:
            operation = self.api.insert(ref.kind, ref.project, ref.zone, body)
        except ProvisionerError as e:
            raise CreateFailed(ref, self._failed(e, start)) from e

        outcome = self._wait_for_operation(ref, operation, attempts, start, "create")
        if not outcome.succeeded:
            raise CreateFailed(ref, outcome) from outcome.error

        try:
            doc = self.api.get(ref.kind, ref.project, ref.zone, ref.name)
        except ProvisionerError as e:
            outcome.succeeded = False
            outcome.error = e
            raise CreateFailed(ref, outcome) from e
        if doc is None:
            outcome.succeeded = False
            outcome.error = OperationFailed(
                f"{ref.kind.value} {ref.name} not found after insert completed"
            )
            raise CreateFailed(ref, outcome) from outcome.error

        logger.info(
            f"Created {ref.kind.value} {ref.name} after {outcome.attempts_used} probe(s) "
            f"({outcome.elapsed:.1f}s)"
        )
        return doc

    def delete(
        self,
        ref: ResourceRef,
        attempts: Optional[int] = None,
        start: Optional[float] = None,
    ) -> PollOutcome:
        """
        Delete a resource and wait until lookups report it gone.

        A resource that is already gone counts as deleted. Disks attached to
        an instance cannot be deleted; that shows up here as DeleteFailed.

        Raises:
            DeleteFailed: If the resource is still present after the attempt budget
        """
        self._check_ref(ref)
        start = start if start is not None else self.poller.clock()
        logger.info(f"Deleting {ref.kind.value} {ref.name} in {ref.project}/{ref.zone}")

        try:
            operation = self.api.delete(ref.kind, ref.project, ref.zone, ref.name)
        except ProvisionerError as e:
            raise DeleteFailed(ref, self._failed(e, start)) from e
        if operation is None:
            logger.info(f"{ref.kind.value} {ref.name} already absent")
            return PollOutcome(
                succeeded=True,
                last_status=OperationStatus.NOT_FOUND,
                attempts_used=0,
                elapsed=self.poller.clock() - start,
            )

        outcome = self.poller.poll(
            self._lookup_probe(ref),
            resource_gone,
            deadline_start=start,
            max_attempts=attempts or self.default_attempts,
            description=f"delete {ref.kind.value} {ref.name}",
        )
        if not outcome.succeeded:
            raise DeleteFailed(ref, outcome) from outcome.error

        logger.info(
            f"Deleted {ref.kind.value} {ref.name} after {outcome.attempts_used} probe(s)"
        )
        return outcome


class DiskDriver(ResourceDriver):
    kind = ResourceKind.DISK


class InstanceDriver(ResourceDriver):
    kind = ResourceKind.INSTANCE

    def set_metadata(
        self,
        ref: ResourceRef,
        fingerprint: str,
        items: List[Dict],
        attempts: Optional[int] = None,
        start: Optional[float] = None,
    ) -> PollOutcome:
        """
        Replace the instance metadata and wait for the update to finish.

        Args:
            ref: Instance to update
            fingerprint: Current metadata fingerprint from the instance document
            items: Metadata key/value entries

        Raises:
            MetadataUpdateFailed: If the update does not complete
        """
        self._check_ref(ref)
        start = start if start is not None else self.poller.clock()
        try:
            operation = self.api.set_metadata(
                ref.project, ref.zone, ref.name, fingerprint, items
            )
        except ProvisionerError as e:
            raise MetadataUpdateFailed(ref, self._failed(e, start)) from e

        outcome = self._wait_for_operation(ref, operation, attempts, start, "setMetadata")
        if not outcome.succeeded:
            raise MetadataUpdateFailed(ref, outcome) from outcome.error
        return outcome


class FirewallDriver(ResourceDriver):
    kind = ResourceKind.FIREWALL
