"""Generic reconcile-against-remote-state engine.

The Reconciler drives create/read/update/delete/import for one resource kind
through that kind's adapter and a remote client. It holds no per-instance
mutable state and takes no locks: callers serialize operations on the same
instance, while distinct instances may reconcile in parallel.

The State Store is written only once a remote call sequence has completed,
so a timeout or cancellation never leaves a partial record behind.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from config import ReconcilerConfig
from models import (
    AlreadyExistsError,
    FieldChange,
    ImportRequest,
    NaturalKey,
    NotFoundError,
    Phase,
    ReconcileError,
    RemoteShape,
    ResourceNotFoundError,
    ResourceSpec,
    ResourceState,
    StateKey,
    ValidationError,
)
from poller import OperationPoller
from remote import RemoteClient
from resources.base import ResourceAdapter
from state_store import MemoryStateStore, StateStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Reconciles declared ResourceSpecs of one kind with a remote control plane."""

    def __init__(
        self,
        adapter: ResourceAdapter,
        client: RemoteClient,
        store: StateStore | None = None,
        config: ReconcilerConfig | None = None,
        poller: OperationPoller | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.adapter = adapter
        self.client = client
        self.store = store if store is not None else MemoryStateStore()
        self.config = config or ReconcilerConfig()
        self.poller = poller or OperationPoller(
            client, interval=self.config.poll_interval, clock=clock
        )
        self._clock = clock

    @property
    def kind(self) -> str:
        return self.adapter.kind

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def create_or_update(
        self,
        spec: ResourceSpec,
        existing: ResourceState | None = None,
        cancel: threading.Event | None = None,
    ) -> ResourceState:
        """Make the remote object match spec.

        Every submission is an upsert keyed by the remote identity derived
        from the natural key, so retrying after a lost response is safe.

        Raises:
            ValidationError: spec is invalid, or needs a replacement that
                configuration forbids.
            AlreadyExistsError: The object exists, existing is None and
                require_import is set.
        """
        with self._context(existing.natural_key if existing else self._key_hint(spec)):
            desired = self.adapter.schema.normalize(spec)
            request = self.adapter.expand(desired)

        key = self.adapter.natural_key(desired)
        with self._context(key):
            if existing is not None:
                current = self._fetch(existing.remote_id)
                prior = existing.attributes
                if current is None:
                    logger.warning(
                        "%s %s (%s) disappeared remotely, recreating",
                        self.kind,
                        key,
                        existing.remote_id,
                    )
            else:
                current = self._fetch(self.adapter.remote_id(key))
                prior = desired
                if current is not None and self.config.require_import:
                    raise AlreadyExistsError(self.adapter.remote_id_of(current))

            if current is None:
                state = self._submit(key, desired, request, Phase.CREATING, cancel)
            else:
                state = self._update(key, desired, request, current, prior, cancel)

            if existing is not None and existing.key != state.key:
                self.store.delete(existing.key)
            return state

    def read(self, state: ResourceState) -> ResourceState | None:
        """Refresh state from the remote object.

        Returns None when the object no longer exists; its State Store entry
        is removed. Fetch failures raise instead.
        """
        with self._context(state.natural_key):
            current = self._fetch(state.remote_id)
            if current is None:
                logger.info(
                    "%s %s (%s) was not found - removing from state",
                    self.kind,
                    state.natural_key,
                    state.remote_id,
                )
                self.store.delete(state.key)
                return None

            refreshed = self._state(
                state.natural_key, current, self._observe(current, state.attributes)
            )
            if refreshed.key != state.key:
                self.store.delete(state.key)
            self.store.put(refreshed.key, refreshed)
            return refreshed

    def delete(
        self, state: ResourceState, cancel: threading.Event | None = None
    ) -> None:
        """Delete the remote object; an already-missing object is success."""
        with self._context(state.natural_key):
            self._delete_remote(state.natural_key, state.remote_id, cancel)
            self.store.delete(state.key)

    def import_resource(self, request: ImportRequest) -> ResourceState:
        """Adopt an existing remote object without mutating it.

        Raises:
            ValidationError: The identity is malformed for this kind.
            NotFoundError: Nothing exists under the identity.
        """
        with self._context(NaturalKey(name=request.identity)):
            if request.kind != self.kind:
                raise ValidationError(
                    f"cannot import a {request.kind} resource as {self.kind}"
                )
            remote_id = self.adapter.parse_import_id(request.identity)
            current = self._fetch(remote_id)
            if current is None:
                raise NotFoundError(
                    f"cannot import non-existent remote object {remote_id!r}"
                )

        observed = self.adapter.flatten(current)
        key = self.adapter.natural_key(observed)
        state = self._state(key, current, observed)
        self.store.put(state.key, state)
        logger.info("Imported %s %s (%s)", self.kind, key, state.remote_id)
        return state

    def plan(self, spec: ResourceSpec, state: ResourceState) -> list[FieldChange]:
        """Return the changes create_or_update would apply to state."""
        with self._context(state.natural_key):
            desired = self.adapter.schema.normalize(spec)
        return self.adapter.schema.diff(state.attributes, desired)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _update(
        self,
        key: NaturalKey,
        desired: ResourceSpec,
        request: RemoteShape,
        current: RemoteShape,
        prior: ResourceSpec,
        cancel: threading.Event | None,
    ) -> ResourceState:
        observed = self._observe(current, prior)
        changes = self.adapter.schema.diff(observed, desired)

        if not changes:
            logger.info("%s %s is up to date", self.kind, key)
            state = self._state(key, current, observed)
            self.store.put(state.key, state)
            return state

        for change in changes:
            logger.info(
                "%s %s: %s %r -> %r%s",
                self.kind,
                key,
                change.path,
                change.old,
                change.new,
                " (forces replacement)" if change.force_new else "",
            )

        replacing = [c for c in changes if c.force_new]
        if not replacing:
            return self._submit(key, desired, request, Phase.UPDATING, cancel)

        if not self.config.allow_replace:
            raise ValidationError(
                [
                    f"{c.path}: cannot change from {c.old!r} to {c.new!r} "
                    "without replacing the resource"
                    for c in replacing
                ]
            )

        old_remote_id = self.adapter.remote_id_of(current)
        self._delete_remote(key, old_remote_id, cancel)
        self.store.delete(StateKey(self.kind, old_remote_id))
        return self._submit(key, desired, request, Phase.CREATING, cancel)

    def _submit(
        self,
        key: NaturalKey,
        desired: ResourceSpec,
        request: RemoteShape,
        phase: Phase,
        cancel: threading.Event | None,
    ) -> ResourceState:
        remote_id = self.adapter.remote_id(key)
        logger.info("%s %s: %s", self.kind, key, phase.value)

        deadline = self._clock() + self.config.operation_timeout
        submission = self.client.create(remote_id, request)
        if submission.operation is not None:
            self.poller.await_completion(submission.operation, deadline, cancel)

        # Read back rather than trusting the submission result, to pick up
        # every computed field
        current = self._fetch(remote_id)
        if current is None:
            raise NotFoundError(
                f"{remote_id!r} was not found after {phase.value.lower()}"
            )

        state = self._state(key, current, self._observe(current, desired))
        self.store.put(state.key, state)
        logger.info(
            "%s %s: %s (%s)", self.kind, key, Phase.PRESENT.value, state.remote_id
        )
        return state

    def _delete_remote(
        self, key: NaturalKey, remote_id: str, cancel: threading.Event | None
    ) -> None:
        logger.info("%s %s: %s (%s)", self.kind, key, Phase.DELETING.value, remote_id)
        deadline = self._clock() + self.config.operation_timeout
        try:
            submission = self.client.delete(remote_id)
        except ResourceNotFoundError:
            logger.info("%s %s (%s) already deleted", self.kind, key, remote_id)
            return

        if submission.operation is not None:
            self.poller.await_completion(submission.operation, deadline, cancel)
        logger.info("%s %s: %s", self.kind, key, Phase.ABSENT.value)

    def _fetch(self, remote_id: str) -> RemoteShape | None:
        return self.client.get(remote_id)

    def _observe(self, current: RemoteShape, prior: ResourceSpec | None) -> ResourceSpec:
        observed = self.adapter.flatten(current, prior)
        return self.adapter.schema.merge_sensitive(observed, prior)

    def _state(
        self, key: NaturalKey, current: RemoteShape, observed: ResourceSpec
    ) -> ResourceState:
        return ResourceState(
            kind=self.kind,
            natural_key=key,
            remote_id=self.adapter.remote_id_of(current),
            attributes=observed,
            tags=self.adapter.tags_of(observed),
        )

    def _key_hint(self, spec: ResourceSpec) -> NaturalKey | None:
        try:
            return self.adapter.natural_key(spec)
        except (KeyError, TypeError, AttributeError):
            return None

    @contextmanager
    def _context(self, key: NaturalKey | None) -> Iterator[None]:
        """Attach kind and natural key to reconcile errors raised inside."""
        try:
            yield
        except ReconcileError as e:
            e.attach(self.kind, key)
            raise
