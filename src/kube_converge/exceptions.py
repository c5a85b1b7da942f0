"""Exceptions for kube-converge."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import MutationResult

Identity = tuple[str, str | None, str]


def format_identity(identity: Identity) -> str:
    """Render a (kind, namespace, name) identity as ``Kind namespace/name``."""
    kind, namespace, name = identity
    if namespace:
        return f"{kind} {namespace}/{name}"
    return f"{kind} {name}"


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class ConvergeError(Exception):
    """
    Base exception for all kube-converge errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


class ConfigurationError(ConvergeError, ValueError):
    """Raised when client options are invalid."""

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


# ---------------------------------------------------------------------------
# Category Exceptions
# ---------------------------------------------------------------------------


class ManifestError(ConvergeError):
    """
    Base exception for manifest-related errors.

    Raised while turning serialized documents into resource descriptors,
    before anything is sent to the cluster.
    """

    pass


class ApiError(ConvergeError):
    """
    Base exception for errors reported by a ResourceAPI implementation.

    ResourceAPI backends translate their transport failures into these
    so the orchestrator can tell absorbable failures from fatal ones.
    """

    def __init__(self, message: str, identity: Identity | None = None) -> None:
        self.identity = identity
        if identity is not None:
            message = f"{message} [{format_identity(identity)}]"
        super().__init__(message)


class MutationError(ConvergeError):
    """
    Base exception for errors raised while mutating cluster state.

    This includes patch computation failures and per-resource failures
    collected by batch operations.
    """

    pass


class WaitError(ConvergeError):
    """Base exception for errors raised while waiting on resources."""

    pass


# ---------------------------------------------------------------------------
# Manifest Exceptions
# ---------------------------------------------------------------------------


class ParseError(ManifestError):
    """
    Raised when a manifest document is malformed.

    Attributes:
        document_index: Zero-based position of the offending document
            in the stream, counting non-empty documents only. Items of a
            ``List`` document share the index of that document. None if
            the stream itself could not be read.
        reason: Human-readable description of the problem
    """

    def __init__(self, reason: str, document_index: int | None = None) -> None:
        self.reason = reason
        self.document_index = document_index
        if document_index is None:
            super().__init__(f"Invalid manifest: {reason}")
        else:
            super().__init__(f"Invalid manifest document {document_index}: {reason}")


class ManifestValidationError(ParseError):
    """Raised when a document fails schema validation."""

    pass


class DuplicateResourceError(ParseError):
    """Raised when two documents in one stream declare the same resource."""

    def __init__(self, identity: Identity, document_index: int) -> None:
        self.identity = identity
        super().__init__(f"duplicate resource {format_identity(identity)}", document_index)


class ResolutionError(ManifestError):
    """
    Raised when a document refers to a kind the cluster cannot serve.

    Kept distinct from ParseError so callers can tell "malformed input"
    from "input refers to an unsupported kind".
    """

    def __init__(
        self,
        api_version: str,
        kind: str,
        reason: str | None = None,
        document_index: int | None = None,
    ) -> None:
        self.api_version = api_version
        self.kind = kind
        self.document_index = document_index
        msg = f"Unable to resolve kind {kind!r} in version {api_version!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# API Exceptions
# ---------------------------------------------------------------------------


class NotFoundError(ApiError):
    """Raised by a ResourceAPI when the addressed resource does not exist."""

    def __init__(self, identity: Identity | None = None, message: str = "not found") -> None:
        super().__init__(message, identity)


class ConflictError(ApiError):
    """
    Raised on an optimistic-concurrency or admission conflict.

    Covers "already exists" as well as conflicts from admission-time quota
    bookkeeping. The orchestrator retries these up to a bounded budget.
    """

    pass


# ---------------------------------------------------------------------------
# Mutation Exceptions
# ---------------------------------------------------------------------------


class PatchComputationError(MutationError):
    """Raised when a patch cannot be computed from the supplied states."""

    def __init__(self, reason: str, identity: Identity | None = None) -> None:
        self.reason = reason
        self.identity = identity
        msg = f"Unable to compute patch: {reason}"
        if identity is not None:
            msg += f" [{format_identity(identity)}]"
        super().__init__(msg)


class OwnershipError(MutationError):
    """Raised when a declared resource exists but was not previously declared."""

    def __init__(self, identity: Identity) -> None:
        self.identity = identity
        super().__init__(
            f"{format_identity(identity)} exists in the cluster but is not part of "
            "the current declaration"
        )


class ResourceOperationError(MutationError):
    """
    A single resource's failure inside a batch operation.

    Attributes:
        identity: (kind, namespace, name) of the failing resource
        action: Operation that failed ("create", "update", "delete", ...)
        cause: The underlying exception
    """

    def __init__(self, identity: Identity, action: str, cause: BaseException) -> None:
        self.identity = identity
        self.action = action
        self.cause = cause
        super().__init__(f"{action} {format_identity(identity)}: {cause}")


class AggregateError(MutationError):
    """
    Raised when one or more resources in a batch operation failed.

    Attributes:
        errors: Every per-resource failure, in input order
        result: The partial MutationResult describing what did succeed
    """

    def __init__(
        self,
        errors: list[ResourceOperationError],
        result: "MutationResult | None" = None,
    ) -> None:
        if not errors:
            raise ValueError("AggregateError requires at least one error")
        self.errors = errors
        self.result = result
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        noun = "resource" if len(self.errors) == 1 else "resources"
        details = "; ".join(str(e) for e in self.errors)
        return f"{len(self.errors)} {noun} failed: {details}"


class NoObjectsVisitedError(MutationError):
    """Raised when a batch operation is handed an empty resource list."""

    def __init__(self) -> None:
        super().__init__("no objects visited")


# ---------------------------------------------------------------------------
# Wait Exceptions
# ---------------------------------------------------------------------------


class WaitTimeoutError(WaitError, TimeoutError):
    """
    Raised when the wait deadline elapses with resources still pending.

    Attributes:
        pending: Identities of the resources that never reached their
            terminal state
        timeout: The deadline that elapsed, in seconds
    """

    def __init__(self, pending: list[Identity], timeout: float) -> None:
        self.pending = pending
        self.timeout = timeout
        names = ", ".join(format_identity(i) for i in pending)
        super().__init__(f"Timed out after {timeout:g}s waiting for: {names}")


class WaitCancelledError(WaitError):
    """Raised when a wait is cancelled through its cancel event."""

    def __init__(self, pending: list[Identity]) -> None:
        self.pending = pending
        super().__init__(f"Wait cancelled with {len(pending)} resource(s) pending")
