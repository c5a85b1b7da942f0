"""
kube-converge: Reconcile a cluster toward declared resource manifests.

This library provides the core of a declarative apply client:
- Manifest parsing into ordered resource descriptors
- Strategic merge and three-way JSON merge patch computation
- Create/update/delete passes with conflict retries and per-resource outcomes
- Concurrent readiness and deletion waits with a shared deadline
- Pluggable cluster backends via ResourceAPIProtocol

Example:
    from kube_converge import Client, ClientOptions

    async with Client(api, ClientOptions(namespace="shop")) as client:
        current = client.build(previous_manifest)
        target = client.build(new_manifest)
        result = await client.update(current, target)
        await client.wait(result.resources, timeout=300)
"""

from importlib.metadata import PackageNotFoundError, version

from .applier import KEEP_POLICY, KEEP_POLICY_ANNOTATION, Applier
from .client import Client
from .config import ClientOptions
from .exceptions import (
    AggregateError,
    ApiError,
    ConfigurationError,
    ConflictError,
    ConvergeError,
    DuplicateResourceError,
    ManifestError,
    ManifestValidationError,
    MutationError,
    NoObjectsVisitedError,
    NotFoundError,
    OwnershipError,
    ParseError,
    PatchComputationError,
    ResolutionError,
    ResourceOperationError,
    WaitCancelledError,
    WaitError,
    WaitTimeoutError,
)
from .manifest import build
from .models import (
    KindMapping,
    MutationResult,
    PatchSpec,
    PatchType,
    ResourceDescriptor,
    ResourceList,
    ResourceOutcome,
)
from .patch import create_patch, three_way_patch, two_way_patch
from .resource_api import ResourceAPIProtocol
from .schema import KindSchema, SchemaRegistry
from .waiter import Waiter

try:
    __version__ = version("kube-converge")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Main classes
    "Client",
    "ClientOptions",
    "Applier",
    "Waiter",
    "ResourceAPIProtocol",
    "SchemaRegistry",
    "KindSchema",
    # Functions
    "build",
    "create_patch",
    "three_way_patch",
    "two_way_patch",
    # Models
    "KindMapping",
    "ResourceDescriptor",
    "ResourceList",
    "PatchSpec",
    "PatchType",
    "MutationResult",
    "ResourceOutcome",
    # Constants
    "KEEP_POLICY",
    "KEEP_POLICY_ANNOTATION",
    # Exceptions - Base
    "ConvergeError",
    "ConfigurationError",
    # Exceptions - Categories
    "ManifestError",
    "ApiError",
    "MutationError",
    "WaitError",
    # Exceptions - Manifest
    "ParseError",
    "ManifestValidationError",
    "DuplicateResourceError",
    "ResolutionError",
    # Exceptions - API
    "NotFoundError",
    "ConflictError",
    # Exceptions - Mutation
    "PatchComputationError",
    "OwnershipError",
    "ResourceOperationError",
    "AggregateError",
    "NoObjectsVisitedError",
    # Exceptions - Wait
    "WaitTimeoutError",
    "WaitCancelledError",
]
