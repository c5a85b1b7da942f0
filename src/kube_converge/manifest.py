"""Manifest parsing into resource descriptors.

Turns a stream of YAML (or JSON) documents into an ordered ResourceList,
resolving each document's kind against the cluster's kind mapping. No
network calls are made here.
"""

from __future__ import annotations

import copy
import logging
from typing import IO, Any

import jsonschema
import yaml

from .exceptions import (
    DuplicateResourceError,
    ManifestValidationError,
    ParseError,
    ResolutionError,
)
from .models import ResourceDescriptor, ResourceList
from .resource_api import ResourceAPIProtocol
from .schema import SchemaRegistry

logger = logging.getLogger(__name__)

ManifestSource = str | bytes | IO[str] | IO[bytes]

# DNS-1123 subdomain, the loosest name rule the server applies
_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$"

MANIFEST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["apiVersion", "kind", "metadata"],
    "properties": {
        "apiVersion": {"type": "string", "minLength": 1},
        "kind": {"type": "string", "minLength": 1},
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "maxLength": 253, "pattern": _NAME_PATTERN},
                "namespace": {"type": "string", "pattern": _NAME_PATTERN},
                "labels": {"type": "object", "additionalProperties": {"type": "string"}},
                "annotations": {"type": "object", "additionalProperties": {"type": "string"}},
            },
        },
    },
}


class _ManifestLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as strings, as the server's JSON view does."""


_ManifestLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def read_documents(source: ManifestSource) -> list[dict[str, Any]]:
    """
    Split a manifest stream into its non-empty documents.

    ``List`` kinds are flattened into their items, in order.

    Raises:
        ParseError: If the stream is not valid YAML or a document is not a mapping
    """
    return [doc for _, doc in _indexed_documents(source)]


def _indexed_documents(source: ManifestSource) -> list[tuple[int, dict[str, Any]]]:
    """Documents paired with the index of the stream document they came from."""
    text = source.read() if hasattr(source, "read") else source
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"stream is not valid UTF-8: {e}") from e

    documents: list[tuple[int, dict[str, Any]]] = []
    index = 0
    try:
        for raw in yaml.load_all(text, Loader=_ManifestLoader):  # noqa: S506
            if raw is None:
                continue
            if not isinstance(raw, dict):
                raise ParseError(f"expected a mapping, got {type(raw).__name__}", index)
            if _is_list_kind(raw):
                items = raw.get("items") or []
                for item in items:
                    if not isinstance(item, dict):
                        raise ParseError("List items must be mappings", index)
                    documents.append((index, item))
            else:
                documents.append((index, raw))
            index += 1
    except yaml.YAMLError as e:
        raise ParseError(str(e), index) from e
    return documents


def _is_list_kind(doc: dict[str, Any]) -> bool:
    kind = doc.get("kind")
    return isinstance(kind, str) and kind.endswith("List") and "items" in doc


def validate_document(
    doc: dict[str, Any],
    index: int,
    registry: SchemaRegistry,
) -> None:
    """
    Validate one document against the base schema and its kind's schema.

    Raises:
        ManifestValidationError: On the first schema violation
    """
    try:
        jsonschema.validate(doc, MANIFEST_SCHEMA)
        group = doc["apiVersion"].rpartition("/")[0]
        kind_schema = registry.lookup(group, doc["kind"])
        if kind_schema is not None and kind_schema.json_schema is not None:
            jsonschema.validate(doc, kind_schema.json_schema)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ManifestValidationError(f"{where}: {e.message}", index) from e


def build(
    api: ResourceAPIProtocol,
    source: ManifestSource,
    *,
    namespace: str,
    validate: bool = False,
    registry: SchemaRegistry | None = None,
) -> ResourceList:
    """
    Parse a manifest stream into descriptors, in document order.

    Args:
        api: Backend used to resolve kinds (no network I/O)
        source: Raw manifest text, bytes, or a readable stream
        namespace: Namespace given to namespaced documents that lack one
        validate: Fail fast on the first document that violates its schema
        registry: Schemas used for validation (defaults to the built-ins)

    Returns:
        ResourceList with one descriptor per document

    Raises:
        ParseError: If a document is malformed (or invalid, when validating)
        ResolutionError: If a document's kind cannot be resolved
    """
    registry = registry if registry is not None else SchemaRegistry.default()
    documents = _indexed_documents(source)

    if validate:
        for index, doc in documents:
            validate_document(doc, index, registry)

    resources = ResourceList()
    seen: set[tuple[str, str | None, str]] = set()
    for index, doc in documents:
        descriptor = _to_descriptor(api, doc, index, namespace)
        if descriptor.identity in seen:
            raise DuplicateResourceError(descriptor.identity, index)
        seen.add(descriptor.identity)
        resources.append(descriptor)

    logger.debug("Built %d resource(s) from manifest", len(resources))
    return resources


def _to_descriptor(
    api: ResourceAPIProtocol,
    doc: dict[str, Any],
    index: int,
    default_namespace: str,
) -> ResourceDescriptor:
    api_version = doc.get("apiVersion")
    kind = doc.get("kind")
    if not isinstance(api_version, str) or not api_version:
        raise ParseError("'apiVersion' is required", index)
    if not isinstance(kind, str) or not kind:
        raise ParseError("'kind' is required", index)

    metadata = doc.get("metadata")
    if not isinstance(metadata, dict):
        raise ParseError("'metadata' must be a mapping", index)
    name = metadata.get("name")
    if not isinstance(name, str) or not name:
        raise ParseError("'metadata.name' is required", index)

    try:
        mapping = api.resolve(api_version, kind)
    except ResolutionError as e:
        if e.document_index is None:
            e.document_index = index
        raise

    content = copy.deepcopy(doc)
    if mapping.namespaced:
        ns = metadata.get("namespace") or default_namespace
        content["metadata"]["namespace"] = ns
    else:
        ns = None
        content["metadata"].pop("namespace", None)

    return ResourceDescriptor(
        mapping=mapping,
        namespace=ns,
        name=name,
        content=content,
        api=api,
    )
