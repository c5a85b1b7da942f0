"""Patch computation between declared and live resource states.

Three states are involved:

- **current**: what was last declared for the resource
- **target**: what is declared now
- **actual**: the live object, fetched fresh before every patch

Typed kinds (registered in the SchemaRegistry) get a strategic merge patch;
schemaless kinds get a JSON merge patch, three-way when requested and the
legacy two-way (current -> target) otherwise.

Both three-way flavours use the same recipe:

    delta     = diff(actual  -> target)   ignoring deletions
    deletions = diff(current -> target)   ignoring changes and additions
    patch     = merge(deletions, delta)

so a field someone else added to the live object survives unless the
declaration used to own it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from .exceptions import PatchComputationError
from .models import PatchSpec, PatchType, ResourceDescriptor
from .schema import KindSchema, SchemaRegistry

logger = logging.getLogger(__name__)

SET_ELEMENT_ORDER_PREFIX = "$setElementOrder/"
PATCH_DIRECTIVE = "$patch"
DELETE_DIRECTIVE = "delete"

Path = tuple[str, ...]


class _PatchBuilder:
    """Diffs and merges attribute trees, list-merging by key where the schema says so."""

    def __init__(self, schema: KindSchema | None) -> None:
        self.schema = schema

    def merge_key(self, path: Iterable[str]) -> str | None:
        if self.schema is None:
            return None
        return self.schema.merge_key(path)

    # -------------------------------------------------------------------------
    # Diff
    # -------------------------------------------------------------------------

    def diff(
        self,
        original: dict[str, Any],
        modified: dict[str, Any],
        *,
        ignore_deletions: bool = False,
        ignore_changes_and_additions: bool = False,
    ) -> dict[str, Any]:
        return self._diff_maps(
            original,
            modified,
            (),
            ignore_deletions=ignore_deletions,
            ignore_changes_and_additions=ignore_changes_and_additions,
        )

    def _diff_maps(
        self,
        original: dict[str, Any],
        modified: dict[str, Any],
        path: Path,
        *,
        ignore_deletions: bool,
        ignore_changes_and_additions: bool,
    ) -> dict[str, Any]:
        patch: dict[str, Any] = {}
        flags = {
            "ignore_deletions": ignore_deletions,
            "ignore_changes_and_additions": ignore_changes_and_additions,
        }

        for key, mod_value in modified.items():
            if key not in original:
                if not ignore_changes_and_additions:
                    patch[key] = mod_value
                continue

            orig_value = original[key]
            child = (*path, key)
            if isinstance(orig_value, dict) and isinstance(mod_value, dict):
                sub = self._diff_maps(orig_value, mod_value, child, **flags)
                if sub:
                    patch[key] = sub
                continue

            merge_key = self.merge_key(child)
            if merge_key and isinstance(orig_value, list) and isinstance(mod_value, list):
                items, order = self._diff_keyed_lists(
                    orig_value, mod_value, child, merge_key, **flags
                )
                if items:
                    patch[key] = items
                    if not ignore_changes_and_additions:
                        patch[SET_ELEMENT_ORDER_PREFIX + key] = order
                continue

            if orig_value != mod_value and not ignore_changes_and_additions:
                patch[key] = mod_value

        if not ignore_deletions:
            for key in original:
                if key not in modified:
                    patch[key] = None

        return patch

    def _diff_keyed_lists(
        self,
        original: list[Any],
        modified: list[Any],
        path: Path,
        merge_key: str,
        *,
        ignore_deletions: bool,
        ignore_changes_and_additions: bool,
    ) -> tuple[list[Any], list[dict[str, Any]]]:
        orig_by_key = self._index(original, path, merge_key)
        mod_by_key = self._index(modified, path, merge_key)

        items: list[Any] = []
        for key_value, mod_item in mod_by_key.items():
            orig_item = orig_by_key.get(key_value)
            if orig_item is None:
                if not ignore_changes_and_additions:
                    items.append(mod_item)
                continue
            sub = self._diff_maps(
                orig_item,
                mod_item,
                path,
                ignore_deletions=ignore_deletions,
                ignore_changes_and_additions=ignore_changes_and_additions,
            )
            if sub:
                sub[merge_key] = key_value
                items.append(sub)

        if not ignore_deletions:
            for key_value in orig_by_key:
                if key_value not in mod_by_key:
                    items.append({PATCH_DIRECTIVE: DELETE_DIRECTIVE, merge_key: key_value})

        order = [{merge_key: key_value} for key_value in mod_by_key]
        return items, order

    @staticmethod
    def _index(items: list[Any], path: Path, merge_key: str) -> dict[Any, dict[str, Any]]:
        indexed: dict[Any, dict[str, Any]] = {}
        for item in items:
            if not isinstance(item, dict) or merge_key not in item:
                raise PatchComputationError(
                    f"element of {'.'.join(path)} does not contain merge key {merge_key!r}"
                )
            indexed[item[merge_key]] = item
        return indexed

    # -------------------------------------------------------------------------
    # Merge two patches
    # -------------------------------------------------------------------------

    def merge(self, base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
        return self._merge_maps(base, overlay, ())

    def _merge_maps(
        self, base: dict[str, Any], overlay: dict[str, Any], path: Path
    ) -> dict[str, Any]:
        result = dict(base)
        for key, value in overlay.items():
            existing = result.get(key)
            child = (*path, key)
            if isinstance(existing, dict) and isinstance(value, dict):
                result[key] = self._merge_maps(existing, value, child)
                continue
            merge_key = self.merge_key(child)
            if merge_key and isinstance(existing, list) and isinstance(value, list):
                result[key] = self._merge_keyed_lists(existing, value, child, merge_key)
                continue
            result[key] = value
        return result

    def _merge_keyed_lists(
        self, base: list[Any], overlay: list[Any], path: Path, merge_key: str
    ) -> list[Any]:
        # overlay entries first (in their order), then base-only entries
        base_by_key = {item[merge_key]: item for item in base}
        merged: list[Any] = []
        seen = set()
        for item in overlay:
            key_value = item[merge_key]
            seen.add(key_value)
            base_item = base_by_key.get(key_value)
            if base_item is not None and PATCH_DIRECTIVE not in base_item:
                merged.append(self._merge_maps(base_item, item, path))
            else:
                merged.append(item)
        merged.extend(item for item in base if item[merge_key] not in seen)
        return merged


def _serialize(patch: dict[str, Any]) -> bytes:
    return json.dumps(patch, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _require_mapping(name: str, value: Any, descriptor: ResourceDescriptor) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise PatchComputationError(
            f"{name} state is not an object (got {type(value).__name__})",
            descriptor.identity,
        )
    return value


def three_way_patch(
    current: dict[str, Any],
    target: dict[str, Any],
    actual: dict[str, Any],
    schema: KindSchema | None = None,
) -> dict[str, Any]:
    """
    Three-way patch document moving ``actual`` toward ``target``.

    With a schema, keyed lists are merged by key (strategic merge); without
    one, this is a three-way JSON merge patch.
    """
    builder = _PatchBuilder(schema)
    delta = builder.diff(actual, target, ignore_deletions=True)
    deletions = builder.diff(current, target, ignore_changes_and_additions=True)
    return builder.merge(deletions, delta)


def two_way_patch(current: dict[str, Any], target: dict[str, Any]) -> dict[str, Any]:
    """JSON merge patch (RFC 7386) from ``current`` to ``target``."""
    return _PatchBuilder(None).diff(current, target)


async def create_patch(
    target: ResourceDescriptor,
    current: dict[str, Any],
    three_way_merge_for_unstructured: bool,
    registry: SchemaRegistry | None = None,
) -> PatchSpec:
    """
    Compute the minimal patch that moves the live resource toward ``target``.

    The live state is fetched fresh through ``target.api`` on every call.

    Args:
        target: Newly declared resource (its api is used to fetch actual state)
        current: Last declared content of the same resource
        three_way_merge_for_unstructured: Use three-way JSON merge for
            schemaless kinds instead of the legacy two-way merge
        registry: Typed kinds (defaults to the built-ins)

    Returns:
        PatchSpec; an empty delta yields the explicit ``{}`` no-op patch

    Raises:
        NotFoundError: If the live resource does not exist
        PatchComputationError: If any state is malformed or the diff fails
    """
    if target.api is None:
        raise PatchComputationError("resource has no client to fetch live state", target.identity)
    registry = registry if registry is not None else SchemaRegistry.default()

    live = await target.api.get(target.mapping, target.namespace, target.name)
    actual = _require_mapping("actual", live.content, target)
    target_content = _require_mapping("target", target.content, target)
    current = _require_mapping("current", current, target)

    schema = registry.lookup(target.mapping.group, target.mapping.kind)
    try:
        if schema is not None:
            patch = three_way_patch(current, target_content, actual, schema)
            patch_type = PatchType.STRATEGIC_MERGE
        elif three_way_merge_for_unstructured:
            patch = three_way_patch(current, target_content, actual)
            patch_type = PatchType.MERGE
        else:
            patch = two_way_patch(current, target_content)
            patch_type = PatchType.MERGE
        data = _serialize(patch)
    except PatchComputationError as e:
        if e.identity is None:
            raise PatchComputationError(e.reason, target.identity) from e
        raise
    except (TypeError, ValueError) as e:
        raise PatchComputationError(str(e), target.identity) from e

    if not patch:
        logger.debug("No changes for %s", target.ref)
        return PatchSpec.empty()

    logger.debug("Patch for %s (%s): %s", target.ref, patch_type.value, data.decode())
    return PatchSpec(data=data, patch_type=patch_type)
