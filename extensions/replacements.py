"""Replacement ledger: which extension owns which base skill.

An extension may install its own skill under a base skill's id, shadowing
it. At most one extension may own a given base id at a time; when ownership
is released the base skill is restored unless another extension still
owns it.
"""

from __future__ import annotations

from typing import Iterable

from extensions.errors import ReplacementConflictError
from extensions.manifest import ExtensionManifest
from extensions.state import ExtensionRecord
from skills.catalog import BaseSkillCatalog


def owners(records: Iterable[ExtensionRecord]) -> dict[str, str]:
    """Map each owned base skill id to the name of the owning extension."""
    result: dict[str, str] = {}
    for record in records:
        for skill_id in record.owned_replacements:
            result.setdefault(skill_id, record.name)
    return result


def owned_ids(records: Iterable[ExtensionRecord]) -> set[str]:
    """Union of all base skill ids owned by the given records."""
    return {skill_id for record in records for skill_id in record.owned_replacements}


def check_conflict(
    manifest: ExtensionManifest, records: Iterable[ExtensionRecord]
) -> None:
    """Fail if another extension already owns a skill this manifest replaces.

    Records with the manifest's own name are ignored, so re-installing an
    extension never conflicts with itself. Must run before any file is
    touched.

    Args:
        manifest: Manifest of the extension being installed.
        records: Currently installed extension records.

    Raises:
        ReplacementConflictError: On the first conflicting skill id.
    """
    current = owners(r for r in records if r.name != manifest.name)
    for path in sorted(manifest.replaces):
        skill_id = manifest.replaces[path]
        owner = current.get(skill_id)
        if owner is not None:
            raise ReplacementConflictError(skill_id, owner, manifest.name)


def compute_restoration(
    released: Iterable[str],
    remaining: Iterable[ExtensionRecord],
    catalog: BaseSkillCatalog,
) -> set[str]:
    """Decide which released skill ids should get their base skill back.

    An id is restorable when it is a known base skill and no remaining
    record still owns it.

    Args:
        released: Ids whose ownership was given up.
        remaining: Records that stay installed after the operation.
        catalog: Base skill catalog.

    Returns:
        Ids to restore from the catalog.
    """
    still_owned = owned_ids(remaining)
    return {
        skill_id
        for skill_id in released
        if skill_id not in still_owned and catalog.contains(skill_id)
    }
