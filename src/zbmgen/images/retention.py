"""
Retention policies for managed images.

Two ways to keep boot images:

- versioned: every build gets its own "<prefix>-<version>" entry and at
  most N entries of a kind are kept; the oldest by version go first.
- singleton: one fixed-name current entry and one backup of whatever
  was current before.

In both, the new image is made durable before anything old is touched.
"""

import logging
from dataclasses import dataclass, field

from zbmgen.boot.builder import Artifact, UnifiedArtifact

from .managed import EntryKind, ManagedDirectory, ManagedEntry, Slot, CopyFailed

logger = logging.getLogger(__name__)


@dataclass
class PlacementResult:
    """
    What a placement did.

    Attributes:
        placed: The entry now holding the new image
        evicted: Entries removed to honour the copy limit
        backup: Backup written in singleton mode, if any
    """

    placed: ManagedEntry
    evicted: list[ManagedEntry] = field(default_factory=list)
    backup: ManagedEntry | None = None


def artifact_kind(artifact: Artifact) -> EntryKind:
    if isinstance(artifact, UnifiedArtifact):
        return EntryKind.UNIFIED
    return EntryKind.SPLIT


def place_versioned(
    directory: ManagedDirectory,
    prefix: str,
    artifact: Artifact,
    version: str,
    max_copies: int,
) -> PlacementResult:
    """
    Add a versioned entry and prune the oldest surplus ones.

    Existing entries are listed once, before anything is written. An
    entry already carrying `version` is replaced rather than counted, so
    re-running the same build is idempotent. Fixed-name singleton
    entries are neither counted nor evicted.

    Args:
        directory: Managed directory to place into
        prefix: Filename prefix
        artifact: Freshly built image in scratch space
        version: Version label for the new entry
        max_copies: Maximum entries of this kind to keep, new one included

    Returns:
        PlacementResult listing the new entry and the evicted ones

    Raises:
        CopyFailed: If the new entry cannot be written; nothing is evicted
        ValueError: If max_copies is less than 1
    """
    if max_copies < 1:
        raise ValueError(f"max_copies must be at least 1, got {max_copies}")

    kind = artifact_kind(artifact)
    target = directory.versioned_entry(prefix, kind, version)

    existing = [
        entry
        for entry in directory.list_entries(prefix, kind)
        if entry.slot is None and entry.name != target.name
    ]

    directory.place(target, artifact.files, preserve_times=True)
    for path in target.files:
        print(f"Created {path}")

    result = PlacementResult(placed=target)
    surplus = len(existing) - (max_copies - 1)
    for entry in existing[: max(surplus, 0)]:
        removed = directory.evict(entry)
        for path in removed:
            print(f"Removed {path}")
        result.evicted.append(entry)

    logger.info(
        f"Placed {target.name} in {directory}; kept {len(existing) - len(result.evicted) + 1} "
        f"of at most {max_copies}"
    )
    return result


def place_singleton(
    directory: ManagedDirectory,
    prefix: str,
    artifact: Artifact,
) -> PlacementResult:
    """
    Replace the current entry, keeping the previous one as a backup.

    A backup that cannot be written is logged and the new image is placed
    anyway. The current entry is written without carrying the build's
    timestamps, so its mtime shows when it was installed.

    Args:
        directory: Managed directory to place into
        prefix: Filename prefix
        artifact: Freshly built image in scratch space

    Returns:
        PlacementResult with the current entry and the backup, if made

    Raises:
        CopyFailed: If the new current entry cannot be written
    """
    kind = artifact_kind(artifact)
    current = directory.slot_entry(prefix, kind, Slot.CURRENT)
    backup = directory.slot_entry(prefix, kind, Slot.BACKUP)

    result = PlacementResult(placed=current)
    if current.exists():
        try:
            written = directory.copy_entry(current, backup)
        except CopyFailed as e:
            logger.warning(f"Unable to back up {current.name}, continuing without: {e}")
        else:
            for path in written:
                print(f"Backed up {path}")
            result.backup = backup

    directory.place(current, artifact.files, preserve_times=False)
    for path in current.files:
        print(f"Created {path}")
    return result
