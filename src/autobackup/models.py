from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class ChangeKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    RENAMED = "renamed"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    kind: ChangeKind
    path: Path
    old_path: Path | None = None


class CopyStatus(str, Enum):
    COPIED = "copied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class CopyOutcome:
    status: CopyStatus
    attempts: int = 0
    error: BaseException | None = None


@dataclass(slots=True)
class MirrorStats:
    copied: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, outcome: CopyOutcome) -> None:
        if outcome.status is CopyStatus.COPIED:
            self.copied += 1
        elif outcome.status is CopyStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
