from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pathspec

from autobackup.config import MirrorConfig


log = logging.getLogger("autobackup.ignore")


def _scoped_pattern(directory: str, line: str) -> str:
    """Re-anchor a line from ``<directory>/.gitignore`` so it matches from the source root."""
    if not directory:
        return line
    negated = line.startswith("!")
    body = line[1:] if negated else line
    if body.startswith("/") or "/" in body.rstrip("/"):
        scoped = f"{directory}/{body.lstrip('/')}"
    else:
        # unanchored patterns match at any depth below their own directory
        scoped = f"{directory}/**/{body}"
    return f"!{scoped}" if negated else scoped


def _gitignore_patterns(source_root: Path) -> list[str]:
    patterns: list[str] = []
    for gitignore in sorted(source_root.rglob(".gitignore")):
        directory = gitignore.parent.relative_to(source_root).as_posix()
        try:
            lines = gitignore.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            log.warning("Could not read %s: %s", gitignore, exc)
            continue
        for line in lines:
            if line.strip() and not line.startswith("#"):
                patterns.append(_scoped_pattern("" if directory == "." else directory, line))
    return patterns


class IgnoreEngine:
    def __init__(self, patterns: Iterable[str]) -> None:
        self.patterns = [pattern for pattern in patterns if pattern.strip()]
        self._spec = pathspec.GitIgnoreSpec.from_lines(self.patterns) if self.patterns else None

    def is_ignored(self, relative_path: Path, is_dir: bool = False) -> bool:
        if self._spec is None:
            return False
        candidate = relative_path.as_posix() + ("/" if is_dir else "")
        return self._spec.match_file(candidate)


def build_ignore_engine(config: MirrorConfig) -> IgnoreEngine:
    patterns: list[str] = list(config.additional_excludes)
    if config.honor_gitignore:
        patterns.extend(_gitignore_patterns(config.source_root))
    return IgnoreEngine(patterns)
