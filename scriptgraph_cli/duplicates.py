"""Cross-script duplicate code detection."""

from __future__ import annotations

import hashlib
import re
from typing import Any, Dict, List, Mapping, Tuple

from .models import Issue, Severity
from .rules import mask_comments

_TRIVIAL_LINE = re.compile(r"^[\s{}()\[\];,]*$")


class DuplicateCodeDetector:
    """Find identical windows of normalized lines across scripts.

    Lines are trimmed and lower-cased; blank, comment-only and
    brace-only lines are ignored.  The first occurrence of a window is the
    original. Later occurrences become issues, with overlapping windows in
    one file merged into a single line range.
    """

    rule_name = "DuplicateCode"

    def __init__(self, window: int = 6) -> None:
        self.window = window

    def _normalized_lines(self, text: str) -> List[Tuple[int, str]]:
        lines: List[Tuple[int, str]] = []
        for number, line in enumerate(mask_comments(text).split("\n"), start=1):
            if _TRIVIAL_LINE.match(line):
                continue
            lines.append((number, " ".join(line.split()).lower()))
        return lines

    def detect(self, sources: Mapping[str, str]) -> List[Issue]:
        occurrences: Dict[str, List[Tuple[str, int, int]]] = {}
        originals: Dict[str, List[str]] = {}
        for file_path in sorted(sources):
            text = sources[file_path]
            originals[file_path] = text.split("\n")
            lines = self._normalized_lines(text)
            for i in range(len(lines) - self.window + 1):
                chunk = "\n".join(norm for _, norm in lines[i:i + self.window])
                digest = hashlib.sha1(chunk.encode("utf-8")).hexdigest()
                occurrences.setdefault(digest, []).append(
                    (file_path, lines[i][0], lines[i + self.window - 1][0])
                )

        # Every repeat after the first sighting, grouped by the file holding it.
        repeats: Dict[str, List[Tuple[int, int, str, int]]] = {}
        for found in occurrences.values():
            first_path, first_start, _ = found[0]
            for file_path, start, end in found[1:]:
                repeats.setdefault(file_path, []).append((start, end, first_path, first_start))

        issues: List[Issue] = []
        for file_path in sorted(repeats):
            # Overlapping windows in one file collapse into a single range.
            ranges: List[List[Any]] = []
            for start, end, first_path, first_start in sorted(repeats[file_path]):
                if ranges and start <= ranges[-1][1]:
                    ranges[-1][1] = max(ranges[-1][1], end)
                else:
                    ranges.append([start, end, first_path, first_start])
            for start, end, first_path, first_start in ranges:
                issues.append(Issue(
                    rule_name=self.rule_name,
                    severity=Severity.INFORMATION,
                    script_name=file_path,
                    line_number=start,
                    message=f"Lines {start}-{end} duplicate {first_path}:{first_start}",
                    suggestion="Move the shared lines into a function in a common script",
                    context=originals[file_path][start - 1].strip(),
                    fixable=False,
                ))
        return issues
