"""PowerShell source parser built on Tree-sitter.

Tree-sitter produces a concrete syntax tree even for broken input, so a
script with syntax errors still yields a tree plus a list of captured
problems.  The parser never raises for malformed scripts; only a missing
file is a hard error.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, List, Optional, Tuple

from tree_sitter_language_pack import get_parser

from .models import ParsedUnit, SyntaxProblem, Token

logger = logging.getLogger(__name__)

GRAMMAR_NAME = "powershell"


class SourceParser:
    """Turn a script file into a ``ParsedUnit``.

    One instance is built per run and shared by the worker threads;
    calls into the Tree-sitter parser are serialized on a lock.
    """

    def __init__(self, ts_parser: Optional[Any] = None) -> None:
        self._parser = ts_parser if ts_parser is not None else self._load_grammar()
        self._lock = threading.Lock()

    @staticmethod
    def _load_grammar() -> Optional[Any]:
        try:
            parser = get_parser(GRAMMAR_NAME)
            logger.debug("Loaded tree-sitter grammar for %s", GRAMMAR_NAME)
            return parser
        except Exception as exc:
            logger.warning(
                "Could not load tree-sitter grammar for %s: %s. "
                "Only text-pattern analysis will run.",
                GRAMMAR_NAME, exc,
            )
            return None

    @property
    def available(self) -> bool:
        return self._parser is not None

    def parse(self, file_path: Path) -> ParsedUnit:
        if not file_path.is_file():
            raise FileNotFoundError(f"Script not found: {file_path}")
        source = file_path.read_text(encoding="utf-8-sig", errors="replace")
        return self.parse_text(str(file_path), source)

    def parse_text(self, file_path: str, source: str) -> ParsedUnit:
        if self._parser is None:
            return ParsedUnit(file_path=file_path, source=source)

        try:
            with self._lock:
                tree = self._parser.parse(source.encode("utf-8"))
        except Exception as exc:
            logger.warning("Parser failed on %s: %s", file_path, exc)
            return ParsedUnit(
                file_path=file_path,
                source=source,
                parse_errors=(SyntaxProblem(line=1, column=1, message=f"Parser failure: {exc}"),),
            )

        tokens, problems = _walk(tree.root_node)
        if problems:
            logger.debug("%s: %d syntax problem(s)", file_path, len(problems))
        return ParsedUnit(
            file_path=file_path,
            source=source,
            syntax_tree=tree,
            tokens=tuple(tokens),
            parse_errors=tuple(problems),
        )


def _walk(root: Any) -> Tuple[List[Token], List[SyntaxProblem]]:
    """Collect leaf tokens and ERROR/MISSING nodes in document order."""
    tokens: List[Token] = []
    problems: List[SyntaxProblem] = []
    stack = [root]
    while stack:
        node = stack.pop()
        row, column = node.start_point[0], node.start_point[1]
        if node.is_missing:
            problems.append(SyntaxProblem(row + 1, column + 1, f"Missing '{node.type}'"))
        elif node.is_error:
            snippet = node_text(node).strip().splitlines()
            near = f" near '{snippet[0][:40]}'" if snippet else ""
            problems.append(SyntaxProblem(row + 1, column + 1, f"Unexpected syntax{near}"))

        children = node.children
        if not children:
            if not node.is_missing:
                tokens.append(Token(type=node.type, text=node_text(node), line=row + 1))
            continue
        stack.extend(reversed(children))
    return tokens, problems


def node_text(node: Any) -> str:
    raw = node.text
    if raw is None:
        return ""
    return raw.decode("utf-8", errors="replace")
