"""Script-to-script dependency extraction.

Two independent strategies share one interface:

- ``TextPatternExtractor`` scans raw text with an ordered list of reference
  shapes, so it still works when the parse failed.
- ``TreeWalkExtractor`` walks ``command`` nodes of a clean syntax tree.

``CompositeExtractor`` merges them.  Every strategy returns bare script
names (no folder, no extension); resolving names to graph ids is the graph
builder's job.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Pattern, Sequence, Set, Tuple

from .models import ParsedUnit
from .parser import node_text

logger = logging.getLogger(__name__)

SCRIPT_EXTENSIONS: Tuple[str, ...] = (".ps1", ".psm1", ".psd1")

# Boolean literals picked up from switch arguments are never script names.
FILTERED_NAMES = frozenset({"false", "$false"})

IMPORT_COMMANDS = frozenset({"import-module", "ipmo"})

# Import-Module parameters that consume the following token.
VALUE_PARAMETERS = frozenset({
    "-minimumversion", "-maximumversion", "-requiredversion", "-prefix",
    "-scope", "-argumentlist", "-args", "-function", "-cmdlet", "-variable",
    "-alias", "-pssession", "-cimsession", "-cimnamespace", "-cimresourceuri",
})

_PATH_CHARS = r"[^\s\"'(){};|&]"

REFERENCE_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("invocation", re.compile(r"&\s*[\"'](?P<path>[^\"'\r\n]+?\.ps1)[\"']", re.IGNORECASE)),
    ("invocation", re.compile(rf"&\s*(?P<path>{_PATH_CHARS}+\.ps1)\b", re.IGNORECASE)),
    ("invocation", re.compile(r"^\s*(?P<path>\.{1,2}[\\/][^\s\"';|]+\.ps1)\b", re.IGNORECASE | re.MULTILINE)),
    ("dot-source", re.compile(
        r"(?:^|[;{(|\s])\.\s+[\"'](?P<path>[^\"'\r\n]+?\.ps[md]?1)[\"']",
        re.IGNORECASE | re.MULTILINE,
    )),
    ("dot-source", re.compile(
        rf"(?:^|[;{{(|\s])\.\s+(?P<path>{_PATH_CHARS}+?\.ps[md]?1)(?=[\s;)}}|]|$)",
        re.IGNORECASE | re.MULTILINE,
    )),
    ("dot-source", re.compile(
        r"(?:^|[;{|\s])\.\s+\(\s*Join-Path\s+\S+\s+(?:-ChildPath\s+)?[\"']?(?P<path>[^\s\"')]+)",
        re.IGNORECASE | re.MULTILINE,
    )),
    ("dynamic-eval", re.compile(
        rf"\b(?:Invoke-Expression|iex)\b[^\r\n]*?(?P<path>{_PATH_CHARS}+\.ps1)\b",
        re.IGNORECASE,
    )),
)

_IMPORT_MODULE = re.compile(r"\b(?:Import-Module|ipmo)\b(?P<args>[^\r\n;|}]*)", re.IGNORECASE)
_ARG_TOKEN = re.compile(r"\"[^\"]*\"|'[^']*'|\S+")
_BLOCK_COMMENT = re.compile(r"<#.*?#>", re.DOTALL)
_LINE_COMMENT = re.compile(r"^\s*#.*$", re.MULTILINE)


def normalize_dependency_name(raw: str) -> Optional[str]:
    """Strip quotes, folders and script extensions from a reference.

    Returns None for anything that cannot name a script.
    """
    value = raw.strip().strip("\"'").strip()
    name = re.split(r"[\\/]", value)[-1].strip()
    lowered = name.lower()
    for ext in SCRIPT_EXTENSIONS:
        if lowered.endswith(ext):
            name = name[: -len(ext)]
            break
    name = name.strip()
    if not name or name.lower() in FILTERED_NAMES:
        return None
    if name.startswith(("-", "$", "(", "@")):
        return None
    return name


def strip_comments(text: str) -> str:
    text = _BLOCK_COMMENT.sub("", text)
    return _LINE_COMMENT.sub("", text)


class DependencyExtractor(ABC):
    """Interface shared by every extraction strategy."""

    name: str = "extractor"

    @abstractmethod
    def extract(self, unit: ParsedUnit) -> Set[str]:
        ...


class TextPatternExtractor(DependencyExtractor):
    """Regex scan over the comment-stripped script text."""

    name = "text-pattern"

    def __init__(self, patterns: Sequence[Tuple[str, Pattern[str]]] = REFERENCE_PATTERNS) -> None:
        self.patterns = tuple(patterns)

    def extract(self, unit: ParsedUnit) -> Set[str]:
        text = strip_comments(unit.source)
        found: Set[str] = set()
        for kind, pattern in self.patterns:
            for match in pattern.finditer(text):
                name = normalize_dependency_name(match.group("path"))
                if name:
                    logger.debug("%s: %s reference to %s", unit.script_id, kind, name)
                    found.add(name)

        for match in _IMPORT_MODULE.finditer(text):
            module = first_positional_argument(_ARG_TOKEN.findall(match.group("args")))
            name = normalize_dependency_name(module) if module else None
            if name:
                logger.debug("%s: module-import reference to %s", unit.script_id, name)
                found.add(name)
        return found


def first_positional_argument(tokens: Iterable[str]) -> Optional[str]:
    """Return the module argument of an ``Import-Module`` token list."""
    skip_next = False
    for token in tokens:
        if skip_next:
            skip_next = False
            continue
        lowered = token.lower()
        if lowered.startswith("-"):
            if lowered in VALUE_PARAMETERS:
                skip_next = True
            continue
        return token
    return None


class TreeWalkExtractor(DependencyExtractor):
    """Walk ``command`` nodes of a clean Tree-sitter PowerShell tree.

    Dot-sourced or ``&``-invoked script paths and the first string argument
    of whitelisted import commands are reported.
    """

    name = "tree-walk"

    def extract(self, unit: ParsedUnit) -> Set[str]:
        if not unit.has_tree or unit.parse_errors:
            return set()

        found: Set[str] = set()
        stack: List[Any] = [unit.syntax_tree.root_node]
        while stack:
            node = stack.pop()
            if node.type == "command":
                raw = self._command_reference(node)
                name = normalize_dependency_name(raw) if raw else None
                if name:
                    found.add(name)
            stack.extend(reversed(node.children))
        return found

    def _command_reference(self, command: Any) -> Optional[str]:
        name_node = command.child_by_field_name("command_name")
        operator = ""
        for child in command.children:
            if child.type == "command_invokation_operator":
                operator = node_text(child).strip()
            elif name_node is None and child.type in ("command_name", "command_name_expr"):
                name_node = child
        if name_node is None:
            return None

        command_name = node_text(name_node).strip()
        if operator in (".", "&") and command_name.strip("\"'").lower().endswith(SCRIPT_EXTENSIONS):
            return command_name
        if command_name.lower() in IMPORT_COMMANDS:
            return self._first_string_argument(command)
        return None

    def _first_string_argument(self, command: Any) -> Optional[str]:
        elements = command.child_by_field_name("command_elements")
        if elements is None:
            elements = next((c for c in command.children if c.type == "command_elements"), None)
        if elements is None:
            return None

        skip_next = False
        for element in elements.children:
            text = node_text(element).strip()
            if not text or element.type == "command_argument_sep":
                continue
            if skip_next:
                skip_next = False
                continue
            if element.type == "command_parameter" or text.startswith("-"):
                skip_next = text.lower() in VALUE_PARAMETERS
                continue
            literal = _first_string_node(element)
            if literal is not None:
                return node_text(literal)
            return text
        return None


_STRING_NODE_TYPES = frozenset({
    "string_literal", "expandable_string_literal", "verbatim_string_characters",
    "expandable_here_string_literal", "verbatim_here_string_characters", "generic_token",
})


def _first_string_node(node: Any) -> Optional[Any]:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in _STRING_NODE_TYPES:
            return current
        stack.extend(reversed(current.children))
    return None


class CompositeExtractor(DependencyExtractor):
    """Union of several strategies; duplicates merge by name."""

    name = "composite"

    def __init__(self, strategies: Optional[Sequence[DependencyExtractor]] = None) -> None:
        self.strategies = tuple(strategies) if strategies is not None else (
            TextPatternExtractor(),
            TreeWalkExtractor(),
        )

    def extract(self, unit: ParsedUnit) -> Set[str]:
        found: Set[str] = set()
        for strategy in self.strategies:
            found |= strategy.extract(unit)
        return found
