"""Core data models shared by parsing, graph building, rules and reporting."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple


class Severity(str, Enum):
    ERROR = "Error"
    WARNING = "Warning"
    INFORMATION = "Information"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: str) -> "Severity":
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        raise ValueError(f"Unknown severity '{value}'")


_SEVERITY_RANK = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFORMATION: 2}


def id_order(node_id: str) -> Tuple[str, str]:
    """Sort key for script ids: case-insensitive, then exact."""
    return node_id.lower(), node_id


@dataclass(frozen=True)
class Token:
    type: str
    text: str
    line: int


@dataclass(frozen=True)
class SyntaxProblem:
    line: int
    column: int
    message: str


@dataclass(frozen=True)
class ParsedUnit:
    file_path: str
    source: str
    syntax_tree: Any = None
    tokens: Tuple[Token, ...] = ()
    parse_errors: Tuple[SyntaxProblem, ...] = ()

    @property
    def script_id(self) -> str:
        return script_id_for(self.file_path)

    @property
    def has_tree(self) -> bool:
        return self.syntax_tree is not None


def script_id_for(file_path: str) -> str:
    """Script id is the base file name without its extension."""
    name = file_path.replace("\\", "/").rsplit("/", 1)[-1]
    if "." in name:
        name = name.rsplit(".", 1)[0]
    return name


@dataclass
class ScriptNode:
    id: str
    file_path: str
    dependencies: Set[str] = field(default_factory=set)
    dependents: Set[str] = field(default_factory=set)

    @property
    def has_self_reference(self) -> bool:
        return self.id in self.dependencies


@dataclass
class DependencyGraph:
    nodes: Dict[str, ScriptNode] = field(default_factory=dict)
    dangling: Dict[str, Set[str]] = field(default_factory=dict)

    def edges(self) -> Iterator[Tuple[str, str]]:
        for node_id in sorted(self.nodes, key=id_order):
            for dep in sorted(self.nodes[node_id].dependencies, key=id_order):
                yield node_id, dep

    def self_references(self) -> List[str]:
        return [node_id for node_id in sorted(self.nodes, key=id_order) if self.nodes[node_id].has_self_reference]

    def __len__(self) -> int:
        return len(self.nodes)


@dataclass(frozen=True)
class Cycle:
    nodes: Tuple[str, ...]

    @property
    def path(self) -> str:
        return " -> ".join(self.nodes + self.nodes[:1])

    def __len__(self) -> int:
        return len(self.nodes)


@dataclass(frozen=True)
class Issue:
    rule_name: str
    severity: Severity
    script_name: str
    line_number: int
    message: str
    suggestion: str = ""
    context: str = ""
    fixable: bool = False

    def sort_key(self) -> Tuple[str, int, str, str]:
        return (self.script_name.lower(), self.line_number, self.rule_name, self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "RuleName": self.rule_name,
            "Severity": self.severity.value,
            "ScriptName": self.script_name,
            "LineNumber": self.line_number,
            "Message": self.message,
            "Suggestion": self.suggestion,
            "Context": self.context,
            "Fixable": self.fixable,
        }


@dataclass
class AnalysisResult:
    """Aggregated outcome of one analysis run.

    Built empty, filled additively while files complete (``add_issues`` may
    be called from worker threads), then frozen by ``finalize``.
    """

    total_scripts: int = 0
    skipped_large_files: int = 0
    issues: List[Issue] = field(default_factory=list)
    issues_by_script: Dict[str, List[Issue]] = field(default_factory=dict)
    issues_by_rule: Dict[str, List[Issue]] = field(default_factory=dict)
    cycles: List[Cycle] = field(default_factory=list)
    resource_usage: Dict[str, Dict[str, int]] = field(default_factory=dict)
    degraded_files: List[str] = field(default_factory=list)
    top_issues: List[Tuple[str, int]] = field(default_factory=list)
    summary: List[str] = field(default_factory=list)
    graph: Optional[DependencyGraph] = None
    frozen: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_issues(self, issues: List[Issue]) -> None:
        with self._lock:
            if self.frozen:
                raise RuntimeError("AnalysisResult is frozen")
            for issue in issues:
                self.issues.append(issue)
                self.issues_by_script.setdefault(issue.script_name, []).append(issue)
                self.issues_by_rule.setdefault(issue.rule_name, []).append(issue)

    def finalize(self) -> None:
        """Sort every collection so output is independent of worker scheduling."""
        with self._lock:
            self.issues.sort(key=Issue.sort_key)
            self.issues_by_script = {
                name: sorted(items, key=Issue.sort_key)
                for name, items in sorted(self.issues_by_script.items(), key=lambda kv: kv[0].lower())
            }
            self.issues_by_rule = {
                name: sorted(items, key=Issue.sort_key)
                for name, items in sorted(self.issues_by_rule.items())
            }
            self.frozen = True

    @property
    def total_issues(self) -> int:
        return len(self.issues)

    def count(self, severity: Severity) -> int:
        return sum(1 for i in self.issues if i.severity is severity)

    @property
    def error_issues(self) -> int:
        return self.count(Severity.ERROR)

    @property
    def warning_issues(self) -> int:
        return self.count(Severity.WARNING)

    @property
    def information_issues(self) -> int:
        return self.count(Severity.INFORMATION)

    @property
    def fixable_issues(self) -> int:
        return sum(1 for i in self.issues if i.fixable)

    def statistics(self) -> Dict[str, int]:
        return {
            "TotalScripts": self.total_scripts,
            "TotalIssues": self.total_issues,
            "ErrorIssues": self.error_issues,
            "WarningIssues": self.warning_issues,
            "InformationIssues": self.information_issues,
            "FixableIssues": self.fixable_issues,
            "SkippedLargeFiles": self.skipped_large_files,
        }
