"""Report export: JSON analysis documents and Graphviz DOT dependency graphs."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .models import AnalysisResult, DependencyGraph, Issue, Severity, id_order
from .orchestrator import filter_issues


def build_report(
    result: AnalysisResult,
    timestamp: datetime,
    severity: Union[str, Severity, None] = "All",
    fixable_only: bool = False,
) -> Dict[str, Any]:
    """Nested report document.

    Filters apply to the issue lists only; ``Statistics`` always describes
    the full run.
    """
    issues = filter_issues(result.issues, severity, fixable_only)
    by_script: Dict[str, List[Dict[str, Any]]] = {}
    by_rule: Dict[str, List[Dict[str, Any]]] = {}
    for issue in issues:
        by_script.setdefault(issue.script_name, []).append(issue.to_dict())
    for issue in sorted(issues, key=lambda i: (i.rule_name,) + i.sort_key()):
        by_rule.setdefault(issue.rule_name, []).append(issue.to_dict())

    return {
        "Timestamp": timestamp.isoformat(),
        "Statistics": result.statistics(),
        "Issues": [issue.to_dict() for issue in issues],
        "IssuesByScript": by_script,
        "IssuesByRule": by_rule,
        "CircularDependencies": [list(cycle.nodes) for cycle in result.cycles],
        "DegradedFiles": list(result.degraded_files),
        "ResourceUsage": result.resource_usage,
        "TopIssues": [{"RuleName": rule, "Count": count} for rule, count in result.top_issues],
        "Summary": list(result.summary),
    }


def render_report(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def write_report(document: Dict[str, Any], output_file: Path) -> Path:
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(render_report(document), encoding="utf-8")
    return output_file


def export_dot(graph: DependencyGraph, name: str = "ScriptDependencies") -> str:
    lines = [f"digraph {name} {{"]
    lines.append("  rankdir=LR;")
    lines.append("  node [shape=box];")

    for node_id in sorted(graph.nodes, key=id_order):
        lines.append(f'  "{_esc(node_id)}";')

    for source, target in graph.edges():
        lines.append(f'  "{_esc(source)}" -> "{_esc(target)}";')

    lines.append("}")
    return "\n".join(lines) + "\n"


def write_dot(graph: DependencyGraph, output_file: Path, name: Optional[str] = None) -> Path:
    output_file.parent.mkdir(parents=True, exist_ok=True)
    text = export_dot(graph, name) if name else export_dot(graph)
    output_file.write_text(text, encoding="utf-8")
    return output_file


def issue_line(issue: Issue) -> str:
    return f"{issue.script_name}:{issue.line_number} [{issue.severity.value}] {issue.rule_name}: {issue.message}"


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
