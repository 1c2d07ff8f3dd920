"""Analysis orchestrator coordinating parsing, graph, rules and sibling scans."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from .config import SKIP_DIRS
from .context import AnalysisContext
from .errors import AnalysisCancelled, AnalysisError
from .graph import CycleDetector, DependencyGraphBuilder
from .models import AnalysisResult, Cycle, DependencyGraph, Issue, Severity, SyntaxProblem

logger = logging.getLogger(__name__)


@dataclass
class FileAnalysis:
    """Self-contained per-file outcome, merged only after all files finish."""

    file_path: str
    source: str = ""
    dependencies: Set[str] = field(default_factory=set)
    issues: List[Issue] = field(default_factory=list)
    resources: Dict[str, int] = field(default_factory=dict)
    degraded: bool = False


class AnalysisOrchestrator:
    """Run every analysis over a directory and merge one ``AnalysisResult``."""

    def __init__(self, context: AnalysisContext):
        self.context = context
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Abort the current run before the next file starts."""
        self._cancelled.set()

    def run(self, directory: Path) -> AnalysisResult:
        root = self._validate(directory)
        config = self.context.config

        files, skipped = self.collect_files(root)
        result = AnalysisResult(total_scripts=len(files), skipped_large_files=len(skipped))
        logger.info("Analyzing %d script(s) under %s", len(files), root)

        analyses = self._analyze_files(root, files)
        for file_path in sorted(analyses):
            result.add_issues(analyses[file_path].issues)

        # Barrier: the graph needs every file's dependencies.
        builder = DependencyGraphBuilder(self.context.extractor)
        graph = builder.build_from_extracted({p: a.dependencies for p, a in analyses.items()})
        cycles = CycleDetector().find_cycles(graph)
        result.graph = graph
        result.cycles = cycles
        result.add_issues(graph_issues(graph, cycles))

        result.add_issues(self.context.duplicate_detector.detect({p: a.source for p, a in analyses.items()}))
        result.resource_usage = {p: analyses[p].resources for p in sorted(analyses) if analyses[p].resources}
        result.degraded_files = sorted(p for p, a in analyses.items() if a.degraded)

        result.finalize()
        result.top_issues = top_issues(result.issues, config.top_issues)
        result.summary = build_summary(result, config.max_file_size)
        return result

    @staticmethod
    def _validate(directory: Path) -> Path:
        if not directory.exists():
            raise AnalysisError(f"Target directory does not exist: {directory}")
        if not directory.is_dir():
            raise AnalysisError(f"Target is not a directory: {directory}")
        try:
            next(directory.iterdir(), None)
        except OSError as exc:
            raise AnalysisError(f"Target directory is not readable: {directory}: {exc}") from exc
        return directory.resolve()

    def collect_files(self, root: Path) -> Tuple[List[Path], List[Path]]:
        """Return ``(files to analyze, files skipped for size)``, sorted."""
        config = self.context.config
        extensions = {ext.lower() for ext in config.extensions}
        files: List[Path] = []
        skipped: List[Path] = []
        for path in sorted(root.rglob("*")):
            if not path.is_file() or path.suffix.lower() not in extensions:
                continue
            if any(part in SKIP_DIRS for part in path.relative_to(root).parts[:-1]):
                continue
            if path.stat().st_size > config.max_file_size:
                logger.info("Skipping %s: larger than %d bytes", path, config.max_file_size)
                skipped.append(path)
                continue
            files.append(path)
        return files, skipped

    def _analyze_files(self, root: Path, files: List[Path]) -> Dict[str, FileAnalysis]:
        analyses: Dict[str, FileAnalysis] = {}
        if not files:
            return analyses

        workers = max(1, min(self.context.config.workers, len(files)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self.analyze_file, root, path): path for path in files}
            for future in as_completed(futures):
                analysis = future.result()
                if analysis is None or self._cancelled.is_set():
                    for pending in futures:
                        pending.cancel()
                    raise AnalysisCancelled("Analysis cancelled by caller")
                analyses[analysis.file_path] = analysis
        return analyses

    def analyze_file(self, root: Path, path: Path) -> Optional[FileAnalysis]:
        """Parse, extract and check one file.

        Returns None when the run was cancelled before this file started.
        Failures degrade to partial results instead of raising.
        """
        if self._cancelled.is_set():
            return None

        rel_path = path.relative_to(root).as_posix()
        analysis = FileAnalysis(file_path=rel_path)
        try:
            analysis.source = path.read_text(encoding="utf-8-sig", errors="replace")
        except OSError as exc:
            logger.warning("Could not read %s: %s", rel_path, exc)
            analysis.degraded = True
            return analysis

        try:
            unit = self.context.parser.parse_text(rel_path, analysis.source)
            analysis.issues.extend(parse_error_issues(rel_path, analysis.source, unit.parse_errors))
            analysis.dependencies = self.context.extractor.extract(unit)
        except Exception as exc:
            logger.warning("Dependency extraction failed for %s: %s", rel_path, exc)
            analysis.degraded = True

        analysis.issues.extend(self.context.rule_engine.run(rel_path, analysis.source))
        analysis.resources = self.context.resource_scanner.scan(analysis.source)
        logger.debug(
            "%s: %d dependencies, %d issues", rel_path, len(analysis.dependencies), len(analysis.issues),
        )
        return analysis


def parse_error_issues(file_path: str, source: str, problems: Iterable[SyntaxProblem]) -> List[Issue]:
    lines = source.split("\n")
    issues: List[Issue] = []
    seen_lines: Set[int] = set()
    for problem in problems:
        if problem.line in seen_lines:
            continue
        seen_lines.add(problem.line)
        context = lines[problem.line - 1].strip() if 0 < problem.line <= len(lines) else ""
        issues.append(Issue(
            rule_name="ParseError",
            severity=Severity.INFORMATION,
            script_name=file_path,
            line_number=problem.line,
            message=problem.message,
            suggestion="Fix the syntax so tree-based checks can run",
            context=context,
            fixable=False,
        ))
    return issues


def graph_issues(graph: DependencyGraph, cycles: List[Cycle]) -> List[Issue]:
    issues: List[Issue] = []
    for cycle in cycles:
        issues.append(Issue(
            rule_name="CircularDependency",
            severity=Severity.WARNING,
            script_name=graph.nodes[cycle.nodes[0]].file_path,
            line_number=1,
            message=f"Circular dependency: {cycle.path}",
            suggestion="Move the shared code into a separate script that none of these depend on",
            context=cycle.path,
            fixable=False,
        ))
    for node_id in graph.self_references():
        issues.append(Issue(
            rule_name="SelfDependency",
            severity=Severity.WARNING,
            script_name=graph.nodes[node_id].file_path,
            line_number=1,
            message=f"Script '{node_id}' references itself",
            suggestion="Remove the self reference",
            context=node_id,
            fixable=False,
        ))
    return issues


def filter_issues(
    issues: Iterable[Issue],
    severity: Union[str, Severity, None] = None,
    fixable_only: bool = False,
) -> List[Issue]:
    """Post-filter issues; ``None`` or ``"All"`` keeps every severity."""
    wanted: Optional[Severity] = None
    if isinstance(severity, Severity):
        wanted = severity
    elif severity and severity.strip().lower() != "all":
        wanted = Severity.parse(severity)
    return [
        issue for issue in issues
        if (wanted is None or issue.severity is wanted) and (issue.fixable or not fixable_only)
    ]


def top_issues(issues: Iterable[Issue], limit: int) -> List[Tuple[str, int]]:
    """Most frequent rules; ties broken by rule name."""
    counts = Counter(issue.rule_name for issue in issues)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return ranked[:limit]


def build_summary(result: AnalysisResult, max_file_size: int) -> List[str]:
    lines = [
        f"Analyzed {result.total_scripts} script(s) and found {result.total_issues} issue(s): "
        f"{result.error_issues} error(s), {result.warning_issues} warning(s), "
        f"{result.information_issues} informational.",
    ]
    if result.skipped_large_files:
        lines.append(f"Skipped {result.skipped_large_files} file(s) larger than {max_file_size} bytes.")
    if result.fixable_issues:
        lines.append(f"{result.fixable_issues} issue(s) have a mechanical fix.")
    if result.cycles:
        lines.append(f"Detected {len(result.cycles)} circular dependency chain(s).")
    if result.top_issues:
        ranked = ", ".join(f"{rule} ({count})" for rule, count in result.top_issues)
        lines.append(f"Most frequent: {ranked}.")

    if result.error_issues:
        lines.append("Recommendation: fix error-level issues first; they fail the run.")
    if result.cycles:
        lines.append("Recommendation: break circular dependencies by extracting shared helpers into a module.")
    if result.fixable_issues:
        lines.append("Recommendation: apply the suggested fixes for fixable issues.")
    if not result.total_issues:
        lines.append("No issues found. The scripts look healthy.")
    return lines
