"""Rule-based quality checks for PowerShell scripts.

Every rule is a stateless object with a fixed severity and fixability.
Rules look at the raw text with comments blanked out (offsets and line
numbers are preserved), so they keep working when the parse failed.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .models import Issue, Severity

logger = logging.getLogger(__name__)

Finding = Tuple[int, str, str]  # (offset, message, suggestion)

_BLOCK_COMMENT = re.compile(r"<#.*?#>", re.DOTALL)
_LINE_COMMENT = re.compile(r"(?:^|(?<=\s)|(?<=;))#[^\n]*", re.MULTILINE)


def line_number(text: str, offset: int) -> int:
    """1-based line of ``offset``, counted the way an editor shows it."""
    return text.count("\n", 0, offset) + 1


def line_at(text: str, offset: int) -> str:
    start = text.rfind("\n", 0, offset) + 1
    end = text.find("\n", offset)
    if end == -1:
        end = len(text)
    return text[start:end].strip()


def mask_comments(text: str) -> str:
    """Replace comment characters with spaces, keeping newlines and offsets."""

    def _blank(match: "re.Match[str]") -> str:
        return re.sub(r"[^\n]", " ", match.group(0))

    text = _BLOCK_COMMENT.sub(_blank, text)
    return _LINE_COMMENT.sub(_blank, text)


def find_block_end(text: str, open_index: int) -> int:
    """Index of the brace closing the one at ``open_index``.

    Quoted strings are skipped; returns ``len(text)`` when unbalanced.
    """
    depth = 0
    quote: Optional[str] = None
    i = open_index
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "`" and quote == '"':
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return len(text)


class QualityRule(ABC):
    """Base class: subclasses implement ``find`` over comment-masked text."""

    name: str = ""
    severity: Severity = Severity.WARNING
    fixable: bool = False
    description: str = ""

    def check(self, file_path: str, text: str) -> List[Issue]:
        code = mask_comments(text)
        return [
            Issue(
                rule_name=self.name,
                severity=self.severity,
                script_name=file_path,
                line_number=line_number(text, offset),
                message=message,
                suggestion=suggestion,
                context=line_at(text, offset),
                fixable=self.fixable,
            )
            for offset, message, suggestion in self.find(code)
        ]

    @abstractmethod
    def find(self, code: str) -> Iterator[Finding]:
        ...


AUTOMATIC_VARIABLES: Tuple[str, ...] = (
    "_", "AllNodes", "Args", "ConsoleFileName", "Error", "Event", "EventArgs",
    "EventSubscriber", "ExecutionContext", "False", "ForEach", "Home", "Host",
    "Input", "IsCoreCLR", "IsLinux", "IsMacOS", "IsWindows", "LastExitCode",
    "Matches", "MyInvocation", "NestedPromptLevel", "PID", "PSBoundParameters",
    "PSCmdlet", "PSCommandPath", "PSCulture", "PSDebugContext", "PSEdition",
    "PSHome", "PSItem", "PSScriptRoot", "PSSenderInfo", "PSUICulture",
    "PSVersionTable", "PWD", "Sender", "ShellId", "StackTrace", "Switch",
    "This", "True",
)


class AutomaticVariableAssignment(QualityRule):
    name = "AutomaticVariableAssignment"
    severity = Severity.WARNING
    fixable = True
    description = "Assignment to a reserved automatic variable"

    _pattern = re.compile(
        r"\$(?P<name>" + "|".join(re.escape(v) for v in AUTOMATIC_VARIABLES) + r")\b(?!:)"
        r"\s*(?P<op>[+\-*/%]?=)(?!=)",
        re.IGNORECASE,
    )

    def find(self, code: str) -> Iterator[Finding]:
        for match in self._pattern.finditer(code):
            variable = match.group("name")
            yield (
                match.start(),
                f"'${variable}' is an automatic variable and should not be assigned",
                f"Rename the variable, for example '${variable.strip('_') or 'item'}Value'",
            )


class NullComparisonOrder(QualityRule):
    name = "NullComparisonOrder"
    severity = Severity.WARNING
    fixable = True
    description = "$null must be on the left side of equality comparisons"

    _pattern = re.compile(
        r"(?P<left>[^\s=]+)\s+-(?P<op>[ci]?(?:eq|ne))\s+\$null\b",
        re.IGNORECASE,
    )

    _closers = ")]}"

    @classmethod
    def _operand(cls, token: str) -> str:
        """Drop everything up to the last unmatched opening bracket, then any leading '!'."""
        depth = 0
        for index in range(len(token) - 1, -1, -1):
            char = token[index]
            if char in cls._closers:
                depth += 1
            elif char in "([{":
                if depth == 0:
                    token = token[index + 1:]
                    break
                depth -= 1
        return token.lstrip("!")

    def find(self, code: str) -> Iterator[Finding]:
        for match in self._pattern.finditer(code):
            left = self._operand(match.group("left"))
            if not left or left.lower() == "$null":
                continue
            op = match.group("op")
            yield (
                match.end("left") - len(left),
                f"$null should be on the left side of the comparison with {left}",
                f"Use '$null -{op} {left}'",
            )


class SwitchParameterDefault(QualityRule):
    name = "SwitchParameterDefault"
    severity = Severity.WARNING
    fixable = True
    description = "Switch parameters should not default to true"

    _pattern = re.compile(
        r"\[(?:switch|System\.Management\.Automation\.SwitchParameter)\]\s*"
        r"(?:\[[^\]]*\]\s*)*\$(?P<name>\w+)\s*=\s*(?P<value>[^,)\r\n]+)",
        re.IGNORECASE,
    )

    def find(self, code: str) -> Iterator[Finding]:
        for match in self._pattern.finditer(code):
            if match.group("value").strip().lower() == "$false":
                continue
            name = match.group("name")
            yield (
                match.start(),
                f"Switch parameter '${name}' has a default value of {match.group('value').strip()}",
                f"Remove the default so '${name}' is off unless passed",
            )


APPROVED_VERBS = frozenset(verb.lower() for verb in (
    # Common
    "Add", "Clear", "Close", "Copy", "Enter", "Exit", "Find", "Format", "Get",
    "Hide", "Join", "Lock", "Move", "New", "Open", "Optimize", "Pop", "Push",
    "Redo", "Remove", "Rename", "Reset", "Resize", "Search", "Select", "Set",
    "Show", "Skip", "Split", "Step", "Switch", "Undo", "Unlock", "Watch",
    # Communications
    "Connect", "Disconnect", "Read", "Receive", "Send", "Write",
    # Data
    "Backup", "Checkpoint", "Compare", "Compress", "Convert", "ConvertFrom",
    "ConvertTo", "Dismount", "Edit", "Expand", "Export", "Group", "Import",
    "Initialize", "Limit", "Merge", "Mount", "Out", "Publish", "Restore",
    "Save", "Sync", "Unpublish", "Update",
    # Diagnostic
    "Debug", "Measure", "Ping", "Repair", "Resolve", "Test", "Trace",
    # Lifecycle
    "Approve", "Assert", "Build", "Complete", "Confirm", "Deny", "Deploy",
    "Disable", "Enable", "Install", "Invoke", "Register", "Request",
    "Restart", "Resume", "Start", "Stop", "Submit", "Suspend", "Uninstall",
    "Unregister", "Wait",
    # Security
    "Block", "Grant", "Protect", "Revoke", "Unblock", "Unprotect",
    # Other
    "Use",
))


class UnapprovedVerbs(QualityRule):
    name = "UnapprovedVerbs"
    severity = Severity.WARNING
    fixable = False
    description = "Function verbs must come from the approved verb list"

    _pattern = re.compile(
        r"^\s*(?:function|filter|workflow)\s+(?:(?:global|script|local|private):)?(?P<name>[\w-]+)",
        re.IGNORECASE | re.MULTILINE,
    )

    def find(self, code: str) -> Iterator[Finding]:
        for match in self._pattern.finditer(code):
            name = match.group("name")
            if "-" not in name:
                continue
            verb = name.split("-", 1)[0]
            if verb.lower() in APPROVED_VERBS:
                continue
            yield (
                match.start("name"),
                f"Function '{name}' uses the unapproved verb '{verb}'",
                "Pick a verb from 'Get-Verb', for example Get, Set, New or Invoke",
            )


class EmptyErrorHandler(QualityRule):
    name = "EmptyErrorHandler"
    severity = Severity.WARNING
    fixable = False
    description = "catch blocks must not be empty"

    _pattern = re.compile(r"\bcatch\b\s*(?:\[[^\]]+\]\s*,?\s*)*\{\s*\}", re.IGNORECASE)

    def find(self, code: str) -> Iterator[Finding]:
        for match in self._pattern.finditer(code):
            yield (
                match.start(),
                "Empty catch block swallows errors",
                "Log the error with Write-Error or Write-Warning, or rethrow it",
            )


class UnusedShouldProcessDeclaration(QualityRule):
    name = "UnusedShouldProcessDeclaration"
    severity = Severity.WARNING
    fixable = False
    description = "SupportsShouldProcess declared without calling ShouldProcess"

    _declaration = re.compile(
        r"\bSupportsShouldProcess\b(?:\s*=\s*(?P<value>\$\w+))?",
        re.IGNORECASE,
    )
    _function = re.compile(r"\b(?:function|filter)\s+[\w:-]+\s*(?:\([^)]*\))?\s*\{", re.IGNORECASE)
    _invocation = re.compile(r"\.\s*Should(?:Process|Continue)\s*\(", re.IGNORECASE)

    def find(self, code: str) -> Iterator[Finding]:
        bodies = []
        for match in self._function.finditer(code):
            open_index = match.end() - 1
            bodies.append((open_index, find_block_end(code, open_index)))

        for match in self._declaration.finditer(code):
            value = match.group("value")
            if value and value.lower() == "$false":
                continue
            enclosing = [(s, e) for s, e in bodies if s < match.start() < e]
            if enclosing:
                start, end = max(enclosing)
                scope = code[start:end + 1]
            else:
                scope = code
            if self._invocation.search(scope):
                continue
            yield (
                match.start(),
                "SupportsShouldProcess is declared but ShouldProcess is never called",
                "Wrap state changes in 'if ($PSCmdlet.ShouldProcess(...))' or drop the declaration",
            )


class AvoidInvokeExpression(QualityRule):
    name = "AvoidInvokeExpression"
    severity = Severity.WARNING
    fixable = False
    description = "Invoke-Expression runs arbitrary strings as code"

    _pattern = re.compile(r"(?<![\w-])(?:Invoke-Expression|iex)(?![\w-])", re.IGNORECASE)

    def find(self, code: str) -> Iterator[Finding]:
        for match in self._pattern.finditer(code):
            yield (
                match.start(),
                "Invoke-Expression evaluates strings as code",
                "Call the command or script directly, or use the '&' call operator",
            )


class AvoidWriteHost(QualityRule):
    name = "AvoidWriteHost"
    severity = Severity.INFORMATION
    fixable = True
    description = "Write-Host output cannot be captured or redirected"

    _pattern = re.compile(r"(?<![\w-])Write-Host(?![\w-])", re.IGNORECASE)

    def find(self, code: str) -> Iterator[Finding]:
        for match in self._pattern.finditer(code):
            yield (
                match.start(),
                "Write-Host bypasses the output pipeline",
                "Use Write-Output, Write-Verbose or Write-Information",
            )


class PlainTextSecureString(QualityRule):
    name = "PlainTextSecureString"
    severity = Severity.ERROR
    fixable = False
    description = "Secure strings built from plain text expose secrets"

    _pattern = re.compile(r"\bConvertTo-SecureString\b[^\r\n|;]*?-AsPlainText\b", re.IGNORECASE)

    def find(self, code: str) -> Iterator[Finding]:
        for match in self._pattern.finditer(code):
            yield (
                match.start(),
                "ConvertTo-SecureString is called with -AsPlainText",
                "Read the secret with Get-Credential or a secret store instead of embedding it",
            )


DEFAULT_RULES: Tuple[QualityRule, ...] = (
    AutomaticVariableAssignment(),
    NullComparisonOrder(),
    SwitchParameterDefault(),
    UnapprovedVerbs(),
    EmptyErrorHandler(),
    UnusedShouldProcessDeclaration(),
    AvoidInvokeExpression(),
    AvoidWriteHost(),
    PlainTextSecureString(),
)


class QualityRuleEngine:
    """Run every registered rule over a script.

    A rule that raises contributes no issues for that file; the others
    still run.
    """

    def __init__(
        self,
        rules: Sequence[QualityRule] = DEFAULT_RULES,
        disabled: Iterable[str] = (),
    ) -> None:
        skip = {name.lower() for name in disabled}
        self.rules: Tuple[QualityRule, ...] = tuple(r for r in rules if r.name.lower() not in skip)

    def run(self, file_path: str, text: str) -> List[Issue]:
        issues: List[Issue] = []
        for rule in self.rules:
            try:
                issues.extend(rule.check(file_path, text))
            except Exception as exc:
                logger.warning("Rule %s failed on %s: %s", rule.name, file_path, exc)
        return issues

    def run_all(self, sources: Mapping[str, str]) -> List[Issue]:
        issues: List[Issue] = []
        for file_path in sorted(sources):
            issues.extend(self.run(file_path, sources[file_path]))
        return issues

    def get(self, name: str) -> Optional[QualityRule]:
        for rule in self.rules:
            if rule.name.lower() == name.lower():
                return rule
        return None

    def describe(self) -> List[Dict[str, str]]:
        return [
            {
                "name": rule.name,
                "severity": rule.severity.value,
                "fixable": "yes" if rule.fixable else "no",
                "description": rule.description,
            }
            for rule in self.rules
        ]
