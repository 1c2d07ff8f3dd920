"""Resource usage scanning: which external systems a script touches."""

from __future__ import annotations

import re
from typing import Dict, Mapping, Pattern

from .rules import mask_comments

RESOURCE_PATTERNS: Mapping[str, Pattern[str]] = {
    "FileSystem": re.compile(
        r"(?<![\w-])(?:Set-Content|Add-Content|Out-File|New-Item|Remove-Item|Copy-Item"
        r"|Move-Item|Rename-Item|Get-Content|Get-ChildItem|Export-Csv|Import-Csv)(?![\w-])",
        re.IGNORECASE,
    ),
    "Network": re.compile(
        r"(?<![\w-])(?:Invoke-WebRequest|Invoke-RestMethod|Test-Connection|Test-NetConnection"
        r"|Start-BitsTransfer|Send-MailMessage)(?![\w-])|\bNet\.WebClient\b|\bNet\.Http\.HttpClient\b",
        re.IGNORECASE,
    ),
    "Registry": re.compile(r"\b(?:HKLM|HKCU|HKCR|HKU|HKCC):|\bRegistry::", re.IGNORECASE),
    "Process": re.compile(
        r"(?<![\w-])(?:Start-Process|Stop-Process|Get-Process|Wait-Process)(?![\w-])",
        re.IGNORECASE,
    ),
    "Service": re.compile(
        r"(?<![\w-])(?:Start-Service|Stop-Service|Restart-Service|Set-Service|New-Service"
        r"|Get-Service)(?![\w-])",
        re.IGNORECASE,
    ),
    "Remoting": re.compile(
        r"(?<![\w-])(?:Invoke-Command|Enter-PSSession|New-PSSession)(?![\w-])",
        re.IGNORECASE,
    ),
    "ScheduledTask": re.compile(
        r"(?<![\w-])(?:Register-ScheduledTask|Unregister-ScheduledTask|New-ScheduledTask\w*)(?![\w-])",
        re.IGNORECASE,
    ),
}


class ResourceUsageScanner:
    def __init__(self, patterns: Mapping[str, Pattern[str]] = RESOURCE_PATTERNS) -> None:
        self.patterns = dict(patterns)

    def scan(self, text: str) -> Dict[str, int]:
        """Count references per resource category; zero counts are omitted."""
        code = mask_comments(text)
        usage: Dict[str, int] = {}
        for category in sorted(self.patterns):
            count = len(self.patterns[category].findall(code))
            if count:
                usage[category] = count
        return usage
