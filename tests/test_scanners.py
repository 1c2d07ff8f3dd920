"""Tests for duplicate code detection and resource usage scanning."""

from scriptgraph_cli.duplicates import DuplicateCodeDetector
from scriptgraph_cli.models import Severity
from scriptgraph_cli.resources import ResourceUsageScanner


SHARED_BLOCK = "\n".join(f"$value{i} = Get-Item 'item{i}'" for i in range(6)) + "\n"


class TestDuplicateCodeDetector:

    def test_repeated_block_flags_later_file(self):
        sources = {
            "b.ps1": "Write-Output 'b'\n" + SHARED_BLOCK,
            "a.ps1": SHARED_BLOCK,
        }

        issues = DuplicateCodeDetector(window=6).detect(sources)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.rule_name == "DuplicateCode"
        assert issue.script_name == "b.ps1"
        assert issue.line_number == 2
        assert issue.severity is Severity.INFORMATION
        assert issue.message == "Lines 2-7 duplicate a.ps1:1"

    def test_longer_overlap_reported_once(self):
        block = "\n".join(f"Set-Thing -Id {i}" for i in range(9)) + "\n"

        issues = DuplicateCodeDetector(window=6).detect({"a.ps1": block, "b.ps1": block})

        assert [(i.script_name, i.line_number) for i in issues] == [("b.ps1", 1)]
        assert issues[0].message == "Lines 1-9 duplicate a.ps1:1"

    def test_blocks_in_opposite_order_are_both_reported(self):
        alpha = "\n".join(f"$alpha{i} = Get-Item 'a{i}'" for i in range(6))
        beta = "\n".join(f"$beta{i} = Get-Item 'b{i}'" for i in range(6))
        filler_a = "\n".join(f"Write-Output 'a-filler {i}'" for i in range(10))
        filler_b = "\n".join(f"Write-Output 'b-filler {i}'" for i in range(10))
        sources = {
            "A.ps1": "\n".join([alpha, filler_a, beta]) + "\n",
            "B.ps1": "\n".join([beta, filler_b, alpha]) + "\n",
        }

        issues = DuplicateCodeDetector(window=6).detect(sources)

        assert [(i.script_name, i.line_number, i.message) for i in issues] == [
            ("B.ps1", 1, "Lines 1-6 duplicate A.ps1:17"),
            ("B.ps1", 17, "Lines 17-22 duplicate A.ps1:1"),
        ]

    def test_line_numbers_count_newlines_only(self):
        sources = {
            "a.ps1": SHARED_BLOCK,
            "b.ps1": "Write-Output 'b'\x0c# page break\n" + SHARED_BLOCK,
        }

        issues = DuplicateCodeDetector(window=6).detect(sources)

        assert [(i.line_number, i.context) for i in issues] == [(2, "$value0 = Get-Item 'item0'")]

    def test_trivial_lines_and_comments_are_ignored(self):
        noise = "{\n}\n\n# comment\n" * 4

        assert DuplicateCodeDetector(window=3).detect({"a.ps1": noise, "b.ps1": noise}) == []

    def test_short_files(self):
        assert DuplicateCodeDetector(window=6).detect({"a.ps1": "Get-Date\n", "b.ps1": "Get-Date\n"}) == []


class TestResourceUsageScanner:

    def test_counts_by_category(self):
        text = (
            "Invoke-RestMethod -Uri $uri\n"
            "Get-Service -Name spooler | Restart-Service\n"
            "Set-ItemProperty -Path HKLM:\\Software\\App -Name X -Value 1\n"
            "# Start-Process notepad\n"
        )

        usage = ResourceUsageScanner().scan(text)

        assert usage == {"Network": 1, "Registry": 1, "Service": 2}

    def test_nothing_found(self):
        assert ResourceUsageScanner().scan("Write-Output 'hi'") == {}
