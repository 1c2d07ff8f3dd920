"""Tests for dependency extraction strategies."""

from types import SimpleNamespace

import pytest

from scriptgraph_cli.extractor import (
    CompositeExtractor,
    TextPatternExtractor,
    TreeWalkExtractor,
    first_positional_argument,
    normalize_dependency_name,
)
from scriptgraph_cli.models import ParsedUnit, SyntaxProblem


def _unit(source, tree=None, errors=()):
    return ParsedUnit(file_path="Main.ps1", source=source, syntax_tree=tree, parse_errors=errors)


class TestNormalizeDependencyName:

    @pytest.mark.parametrize("raw, expected", [
        (".\\Lib\\Utils.ps1", "Utils"),
        ("'./tools/Deploy.ps1'", "Deploy"),
        ('"$PSScriptRoot\\Common.psm1"', "Common"),
        ("Logging", "Logging"),
    ])
    def test_strips_folders_quotes_and_extensions(self, raw, expected):
        assert normalize_dependency_name(raw) == expected

    @pytest.mark.parametrize("raw", ["false", "$false", "'False'", "", "-Force", "$module", "(Get-Item x)"])
    def test_rejects_non_script_names(self, raw):
        assert normalize_dependency_name(raw) is None


class TestTextPatternExtractor:
    """Regex scanning over raw text."""

    def test_dot_source_unquoted(self):
        assert TextPatternExtractor().extract(_unit(". .\\Lib\\Utils.ps1\n")) == {"Utils"}

    def test_dot_source_quoted(self):
        assert TextPatternExtractor().extract(_unit('. "$PSScriptRoot\\Shared.ps1"\n')) == {"Shared"}

    def test_dot_source_join_path(self):
        source = ". (Join-Path $PSScriptRoot 'Config.ps1')\n"
        assert TextPatternExtractor().extract(_unit(source)) == {"Config"}

    def test_call_operator_invocation(self):
        source = '& ".\\Tools\\Deploy.ps1" -Force\n& .\\Cleanup.ps1\n'
        assert TextPatternExtractor().extract(_unit(source)) == {"Deploy", "Cleanup"}

    def test_relative_path_at_line_start(self):
        assert TextPatternExtractor().extract(_unit(".\\Run-Job.ps1 -Mode $false\n")) == {"Run-Job"}

    def test_import_module(self):
        source = (
            "Import-Module ActiveDirectory -MinimumVersion 1.0\n"
            "Import-Module -Name .\\Modules\\Logging.psm1 -Force\n"
            "ipmo -RequiredVersion 2.0 Pester\n"
        )
        assert TextPatternExtractor().extract(_unit(source)) == {"ActiveDirectory", "Logging", "Pester"}

    def test_invoke_expression_reference(self):
        source = "Invoke-Expression \"$PSScriptRoot\\Dynamic.ps1\"\n"
        assert "Dynamic" in TextPatternExtractor().extract(_unit(source))

    def test_comments_are_ignored(self):
        source = "# . .\\Old.ps1\n<#\n& .\\Legacy.ps1\n#>\nWrite-Output 'x'\n"
        assert TextPatternExtractor().extract(_unit(source)) == set()

    def test_boolean_literal_is_never_a_dependency(self):
        source = "Import-Module $false\nImport-Module false\n"
        assert TextPatternExtractor().extract(_unit(source)) == set()


def test_first_positional_argument_skips_value_parameters():
    tokens = ["-Scope", "Global", "-Force", "Az.Accounts"]
    assert first_positional_argument(tokens) == "Az.Accounts"
    assert first_positional_argument(["-Force"]) is None


class TestTreeWalkExtractor:
    """Walking command nodes of a syntax tree."""

    def _tree(self, *commands, node_factory):
        return SimpleNamespace(root_node=node_factory("program", children=list(commands)))

    def test_dot_sourced_command(self, node_factory):
        command = node_factory("command", children=[
            node_factory("command_invokation_operator", "."),
            node_factory("command_name", ".\\Lib\\Utils.ps1"),
        ])
        unit = _unit("", tree=self._tree(command, node_factory=node_factory))

        assert TreeWalkExtractor().extract(unit) == {"Utils"}

    def test_call_operator_requires_script_extension(self, node_factory):
        command = node_factory("command", children=[
            node_factory("command_invokation_operator", "&"),
            node_factory("command_name", "Get-Process"),
        ])
        unit = _unit("", tree=self._tree(command, node_factory=node_factory))

        assert TreeWalkExtractor().extract(unit) == set()

    def test_import_module_first_string_argument(self, node_factory):
        elements = node_factory("command_elements", children=[
            node_factory("command_parameter", "-Name"),
            node_factory("command_argument_sep", " "),
            node_factory("array_literal_expression", "'Logging'", children=[
                node_factory("string_literal", "'Logging'"),
            ]),
        ])
        command = node_factory(
            "command",
            children=[node_factory("command_name", "Import-Module"), elements],
            fields={"command_elements": elements},
        )
        unit = _unit("", tree=self._tree(command, node_factory=node_factory))

        assert TreeWalkExtractor().extract(unit) == {"Logging"}

    def test_import_module_false_is_filtered(self, node_factory):
        elements = node_factory("command_elements", children=[node_factory("generic_token", "false")])
        command = node_factory("command", children=[node_factory("command_name", "ipmo"), elements])
        unit = _unit("", tree=self._tree(command, node_factory=node_factory))

        assert TreeWalkExtractor().extract(unit) == set()

    def test_unit_with_parse_errors_is_skipped(self, node_factory):
        command = node_factory("command", children=[
            node_factory("command_invokation_operator", "."),
            node_factory("command_name", ".\\Utils.ps1"),
        ])
        unit = _unit(
            "",
            tree=self._tree(command, node_factory=node_factory),
            errors=(SyntaxProblem(1, 1, "Unexpected syntax"),),
        )

        assert TreeWalkExtractor().extract(unit) == set()

    def test_unit_without_tree(self):
        assert TreeWalkExtractor().extract(_unit(". .\\Utils.ps1")) == set()


def test_composite_merges_strategies(node_factory):
    command = node_factory("command", children=[
        node_factory("command_invokation_operator", "&"),
        node_factory("command_name", "'.\\Tree.ps1'"),
    ])
    tree = SimpleNamespace(root_node=node_factory("program", children=[command]))
    unit = _unit(". .\\Text.ps1\n", tree=tree)

    assert CompositeExtractor().extract(unit) == {"Text", "Tree"}
