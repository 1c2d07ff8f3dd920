"""Pytest configuration and fixtures for ScriptGraph CLI tests."""

import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

import pytest

from scriptgraph_cli.config import AnalysisConfig
from scriptgraph_cli.context import AnalysisContext
from scriptgraph_cli.parser import SourceParser


FIXED_TIME = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class TextOnlyParser(SourceParser):
    """Parser without a grammar: every unit is text-only."""

    @staticmethod
    def _load_grammar():
        return None


class FakeNode:
    """Minimal stand-in for a Tree-sitter node."""

    def __init__(self, type, text="", children=(), fields=None, row=0, column=0,
                 is_error=False, is_missing=False):
        self.type = type
        self.text = text.encode("utf-8") if isinstance(text, str) else text
        self.children = list(children)
        self.fields = fields or {}
        self.start_point = (row, column)
        self.is_error = is_error
        self.is_missing = is_missing

    def child_by_field_name(self, name):
        return self.fields.get(name)


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Never read or write the user's real ~/.scriptgraph/config.toml."""
    monkeypatch.setattr("scriptgraph_cli.config.CONFIG_FILE", tmp_path / "user-config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_scripts_path() -> Path:
    """Get path to the sample script collection (A -> B -> C -> A plus Helpers)."""
    return Path(__file__).parent / "fixtures" / "sample_scripts"


@pytest.fixture
def sample_copy(temp_dir: Path, sample_scripts_path: Path) -> Path:
    """Writable copy of the sample scripts."""
    target = temp_dir / "scripts"
    shutil.copytree(sample_scripts_path, target)
    return target


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_TIME


@pytest.fixture
def text_parser() -> SourceParser:
    return TextOnlyParser()


@pytest.fixture
def node_factory():
    return FakeNode


@pytest.fixture
def make_context(text_parser, fixed_clock):
    """Build an ``AnalysisContext`` with a text-only parser and a fixed clock."""

    def _make(**config_values) -> AnalysisContext:
        config = AnalysisConfig(**{"workers": 2, **config_values})
        return AnalysisContext.create(config=config, parser=text_parser, clock=fixed_clock)

    return _make


@pytest.fixture
def no_grammar(monkeypatch):
    """Make every SourceParser built during the test text-only."""
    monkeypatch.setattr(SourceParser, "_load_grammar", staticmethod(lambda: None))


def write_scripts(root: Path, scripts: dict) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for name, text in scripts.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def script_dir(temp_dir: Path):
    """Factory writing ``{relative name: text}`` into a fresh directory."""

    def _write(scripts: dict) -> Path:
        return write_scripts(temp_dir / "src", scripts)

    return _write
