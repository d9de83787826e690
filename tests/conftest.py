from pathlib import Path

import pytest

from tplqi.tools.diagnostics import ListSink
from tplqi.tools.log import configure_logging
from tplqi.tools.nodes import load_template
from tplqi.tools.resolve import DictLoader
from tplqi.tools.semantic import Analyzer
from tplqi.tools.typeinfo import StaticTypeProvider

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True, scope="session")
def quiet_logging():
    configure_logging(level="WARNING")


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def static_types() -> StaticTypeProvider:
    return StaticTypeProvider.from_path(FIXTURES / "types.json")


@pytest.fixture
def analyze(static_types):
    """Run the default inspections over a template document and return the sink."""

    def run(doc, *, templates=None, globals=(), inspections=None, provider=None):
        analyzer = Analyzer(
            inspections,
            provider=provider or static_types,
            loader=DictLoader(templates or {}),
            globals=globals,
        )
        sink = ListSink()
        analyzer.analyze(load_template(doc), sink)
        return sink

    return run
