"""Shared fixtures for the Pile test suite."""

from dataclasses import dataclass, field
from typing import List

import pytest

from interpreter import Interpreter


@dataclass
class Capture:
    """Collects everything a program writes to its output and diagnostic sinks."""

    output: List[str] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.output)


@pytest.fixture
def capture() -> Capture:
    return Capture()


@pytest.fixture
def make_interpreter(capture: Capture):
    """Build an interpreter wired to the ``capture`` fixture."""

    def _make(source: str, **options) -> Interpreter:
        return Interpreter(
            source=source,
            filename="test.pc",
            output_sink=capture.output.append,
            diagnostic_sink=capture.diagnostics.append,
            **options,
        )

    return _make
