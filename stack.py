from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from lexer import Location, PileError, TokenKind


class PileRuntimeError(PileError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[Location] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message, location=location)
        self.rule = rule
        self.step_index: Optional[int] = None


class PileStackError(PileRuntimeError):
    """Raised when the operand stack is too shallow or not empty when it must be."""


class ValueKind(Enum):
    STRING = "STRING"
    INT = "INT"
    FLOAT = "FLOAT"
    BOOL = "BOOL"


LITERAL_VALUE_KINDS = {
    TokenKind.LIT_STRING: ValueKind.STRING,
    TokenKind.LIT_INT: ValueKind.INT,
    TokenKind.LIT_FLOAT: ValueKind.FLOAT,
    TokenKind.LIT_BOOL: ValueKind.BOOL,
}


@dataclass(frozen=True)
class Value:
    kind: ValueKind
    text: str

    def __str__(self) -> str:
        return self.text


class OperandStack:
    def __init__(self, items: Optional[List[Value]] = None) -> None:
        self._items: List[Value] = list(items) if items else []

    @property
    def depth(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def push(self, value: Value) -> None:
        self._items.append(value)

    def pop(self) -> Value:
        if not self._items:
            raise PileStackError("Stack underflow", rule="pop")
        return self._items.pop()

    def peek(self, depth: int = 0) -> Value:
        if depth < 0 or depth >= len(self._items):
            raise PileStackError(
                f"Cannot peek at depth {depth}: stack holds {len(self._items)} value(s)",
                rule="peek",
            )
        return self._items[-1 - depth]

    def require(self, count: int, rule: str, location: Optional[Location] = None) -> None:
        if len(self._items) < count:
            where = f" at {location}" if location is not None else ""
            raise PileStackError(
                f"{rule} needs {count} value(s) on the stack but found {len(self._items)}{where}",
                location=location,
                rule=rule,
            )

    def snapshot(self) -> List[str]:
        return [value.text for value in self._items]

    def render(self) -> str:
        return "[" + ", ".join(self.snapshot()) + "]"

    def __repr__(self) -> str:
        return f"OperandStack({self.render()})"
