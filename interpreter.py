from __future__ import annotations
import json
import re
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from lexer import ESCAPED_NEWLINE, LITERAL_KINDS, Lexer, Location, Token, TokenKind
from scanner import GlobalScope, Routine, Scanner
from stack import LITERAL_VALUE_KINDS, OperandStack, PileRuntimeError, PileStackError, Value, ValueKind


DEFAULT_MAX_DEPTH = 200

ARITHMETIC_KINDS = frozenset({
    TokenKind.OP_SUM,
    TokenKind.OP_SUB,
    TokenKind.OP_MUL,
    TokenKind.OP_DIV,
    TokenKind.OP_MOD,
})

# C atoi/atof read the longest numeric prefix and ignore the rest.
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_NUMBER = re.compile(r"[+-]?\d+(?:\.\d+)?")


class PileNameError(PileRuntimeError):
    """Raised when an identifier resolves to neither a routine nor a variable."""


class PileArithmeticError(PileRuntimeError):
    """Raised for non-numeric operands, division by zero and overflow."""


def _leading_int(text: str) -> int:
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def _leading_float(text: str) -> float:
    match = _FLOAT_PREFIX.match(text)
    return float(match.group(0)) if match else 0.0


def format_number(result: np.float32) -> Value:
    fraction, _whole = np.modf(result)
    if fraction == 0:
        return Value(ValueKind.INT, "%d" % int(result))
    return Value(ValueKind.FLOAT, "%f" % float(result))


def apply_operator(kind: TokenKind, a: np.float32, b: np.float32) -> np.float32:
    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        if kind is TokenKind.OP_SUM:
            return np.float32(a + b)
        if kind is TokenKind.OP_SUB:
            return np.float32(a - b)
        if kind is TokenKind.OP_MUL:
            return np.float32(a * b)
        if kind is TokenKind.OP_DIV:
            return np.float32(a / b)
        if kind is TokenKind.OP_MOD:
            return np.float32(np.fmod(a, np.float32(int(b))))
    raise PileRuntimeError(f"Not an arithmetic operator: {kind.value}", rule=kind.value)


@dataclass
class Frame:
    name: str
    frame_id: str
    call_location: Optional[Location]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    location: Optional[Location]
    statement: Optional[str]
    rule: str
    stack_snapshot: Optional[List[str]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        location: Optional[Location],
        statement: Optional[str],
        rule: str,
        stack_snapshot: Optional[List[str]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            frame_id=frame.frame_id if frame else None,
            location=location,
            statement=statement,
            rule=rule,
            stack_snapshot=stack_snapshot,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)


TokenHandler = Callable[[Routine, int, Token], None]


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str = "<string>",
        verbose: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
        output_sink: Optional[Callable[[str], None]] = None,
        diagnostic_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.source = source
        self.filename = filename
        self.verbose = verbose
        self.max_depth = max_depth
        self.output_sink = output_sink or (lambda text: print(text, end=""))
        self.diagnostic_sink = diagnostic_sink or (lambda text: print(text, file=sys.stderr))

        self.tokens: List[Token] = []
        self.scope: GlobalScope = GlobalScope(file=filename)
        self.stack = OperandStack()
        self.logger = StateLogger(verbose=verbose)
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        self._parsed = False

        self.handlers: Dict[TokenKind, TokenHandler] = {
            TokenKind.LIT_STRING: self._push_string,
            TokenKind.LIT_INT: self._push_literal,
            TokenKind.LIT_FLOAT: self._push_literal,
            TokenKind.LIT_BOOL: self._push_literal,
            TokenKind.OP_EMIT: self._emit,
            TokenKind.OP_PRINT: self._print,
            TokenKind.OP_PRINT_MEM: self._print_mem,
            TokenKind.KW_DUP: self._dup,
            TokenKind.KW_DROP: self._drop,
            TokenKind.KW_SWAP: self._swap,
            TokenKind.KW_OVER: self._over,
            TokenKind.KW_CR: self._carriage_return,
            TokenKind.OP_BIND: self._bind,
            TokenKind.ID_INVOCATION: self._invoke,
            TokenKind.KW_END: self._end,
            TokenKind.OP_EQ: self._equals,
        }
        for kind in ARITHMETIC_KINDS:
            self.handlers[kind] = self._arithmetic

    def parse(self) -> GlobalScope:
        self.tokens = Lexer(self.source, self.filename).tokenize()
        self.scope = Scanner(self.tokens, self.filename).scan()
        for dead in self.scope.dead_code:
            self.diagnostic_sink(dead.describe())
        self._parsed = True
        return self.scope

    def run(self) -> None:
        scope = self.scope if self._parsed else self.parse()
        main = scope.entry_point
        self.stack = OperandStack()
        # Frames of a failed run stay on call_stack for the traceback until the next run.
        self.call_stack = []
        self.frame_counter = 0
        self.logger = StateLogger(verbose=self.verbose)
        try:
            self.execute(main, self.stack)
        except PileRuntimeError as error:
            if error.step_index is None and self.logger.entries:
                error.step_index = self.logger.entries[-1].step_index
            raise
        except RecursionError:
            raise self._wrap_internal("Call depth exceeded the host recursion limit")
        except Exception as exc:
            # Surface unexpected Python-level failures as interpreter errors so
            # the CLI can format them with a Pile traceback.
            raise self._wrap_internal(f"Internal interpreter error: {exc}")

    def execute(self, routine: Routine, stack: OperandStack, call_location: Optional[Location] = None) -> None:
        if len(self.call_stack) >= self.max_depth:
            raise PileRuntimeError(
                f"Call depth exceeded {self.max_depth} while calling '{routine.name}'",
                location=call_location,
                rule="call",
            )
        previous_stack = self.stack
        self.stack = stack
        frame = self._new_frame(routine.name, call_location)
        self.call_stack.append(frame)
        handlers = self.handlers
        record = self.logger.record
        verbose = self.verbose

        body = routine.body
        for index, token in enumerate(body):
            record(
                frame=frame,
                location=token.location,
                statement=token.render(),
                rule=token.kind.value,
                stack_snapshot=stack.snapshot() if verbose else None,
            )
            handler = handlers.get(token.kind)
            if handler is None:
                raise PileRuntimeError(
                    f"Can't interpret this token: {token.kind.value} '{token.text}' at {token.location}",
                    location=token.location,
                    rule=token.kind.value,
                )
            handler(routine, index, token)

        self.call_stack.pop()
        self.stack = previous_stack

    # ---- literals ----

    def _push_string(self, routine: Routine, index: int, token: Token) -> None:
        if ESCAPED_NEWLINE in token.text:
            raise PileRuntimeError(
                f"Can't use new line escape char inside string at {token.location}",
                location=token.location,
                rule=token.kind.value,
            )
        self.stack.push(Value(ValueKind.STRING, token.text))

    def _push_literal(self, routine: Routine, index: int, token: Token) -> None:
        self.stack.push(Value(LITERAL_VALUE_KINDS[token.kind], token.text))

    # ---- arithmetic ----

    def _arithmetic(self, routine: Routine, index: int, token: Token) -> None:
        stack = self.stack
        rule = token.kind.value
        stack.require(2, rule, token.location)
        top = stack.peek(0)
        second = stack.peek(1)
        if token.kind is TokenKind.OP_DIV and _NUMBER.fullmatch(top.text) and float(top.text) == 0:
            raise PileArithmeticError(
                f"Can't divide by zero at {token.location}",
                location=token.location,
                rule=rule,
            )
        # Operands whose integer prefix is zero are rejected, including a literal 0.
        if _leading_int(top.text) == 0 or _leading_int(second.text) == 0:
            raise PileArithmeticError(
                f"Tried to operate on values that are not numbers: '{second.text}' '{top.text}' at {token.location}",
                location=token.location,
                rule=rule,
            )
        with np.errstate(over="ignore"):
            b = np.float32(_leading_float(stack.pop().text))
            a = np.float32(_leading_float(stack.pop().text))
        if not (np.isfinite(a) and np.isfinite(b)):
            raise PileArithmeticError(
                f"Arithmetic overflow: operand out of range in {second.text} {token.text} {top.text} at {token.location}",
                location=token.location,
                rule=rule,
            )
        result = apply_operator(token.kind, a, b)
        if not np.isfinite(result):
            raise PileArithmeticError(
                f"Arithmetic overflow: {second.text} {token.text} {top.text} at {token.location}",
                location=token.location,
                rule=rule,
            )
        stack.push(format_number(result))

    # ---- output ----

    def _emit(self, routine: Routine, index: int, token: Token) -> None:
        self.stack.require(1, token.kind.value, token.location)
        text = self.stack.peek(0).text
        if not text or not all(ch in "0123456789" for ch in text):
            raise PileRuntimeError(
                f"emit expects a character code, found '{text}' at {token.location}",
                location=token.location,
                rule=token.kind.value,
            )
        code = int(text)
        if code > sys.maxunicode:
            raise PileRuntimeError(
                f"Character code out of range: {code} at {token.location}",
                location=token.location,
                rule=token.kind.value,
            )
        self.stack.pop()
        self.output_sink(chr(code))

    def _print(self, routine: Routine, index: int, token: Token) -> None:
        self.stack.require(1, token.kind.value, token.location)
        self.output_sink(self.stack.pop().text)

    def _print_mem(self, routine: Routine, index: int, token: Token) -> None:
        self.output_sink(self.stack.render() + "\n")

    def _carriage_return(self, routine: Routine, index: int, token: Token) -> None:
        self.output_sink("\n")

    # ---- stack words ----

    def _dup(self, routine: Routine, index: int, token: Token) -> None:
        self.stack.require(1, token.kind.value, token.location)
        self.stack.push(self.stack.peek(0))

    def _drop(self, routine: Routine, index: int, token: Token) -> None:
        self.stack.require(1, token.kind.value, token.location)
        self.stack.pop()

    def _swap(self, routine: Routine, index: int, token: Token) -> None:
        self.stack.require(2, token.kind.value, token.location)
        top = self.stack.pop()
        second = self.stack.pop()
        self.stack.push(top)
        self.stack.push(second)

    def _over(self, routine: Routine, index: int, token: Token) -> None:
        self.stack.require(2, token.kind.value, token.location)
        self.stack.push(self.stack.peek(1))

    # ---- names ----

    def _bind(self, routine: Routine, index: int, token: Token) -> None:
        target = bind_target(routine.body, index)
        if target is None:
            raise PileRuntimeError(
                f"'=' must follow a variable name at {token.location}",
                location=token.location,
                rule=token.kind.value,
            )
        variable = self.scope.find_variable(target.text)
        if variable is None:
            raise PileNameError(
                f"Variable has not been declared: '{target.text}' at {target.location}",
                location=target.location,
                rule=token.kind.value,
            )
        self.stack.require(1, token.kind.value, token.location)
        variable.value = self.stack.pop()

    def _invoke(self, routine: Routine, index: int, token: Token) -> None:
        callee = self.scope.find_routine(token.text)
        if callee is not None:
            self.execute(callee, self.stack, token.location)
            return
        variable = self.scope.find_variable(token.text)
        target = is_bind_target(routine.body, index)
        if variable is not None:
            if not target:
                self.stack.push(variable.value)
            return
        if target:
            message = f"Variable has not been declared: '{token.text}' at {token.location}"
        else:
            message = f"Symbol has not been declared: '{token.text}' at {token.location}"
        raise PileNameError(message, location=token.location, rule=token.kind.value)

    # ---- control ----

    def _end(self, routine: Routine, index: int, token: Token) -> None:
        if routine.is_entry_point and self.stack.depth != 0:
            raise PileStackError(
                f"Stack is not empty at the end of '{routine.name}': {self.stack.render()} at {token.location}",
                location=token.location,
                rule=token.kind.value,
            )

    def _equals(self, routine: Routine, index: int, token: Token) -> None:
        raise PileRuntimeError(
            f"'==' is not implemented yet at {token.location}",
            location=token.location,
            rule=token.kind.value,
        )

    # ---- bookkeeping ----

    def _new_frame(self, name: str, call_location: Optional[Location]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, call_location=call_location)

    def _wrap_internal(self, message: str) -> PileRuntimeError:
        location = None
        if self.logger.entries:
            location = self.logger.entries[-1].location
        wrapped = PileRuntimeError(message, location=location, rule="internal")
        if self.logger.entries:
            wrapped.step_index = self.logger.entries[-1].step_index
        return wrapped


def bind_target(body: List[Token], index: int) -> Optional[Token]:
    """Return the identifier bound by the '=' at ``body[index]``.

    Both ``value name =`` and ``name literal =`` are accepted.
    """
    if index >= 1 and body[index - 1].kind is TokenKind.ID_INVOCATION:
        return body[index - 1]
    if (
        index >= 2
        and body[index - 1].kind in LITERAL_KINDS
        and body[index - 2].kind is TokenKind.ID_INVOCATION
    ):
        return body[index - 2]
    return None


def is_bind_target(body: List[Token], index: int) -> bool:
    following = body[index + 1:index + 3]
    if following and following[0].kind is TokenKind.OP_BIND:
        return True
    return (
        len(following) == 2
        and following[0].kind in LITERAL_KINDS
        and following[1].kind is TokenKind.OP_BIND
    )


def run(source: str, filename: str = "<string>", **options: Any) -> str:
    """Run ``source`` and return everything it printed."""
    output: List[str] = []
    interpreter = Interpreter(source=source, filename=filename, output_sink=output.append, **options)
    interpreter.run()
    return "".join(output)


@dataclass
class TracebackFrame:
    name: str
    call_location: Optional[Location]
    token: Optional[StateEntry]

    @property
    def location(self) -> Optional[Location]:
        return self.token.location if self.token else self.call_location


class TracebackFormatter:
    """Renders the routine call chain of a failed run, outermost call first.

    Each frame shows where the routine was called from and the last token it
    executed; for every frame but the innermost that token is the call to the
    next routine down.
    """

    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        logger = self.interpreter.logger
        return [
            TracebackFrame(
                name=frame.name,
                call_location=frame.call_location,
                token=logger.last_entry_for_frame(frame.frame_id),
            )
            for frame in self.interpreter.call_stack
        ]

    def format_text(self, error: PileRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            location = frame.location
            if location:
                lines.append(
                    f"  File \"{location.file}\", line {location.line}, "
                    f"column {location.column}, in {frame.name}"
                )
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.call_location:
                lines.append(f"    called from {frame.call_location}")
            entry = frame.token
            if entry is None:
                continue
            if entry.statement:
                lines.append(f"    {entry.statement}  [{entry.rule}]")
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}")
            if verbose and entry.stack_snapshot is not None:
                lines.append(f"    Stack: [{', '.join(entry.stack_snapshot)}]")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: PileRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for depth, frame in enumerate(self.build_frames()):
            item: Dict[str, Any] = {"depth": depth, "name": frame.name}
            if frame.call_location:
                item["call_location"] = _location_json(frame.call_location)
            entry = frame.token
            if entry is not None:
                if entry.location:
                    item["source_location"] = dict(_location_json(entry.location), statement=entry.statement)
                item["token_kind"] = entry.rule
                item["state_id"] = entry.state_id
                item["step_index"] = entry.step_index
                if entry.stack_snapshot is not None:
                    item["stack_snapshot"] = entry.stack_snapshot
            frames_json.append(item)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)


def _location_json(location: Location) -> Dict[str, Any]:
    return {"file": location.file, "line": location.line, "column": location.column}
