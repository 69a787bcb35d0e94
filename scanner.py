from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from lexer import LITERAL_KINDS, Location, PileError, Token, TokenKind
from stack import LITERAL_VALUE_KINDS, Value


ENTRY_POINT = "main"

DECLARATION_KINDS = frozenset({
    TokenKind.VAR_SYM,
    TokenKind.ROUTINE_SYM,
    TokenKind.ID_VAR,
    TokenKind.ID_ROUTINE,
})


class PileScopeError(PileError):
    """Raised when the token stream does not form a valid module."""


@dataclass
class Routine:
    name: str
    location: Location
    body: List[Token] = field(default_factory=list)

    @property
    def is_entry_point(self) -> bool:
        return self.name == ENTRY_POINT


@dataclass
class Variable:
    name: str
    value: Value
    location: Location


@dataclass(frozen=True)
class DeadCode:
    kind: str
    name: str
    location: Location

    def describe(self) -> str:
        return f"dead code: {self.kind} '{self.name}' at {self.location}"


@dataclass
class GlobalScope:
    file: str
    routines: List[Routine] = field(default_factory=list)
    variables: List[Variable] = field(default_factory=list)
    dead_code: List[DeadCode] = field(default_factory=list)

    def find_routine(self, name: str) -> Optional[Routine]:
        for routine in self.routines:
            if routine.name == name:
                return routine
        return None

    def find_variable(self, name: str) -> Optional[Variable]:
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None

    @property
    def entry_point(self) -> Routine:
        routine = self.find_routine(ENTRY_POINT)
        if routine is None:
            raise PileScopeError(f"Missing entry point: no routine named '{ENTRY_POINT}' in {self.file}")
        return routine

    def describe_variables(self) -> List[str]:
        return [f"{v.name} = {v.value.kind.value} {v.value.text}" for v in self.variables]

    def describe_routines(self) -> List[str]:
        lines: List[str] = []
        for routine in self.routines:
            lines.append(f"ID: {routine.name}")
            lines.extend(f"   {token.describe()}" for token in routine.body)
        return lines


class Scanner:
    """Partitions a module's tokens into routines and variables.

    Declarations that follow the entry point are unreachable; they are recorded
    in ``GlobalScope.dead_code`` and left out of the scope.
    """

    def __init__(self, tokens: List[Token], filename: str) -> None:
        self.tokens = tokens
        self.filename = filename
        self.index = 0
        self.entry_point_found = False

    def scan(self) -> GlobalScope:
        scope = GlobalScope(file=self.filename)
        while not self._eof:
            token = self._peek()
            if token.kind is TokenKind.VAR_SYM:
                self._expect_next(TokenKind.ID_VAR, "'@' must be followed by a variable name")
                self.index += 1
            elif token.kind is TokenKind.ROUTINE_SYM:
                self._expect_next(TokenKind.ID_ROUTINE, "':' must be followed by a routine name")
                self.index += 1
            elif token.kind is TokenKind.ID_VAR:
                self._scan_variable(scope)
            elif token.kind is TokenKind.ID_ROUTINE:
                self._scan_routine(scope)
            else:
                raise PileScopeError(
                    f"Token not allowed at top level: {token.kind.value} '{token.text}' at {token.location}",
                    location=token.location,
                )
        if not self.entry_point_found:
            raise PileScopeError(
                f"Missing entry point: no routine named '{ENTRY_POINT}' in {self.filename}"
            )
        return scope

    def _scan_variable(self, scope: GlobalScope) -> None:
        name = self._consume(TokenKind.ID_VAR)
        self._expect_previous(name, TokenKind.VAR_SYM)
        if self.entry_point_found:
            scope.dead_code.append(DeadCode("variable", name.text, name.location))
            if not self._eof:
                self.index += 1
            return
        if self._eof:
            raise PileScopeError(
                f"Variable '{name.text}' has no initial value at {name.location}",
                location=name.location,
            )
        value = self._peek()
        if value.kind not in LITERAL_KINDS:
            raise PileScopeError(
                f"Variable '{name.text}' must be initialised with a literal, found "
                f"{value.kind.value} '{value.text}' at {value.location}",
                location=value.location,
            )
        if name.text == ENTRY_POINT:
            raise PileScopeError(
                f"'{ENTRY_POINT}' can't be used as a variable name at {name.location}",
                location=name.location,
            )
        self.index += 1
        scope.variables.append(
            Variable(name=name.text, value=Value(LITERAL_VALUE_KINDS[value.kind], value.text), location=name.location)
        )

    def _scan_routine(self, scope: GlobalScope) -> None:
        name = self._consume(TokenKind.ID_ROUTINE)
        self._expect_previous(name, TokenKind.ROUTINE_SYM)
        if self.entry_point_found:
            scope.dead_code.append(DeadCode("routine", name.text, name.location))
            while not self._eof:
                if self._advance().kind is TokenKind.KW_END:
                    break
            return

        routine = Routine(name=name.text, location=name.location)
        while True:
            if self._eof:
                raise PileScopeError(
                    f"Routine '{name.text}' is missing its 'end' (declared at {name.location})",
                    location=name.location,
                )
            token = self._advance()
            if token.kind in DECLARATION_KINDS:
                raise PileScopeError(
                    f"Can't nest declarations inside routine '{name.text}': '{token.text}' at {token.location}",
                    location=token.location,
                )
            routine.body.append(token)
            if token.kind is TokenKind.KW_END:
                break
        if routine.is_entry_point:
            self.entry_point_found = True
        scope.routines.append(routine)

    def _expect_previous(self, token: Token, kind: TokenKind) -> None:
        position = self.index - 2
        if position < 0 or self.tokens[position].kind is not kind:
            raise PileScopeError(
                f"Declaration '{token.text}' is not preceded by {kind.value} at {token.location}",
                location=token.location,
            )

    def _expect_next(self, kind: TokenKind, message: str) -> None:
        sigil = self._peek()
        position = self.index + 1
        if position >= len(self.tokens) or self.tokens[position].kind is not kind:
            raise PileScopeError(f"{message} at {sigil.location}", location=sigil.location)

    def _consume(self, kind: TokenKind) -> Token:
        token = self._peek()
        if token.kind is not kind:
            raise PileScopeError(
                f"Expected token {kind.value} but found {token.kind.value} at {token.location}",
                location=token.location,
            )
        self.index += 1
        return token

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.tokens)

    def _peek(self) -> Token:
        return self.tokens[self.index]


def scan(tokens: List[Token], filename: str = "<string>") -> GlobalScope:
    return Scanner(tokens, filename).scan()
