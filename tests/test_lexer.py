"""Tokenizer tests."""

import pytest

from lexer import Location, PileLexError, Token, TokenKind, tokenize


def kinds(source: str) -> list[TokenKind]:
    return [token.kind for token in tokenize(source)]


def texts(source: str) -> list[str]:
    return [token.text for token in tokenize(source)]


def test_routine_declaration():
    assert kinds(": main 2 3 + . end") == [
        TokenKind.ROUTINE_SYM,
        TokenKind.ID_ROUTINE,
        TokenKind.LIT_INT,
        TokenKind.LIT_INT,
        TokenKind.OP_SUM,
        TokenKind.OP_PRINT,
        TokenKind.KW_END,
    ]


def test_locations_track_lines_and_columns():
    tokens = tokenize("@ x 1\n: main", "prog.pc")
    assert [(t.location.line, t.location.column) for t in tokens] == [
        (1, 1),
        (1, 3),
        (1, 5),
        (2, 1),
        (2, 3),
    ]
    assert tokens[0].location == Location("prog.pc", 1, 1)
    assert str(tokens[4].location) == "prog.pc:2:3"


def test_comment_produces_no_token():
    tokens = tokenize("; a comment with \"quotes\" & symbols\n42")
    assert len(tokens) == 1
    assert tokens[0].kind is TokenKind.LIT_INT
    assert tokens[0].location.line == 2


def test_comment_at_end_of_file():
    assert kinds("1 ; trailing") == [TokenKind.LIT_INT]


def test_string_literal():
    token = tokenize('"hi there"')[0]
    assert token.kind is TokenKind.LIT_STRING
    assert token.text == "hi there"
    assert token.location.column == 2


def test_string_keeps_escaped_quote_verbatim():
    token = tokenize(r'"a\"b"')[0]
    assert token.text == r"a\"b"


def test_empty_string():
    token = tokenize('""')[0]
    assert token.kind is TokenKind.LIT_STRING
    assert token.text == ""


def test_string_with_escaped_newline_is_rejected():
    with pytest.raises(PileLexError, match="new line escape"):
        tokenize(r'"line\nbreak"')


def test_unterminated_string():
    with pytest.raises(PileLexError, match="Unterminated"):
        tokenize('"never closed')


def test_numbers():
    tokens = tokenize("12 1.5 -7 -2.25")
    assert [(t.kind, t.text) for t in tokens] == [
        (TokenKind.LIT_INT, "12"),
        (TokenKind.LIT_FLOAT, "1.5"),
        (TokenKind.LIT_INT, "-7"),
        (TokenKind.LIT_FLOAT, "-2.25"),
    ]


def test_minus_before_space_is_subtraction():
    assert kinds("3 - 2") == [TokenKind.LIT_INT, TokenKind.OP_SUB, TokenKind.LIT_INT]


def test_negative_literal_location_points_at_digits():
    token = tokenize("-5")[0]
    assert token.text == "-5"
    assert token.location.column == 2


def test_only_one_radix_point():
    assert kinds("1.2.3") == [TokenKind.LIT_FLOAT, TokenKind.OP_PRINT, TokenKind.LIT_INT]
    assert texts("1.2.3") == ["1.2", ".", "3"]


def test_trailing_dot_is_print():
    assert kinds("5.") == [TokenKind.LIT_INT, TokenKind.OP_PRINT]


def test_keywords():
    assert kinds("end dup drop swap over cr emit true false") == [
        TokenKind.KW_END,
        TokenKind.KW_DUP,
        TokenKind.KW_DROP,
        TokenKind.KW_SWAP,
        TokenKind.KW_OVER,
        TokenKind.KW_CR,
        TokenKind.OP_EMIT,
        TokenKind.LIT_BOOL,
        TokenKind.LIT_BOOL,
    ]


def test_identifier_after_sigil_ignores_keywords():
    assert kinds(": dup end") == [TokenKind.ROUTINE_SYM, TokenKind.ID_ROUTINE, TokenKind.KW_END]
    assert kinds("@ end 1") == [TokenKind.VAR_SYM, TokenKind.ID_VAR, TokenKind.LIT_INT]


def test_identifier_with_hyphen_and_digits():
    tokens = tokenize("print-twice x2")
    assert [(t.kind, t.text) for t in tokens] == [
        (TokenKind.ID_INVOCATION, "print-twice"),
        (TokenKind.ID_INVOCATION, "x2"),
    ]


def test_symbols():
    assert kinds("@ : + - * / % == = .mem .") == [
        TokenKind.VAR_SYM,
        TokenKind.ROUTINE_SYM,
        TokenKind.OP_SUM,
        TokenKind.OP_SUB,
        TokenKind.OP_MUL,
        TokenKind.OP_DIV,
        TokenKind.OP_MOD,
        TokenKind.OP_EQ,
        TokenKind.OP_BIND,
        TokenKind.OP_PRINT_MEM,
        TokenKind.OP_PRINT,
    ]


def test_unknown_symbol():
    with pytest.raises(PileLexError, match="'&'") as info:
        tokenize("1 2 &", "bad.pc")
    assert info.value.location == Location("bad.pc", 1, 5)


def test_render_round_trip():
    source = '@ greeting "hi"\n: main greeting . 2 -3 + 1.5 drop .mem end'
    rendered = "".join(token.render() for token in tokenize(source))
    assert rendered == "".join(source.split())


def test_render_round_trip_drops_comments():
    source = ": main ; say five\n  5 . end"
    rendered = "".join(token.render() for token in tokenize(source))
    assert rendered == ":main5.end"


def test_describe():
    token = Token(TokenKind.KW_DUP, "dup", Location("f.pc", 3, 7))
    assert token.describe() == "KW_DUP         :3:7     dup"
