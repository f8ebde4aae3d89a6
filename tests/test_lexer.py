"""
Tests for the OpenQASM 3 lexer.
"""

import pytest

from qasmcc.error import LexError
from qasmcc.lexer import Lexer, tokenize

from .helpers import token_types


class TestBasicTokens:
    """Keywords, identifiers and punctuation."""

    def test_declaration(self):
        assert token_types("qubit[2] q;") == [
            'QUBIT', 'LBRACKET', 'INTEGER_LITERAL', 'RBRACKET', 'IDENTIFIER', 'SEMICOLON']

    def test_longest_operator_match(self):
        assert token_types("a <<= b ** c ++ d") == [
            'IDENTIFIER', 'COMPOUND_ASSIGNMENT_OPERATOR', 'IDENTIFIER',
            'DOUBLE_ASTERISK', 'IDENTIFIER', 'DOUBLE_PLUS', 'IDENTIFIER']

    def test_unicode_identifiers(self):
        toks = list(tokenize("θ π_2"))
        assert [t.type for t in toks] == ['IDENTIFIER', 'IDENTIFIER']
        assert [str(t) for t in toks] == ['θ', 'π_2']

    def test_hardware_qubit(self):
        tok, = tokenize("$12")
        assert tok.type == 'HARDWARE_QUBIT'
        assert str(tok) == '$12'

    def test_boolean_literals(self):
        assert token_types("true false") == ['BOOLEAN_LITERAL', 'BOOLEAN_LITERAL']


class TestLiterals:
    """Numeric, timing and string literals."""

    def test_integer_forms(self):
        assert token_types("0x1F 0o17 0b1010 1_000") == ['INTEGER_LITERAL'] * 4

    def test_float_forms(self):
        assert token_types("1.5 .5 1e3 1.5e-3") == ['FLOAT_LITERAL'] * 4

    def test_imaginary(self):
        assert token_types("2im 1.5 im") == ['IMAGINARY_LITERAL', 'IMAGINARY_LITERAL']

    def test_timing_units(self):
        assert token_types("100ns 4 us 2.5ms 10dt 1s") == ['TIMING_LITERAL'] * 5

    def test_bitstring_vs_string(self):
        assert token_types('"0101" "stdgates.inc"') == ['BITSTRING_LITERAL', 'STRING_LITERAL']

    def test_unterminated_string(self):
        with pytest.raises(LexError):
            list(tokenize('include "abc'))


class TestComments:
    """Line comments and nested block comments."""

    def test_line_comment(self):
        assert token_types("a // comment\nb") == ['IDENTIFIER', 'IDENTIFIER']

    def test_nested_block_comment(self):
        assert token_types("/* a /* b */ c */ x") == ['IDENTIFIER']

    def test_unterminated_block_comment(self):
        with pytest.raises(LexError, match="未闭合"):
            list(tokenize("x /* /* */"))

    def test_comment_depth_limit(self):
        with pytest.raises(LexError):
            list(tokenize("/* /* /* */ */ */ x", max_comment_depth=2))

    def test_comment_depth_limit_recovers(self):
        errors = []
        toks = list(tokenize("/* /* /* */ */ */ x", on_error=errors.append, max_comment_depth=2))
        assert len(errors) == 1
        assert [t.type for t in toks] == ['IDENTIFIER']


class TestDirectives:
    """Pragmas and annotations are captured whole, payload untouched."""

    def test_hash_pragma(self):
        toks = list(tokenize("#pragma compiler opt level=2\nx;"))
        assert toks[0].type == 'PRAGMA'
        assert str(toks[0]) == '#pragma compiler opt level=2'
        assert toks[1].type == 'IDENTIFIER'

    def test_bare_pragma_at_statement_start(self):
        toks = list(tokenize("pragma qiskit foo\n"))
        assert [t.type for t in toks] == ['PRAGMA']

    def test_annotation(self):
        toks = list(tokenize("@bind $0 $1\nh q;"))
        assert toks[0].type == 'ANNOTATION'
        assert str(toks[0]) == '@bind $0 $1'
        assert [t.type for t in toks[1:]] == ['IDENTIFIER', 'IDENTIFIER', 'SEMICOLON']

    def test_at_after_modifier_is_operator(self):
        assert token_types("inv @ x q;")[1] == 'AT'


class TestLexerBehaviour:
    """Positions, error recovery and restartability."""

    def test_positions(self):
        toks = list(tokenize("a;\n  bb;"))
        bb = toks[2]
        assert (bb.line, bb.column, bb.end_column) == (2, 3, 5)

    def test_error_recovery_continues(self):
        errors = []
        toks = list(tokenize("a ? b;", 'x.qasm', on_error=errors.append))
        assert [t.type for t in toks] == ['IDENTIFIER', 'IDENTIFIER', 'SEMICOLON']
        assert len(errors) == 1
        assert errors[0].span.source == 'x.qasm'
        assert errors[0].span.column == 3

    def test_error_without_callback_raises(self):
        with pytest.raises(LexError):
            list(tokenize("a ? b;"))

    def test_restart_from_beginning(self):
        lexer = Lexer("qubit q; h q;")
        first = [(t.type, str(t)) for t in lexer]
        second = [(t.type, str(t)) for t in lexer]
        assert first == second
        assert len(first) == 6
