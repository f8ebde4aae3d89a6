"""
OpenQASM 3 词法分析器
=====================
把源码文本切分为 lark.Token 流，供 Earley 语法分析器直接消费
（grammar 中所有终结符都用 %declare 声明，由这里提供）。

特性：
  - 标识符按 Unicode 类别识别（字母 / 字母数字开头，续接标记与数字）
  - 数字字面量：十六 / 八 / 二进制前缀、下划线分隔、指数、
    虚数后缀 im、时长单位后缀 ns/us/μs/ms/s/dt
  - "0101" 形式的字符串是位串字面量，其余是普通字符串
  - 物理比特 $<digits>
  - /* */ 注释可嵌套（深度计数），// 行注释
  - #pragma / pragma 与 @annotation 整行捕获，原样透传

出错时抛出 LexError；若提供 on_error 回调，则报告后在下一个
空白 / 分号处重新同步，继续产生后续 token。
"""

from __future__ import annotations

import logging
import unicodedata
from typing import Callable, Iterator, Optional

from lark import Token

from .error import LexError, Span

logger = logging.getLogger(__name__)


KEYWORDS: dict[str, str] = {
    'OPENQASM': 'OPENQASM', 'include': 'INCLUDE', 'defcalgrammar': 'DEFCALGRAMMAR',
    'def': 'DEF', 'cal': 'CAL', 'defcal': 'DEFCAL', 'gate': 'GATE', 'extern': 'EXTERN',
    'box': 'BOX', 'let': 'LET', 'break': 'BREAK', 'continue': 'CONTINUE',
    'if': 'IF', 'else': 'ELSE', 'end': 'END', 'return': 'RETURN',
    'for': 'FOR', 'while': 'WHILE', 'in': 'IN',
    'switch': 'SWITCH', 'case': 'CASE', 'default': 'DEFAULT',
    'input': 'INPUT', 'output': 'OUTPUT', 'const': 'CONST',
    'readonly': 'READONLY', 'mutable': 'MUTABLE',
    'qreg': 'QREG', 'qubit': 'QUBIT', 'creg': 'CREG',
    'bool': 'BOOL', 'bit': 'BIT', 'int': 'INT', 'uint': 'UINT', 'float': 'FLOAT',
    'angle': 'ANGLE', 'complex': 'COMPLEX', 'array': 'ARRAY', 'void': 'VOID',
    'duration': 'DURATION', 'stretch': 'STRETCH',
    'port': 'PORT', 'frame': 'FRAME', 'waveform': 'WAVEFORM',
    'gphase': 'GPHASE', 'inv': 'INV', 'pow': 'POW', 'ctrl': 'CTRL', 'negctrl': 'NEGCTRL',
    'durationof': 'DURATIONOF', 'delay': 'DELAY', 'reset': 'RESET',
    'measure': 'MEASURE', 'barrier': 'BARRIER',
    'true': 'BOOLEAN_LITERAL', 'false': 'BOOLEAN_LITERAL',
}

# 最长匹配优先
OPERATORS: list[tuple[str, str]] = sorted([
    ('<<=', 'COMPOUND_ASSIGNMENT_OPERATOR'), ('>>=', 'COMPOUND_ASSIGNMENT_OPERATOR'),
    ('**=', 'COMPOUND_ASSIGNMENT_OPERATOR'),
    ('+=', 'COMPOUND_ASSIGNMENT_OPERATOR'), ('-=', 'COMPOUND_ASSIGNMENT_OPERATOR'),
    ('*=', 'COMPOUND_ASSIGNMENT_OPERATOR'), ('/=', 'COMPOUND_ASSIGNMENT_OPERATOR'),
    ('&=', 'COMPOUND_ASSIGNMENT_OPERATOR'), ('|=', 'COMPOUND_ASSIGNMENT_OPERATOR'),
    ('^=', 'COMPOUND_ASSIGNMENT_OPERATOR'), ('%=', 'COMPOUND_ASSIGNMENT_OPERATOR'),
    ('**', 'DOUBLE_ASTERISK'), ('++', 'DOUBLE_PLUS'), ('->', 'ARROW'),
    ('&&', 'DOUBLE_AMPERSAND'), ('||', 'DOUBLE_PIPE'),
    ('==', 'EQUALITY_OPERATOR'), ('!=', 'EQUALITY_OPERATOR'),
    ('<=', 'COMPARISON_OPERATOR'), ('>=', 'COMPARISON_OPERATOR'),
    ('<<', 'BITSHIFT_OPERATOR'), ('>>', 'BITSHIFT_OPERATOR'),
    ('<', 'COMPARISON_OPERATOR'), ('>', 'COMPARISON_OPERATOR'),
    ('+', 'PLUS'), ('-', 'MINUS'), ('*', 'ASTERISK'), ('/', 'SLASH'), ('%', 'PERCENT'),
    ('|', 'PIPE'), ('&', 'AMPERSAND'), ('^', 'CARET'), ('~', 'TILDE'),
    ('!', 'EXCLAMATION_POINT'), ('=', 'EQUALS'), ('@', 'AT'),
    ('(', 'LPAREN'), (')', 'RPAREN'), ('[', 'LBRACKET'), (']', 'RBRACKET'),
    ('{', 'LBRACE'), ('}', 'RBRACE'), (':', 'COLON'), (';', 'SEMICOLON'),
    (',', 'COMMA'), ('.', 'DOT'),
], key=lambda pair: -len(pair[0]))

TIME_UNITS = ('dt', 'ns', 'us', 'μs', 'µs', 'ms', 's')

# 这些 token 之后是"语句起始位置"，@annotation 只在语句起始处识别
_STATEMENT_BOUNDARY = (None, 'SEMICOLON', 'LBRACE', 'RBRACE', 'ANNOTATION', 'PRAGMA')

_DIGITS = {
    'x': '0123456789abcdefABCDEF',
    'o': '01234567',
    'b': '01',
}


def is_identifier_start(ch: str) -> bool:
    return ch == '_' or unicodedata.category(ch) in ('Lu', 'Ll', 'Lt', 'Lm', 'Lo', 'Nl')


def is_identifier_continue(ch: str) -> bool:
    return is_identifier_start(ch) or unicodedata.category(ch) in ('Mn', 'Mc', 'Nd', 'Pc')


class Lexer:
    """
    可迭代的词法器。每次 iter() 都从头开始重新扫描（只能从头重启）。

    用法::

        for tok in Lexer(text, source='main.qasm'):
            print(tok.type, tok)
    """

    def __init__(self, text: str, source: str = '<input>',
                 on_error: Optional[Callable[[LexError], None]] = None,
                 max_comment_depth: int = 64):
        self.text = text
        self.source = source
        self.on_error = on_error
        self.max_comment_depth = max_comment_depth

    def __iter__(self) -> Iterator[Token]:
        return self.tokens()

    # ── 主循环 ──────────────────────────────────────────────────────────────

    def tokens(self) -> Iterator[Token]:
        self._pos = 0
        self._line = 1
        self._line_start = 0
        self._last_type = None
        text = self.text

        while True:
            try:
                self._skip_trivia()
                if self._pos >= len(text):
                    return
                tok = self._scan_token()
            except LexError as err:
                if self.on_error is None:
                    raise
                logger.debug("lex error at %s: %s", err.span, err.message)
                self.on_error(err)
                self._resync()
                continue
            self._last_type = tok.type
            yield tok

    # ── 位置辅助 ────────────────────────────────────────────────────────────

    def _column(self, pos: int) -> int:
        return pos - self._line_start + 1

    def _advance_to(self, end: int):
        """前进到 end，同时维护行号"""
        text = self.text
        nl = text.rfind('\n', self._pos, end)
        if nl != -1:
            self._line += text.count('\n', self._pos, end)
            self._line_start = nl + 1
        self._pos = end

    def _make(self, type_: str, start: int) -> Token:
        """为 [start, self._pos) 创建 token（调用前必须已前进到 token 末尾且未跨行）"""
        line = self._line
        col = start - self._line_start + 1
        return Token(type_, self.text[start:self._pos], start_pos=start,
                     line=line, column=col,
                     end_line=line, end_column=self._column(self._pos), end_pos=self._pos)

    def _error(self, message: str, start: int, end: int, consume: bool = False):
        line = self._line
        col = start - self._line_start + 1
        end_col = end - self._line_start + 1
        if consume:
            self._pos = end
        raise LexError(message, Span(self.source, line, col, line, end_col))

    def _resync(self):
        """跳到下一个空白或分号处（分号本身仍作为 token 产生）"""
        text = self.text
        end = self._pos
        while end < len(text) and not text[end].isspace() and text[end] != ';':
            end += 1
        self._advance_to(end)

    # ── 空白与注释 ──────────────────────────────────────────────────────────

    def _skip_trivia(self):
        text = self.text
        n = len(text)
        while self._pos < n:
            ch = text[self._pos]
            if ch.isspace():
                end = self._pos
                while end < n and text[end].isspace():
                    end += 1
                self._advance_to(end)
            elif text.startswith('//', self._pos):
                end = text.find('\n', self._pos)
                self._advance_to(n if end == -1 else end)
            elif text.startswith('/*', self._pos):
                self._skip_block_comment()
            else:
                return

    def _skip_block_comment(self):
        """
        嵌套块注释：用计数器代替递归，深度超过上限时报错一次，
        但仍继续匹配到真正的闭合位置。
        """
        text = self.text
        start = self._pos
        start_line, start_col = self._line, self._column(start)
        depth = 0
        pos = start
        too_deep = False
        while pos < len(text):
            if text.startswith('/*', pos):
                depth += 1
                if depth > self.max_comment_depth:
                    too_deep = True
                pos += 2
            elif text.startswith('*/', pos):
                depth -= 1
                pos += 2
                if depth == 0:
                    self._advance_to(pos)
                    if too_deep:
                        raise LexError(
                            f"块注释嵌套深度超过上限 {self.max_comment_depth}",
                            Span(self.source, start_line, start_col, self._line, self._column(pos)))
                    return
            else:
                pos += 1
        self._advance_to(len(text))
        raise LexError("块注释未闭合",
                       Span(self.source, start_line, start_col, self._line, self._column(self._pos)))

    # ── token 扫描 ──────────────────────────────────────────────────────────

    def _scan_token(self) -> Token:
        text = self.text
        start = self._pos
        ch = text[start]
        nxt = text[start + 1] if start + 1 < len(text) else ''

        if ch.isdigit() or (ch == '.' and nxt.isdigit()):
            return self._scan_number()
        if ch == '"' or ch == "'":
            return self._scan_string()
        if ch == '$':
            return self._scan_hardware_qubit()
        if ch == '#':
            return self._scan_directive()
        if ch == '@' and self._last_type in _STATEMENT_BOUNDARY and nxt and is_identifier_start(nxt):
            return self._scan_rest_of_line('ANNOTATION')
        if is_identifier_start(ch):
            return self._scan_identifier()
        for lexeme, type_ in OPERATORS:
            if text.startswith(lexeme, start):
                self._pos = start + len(lexeme)
                return self._make(type_, start)
        self._error(f"非法字符 {ch!r}", start, start + 1)

    def _scan_identifier(self) -> Token:
        text = self.text
        start = self._pos
        end = start + 1
        while end < len(text) and is_identifier_continue(text[end]):
            end += 1
        word = text[start:end]
        if word == 'pragma' and self._last_type in _STATEMENT_BOUNDARY:
            return self._scan_rest_of_line('PRAGMA')
        self._pos = end
        return self._make(KEYWORDS.get(word, 'IDENTIFIER'), start)

    def _scan_rest_of_line(self, type_: str) -> Token:
        text = self.text
        start = self._pos
        end = text.find('\n', start)
        if end == -1:
            end = len(text)
        # 行尾注释不属于载荷
        comment = text.find('//', start, end)
        if comment != -1:
            end = comment
        while end > start and text[end - 1].isspace():
            end -= 1
        self._pos = end
        return self._make(type_, start)

    def _scan_directive(self) -> Token:
        text = self.text
        start = self._pos
        if text.startswith('#pragma', start):
            return self._scan_rest_of_line('PRAGMA')
        if text.startswith('#dim', start):
            self._pos = start + 4
            return self._make('DIM', start)
        self._error("非法字符 '#'", start, start + 1)

    def _scan_hardware_qubit(self) -> Token:
        text = self.text
        start = self._pos
        end = start + 1
        while end < len(text) and text[end].isdigit():
            end += 1
        if end == start + 1:
            self._error("物理比特 '$' 之后必须是数字", start, start + 1)
        self._pos = end
        return self._make('HARDWARE_QUBIT', start)

    def _scan_string(self) -> Token:
        text = self.text
        start = self._pos
        quote = text[start]
        end = start + 1
        while end < len(text) and text[end] != quote:
            if text[end] == '\n':
                self._error("字符串未闭合", start, end, consume=True)
            if text[end] == '\\':
                end += 1
            end += 1
        if end >= len(text):
            self._error("字符串未闭合", start, len(text), consume=True)
        self._pos = end + 1
        body = text[start + 1:end]
        if body and all(c in '01_' for c in body) and any(c in '01' for c in body):
            return self._make('BITSTRING_LITERAL', start)
        return self._make('STRING_LITERAL', start)

    def _scan_number(self) -> Token:
        text = self.text
        n = len(text)
        start = self._pos
        end = start
        type_ = 'INTEGER_LITERAL'

        prefix = text[start + 1:start + 2].lower() if text[start] == '0' else ''
        if prefix in _DIGITS:
            digits = _DIGITS[prefix]
            end = start + 2
            while end < n and (text[end] in digits or text[end] == '_'):
                end += 1
            if not any(c in digits for c in text[start + 2:end]):
                self._error("数字前缀之后缺少有效数字", start, end)
        else:
            while end < n and (text[end].isdigit() or text[end] == '_'):
                end += 1
            if end < n and text[end] == '.' and not text.startswith('..', end):
                type_ = 'FLOAT_LITERAL'
                end += 1
                while end < n and (text[end].isdigit() or text[end] == '_'):
                    end += 1
            if end < n and text[end] in 'eE':
                exp = end + 1
                if exp < n and text[exp] in '+-':
                    exp += 1
                if exp < n and text[exp].isdigit():
                    type_ = 'FLOAT_LITERAL'
                    end = exp
                    while end < n and text[end].isdigit():
                        end += 1

        # 后缀：im / 时长单位（可紧贴数字，也可以隔空格）
        suffix_start = end
        while suffix_start < n and text[suffix_start] in ' \t':
            suffix_start += 1
        word_end = suffix_start
        while word_end < n and is_identifier_continue(text[word_end]):
            word_end += 1
        word = text[suffix_start:word_end]
        if word == 'im' and not prefix:
            type_ = 'IMAGINARY_LITERAL'
            end = word_end
        elif word in TIME_UNITS and not prefix:
            type_ = 'TIMING_LITERAL'
            end = word_end
        elif suffix_start == end and word:
            self._error(f"数字字面量后紧跟非法后缀 '{word}'", start, word_end, consume=True)

        self._pos = end
        return self._make(type_, start)


def tokenize(text: str, source: str = '<input>',
             on_error: Optional[Callable[[LexError], None]] = None,
             max_comment_depth: int = 64) -> Iterator[Token]:
    """
    惰性产生 token 流。

    Args:
        on_error: 为 None 时遇错直接抛出 LexError；
                  否则回调后重新同步，继续扫描。
    """
    return iter(Lexer(text, source, on_error, max_comment_depth))


def token_span(tok: Token, source: str = '<input>') -> Span:
    return Span(source, tok.line, tok.column, tok.end_line, tok.end_column)
