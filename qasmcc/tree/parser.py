"""
OpenQASM 3 语法分析
====================
Lark Earley 解析器，输入为 qasmcc.lexer 产生的 token 列表。

错误恢复：Earley 遇到意外 token 时抛出异常；这里把出错的语句
（从上一个 ; / { / } 之后，到下一个 ; 为止，或到下一个 { / } 之前）
从 token 列表中删除，记录 E001 后重新解析。每轮至少删除一个 token，
且总轮数受 max_recovery_attempts 限制，因此必然终止。
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional

from lark import Lark, Token
from lark.exceptions import UnexpectedEOF, UnexpectedToken
from lark.lexer import Lexer

from ..config import CompilerOptions
from ..error import E_SYNTAX, DiagnosticBag
from ..lexer import token_span
from .transformer import Program, QasmTransformer, VersionDecl

logger = logging.getLogger(__name__)

GRAMMAR_FILE = Path(__file__).with_name('qasm3.lark')

_BOUNDARY = ('SEMICOLON', 'LBRACE', 'RBRACE', 'PRAGMA')

SUPPORTED_VERSIONS = ('2', '3')


class TokenStreamLexer(Lexer):
    """把已经切分好的 token 列表原样交给 Lark"""

    def __init__(self, lexer_conf):
        pass

    def lex(self, data):
        yield from data


@lru_cache(maxsize=None)
def load_grammar(path: str = str(GRAMMAR_FILE)) -> Lark:
    logger.debug("loading grammar %s", path)
    return Lark.open(
        path,
        start='program',
        parser='earley',
        lexer=TokenStreamLexer,
        ambiguity='resolve',
        propagate_positions=True,
    )


class QasmParser:
    """
    用法::

        parser = QasmParser()
        program = parser.parse(tokenize(text), diag, source='main.qasm')
    """

    def __init__(self, options: Optional[CompilerOptions] = None,
                 grammar_file: str | Path | None = None):
        self.options = options or CompilerOptions()
        self._lark = load_grammar(str(grammar_file or GRAMMAR_FILE))

    def parse_tree(self, tokens: Iterable[Token]):
        """不做错误恢复，直接返回 Lark Tree（调试用）"""
        return self._lark.parse(list(tokens))

    def parse(self, tokens: Iterable[Token], diag: DiagnosticBag,
              source: str = '<input>') -> Program:
        """
        解析 token 流，总是返回一棵（尽力而为的）Program。
        语法错误以 E001 记入 diag。
        """
        tokens = list(tokens)
        attempts = 0
        while True:
            try:
                tree = self._lark.parse(tokens)
                break
            except UnexpectedToken as e:
                tokens = self._recover_token(tokens, e, diag, source)
            except UnexpectedEOF as e:
                tokens = self._recover_eof(tokens, e, diag, source)
                if tokens is None:
                    return _empty(source)
            attempts += 1
            if attempts >= self.options.max_recovery_attempts:
                diag.fatal(E_SYNTAX, f"语法错误过多（超过 {attempts} 处），停止解析",
                           tokens[0] if tokens else None)
                return _empty(source)

        program = QasmTransformer(source).transform(tree)
        self._check_version(program, diag)
        logger.debug("parsed %s: %d top-level statements, %d recovery step(s)",
                     source, len(program.statements), attempts)
        return program

    # ── 错误恢复 ────────────────────────────────────────────────────────────

    def _recover_token(self, tokens: list, e: UnexpectedToken,
                       diag: DiagnosticBag, source: str) -> list:
        bad = e.token
        index = _index_of(tokens, bad)
        expected = ', '.join(sorted(e.expected)) if e.expected else ''
        diag.error(E_SYNTAX, f"语法错误：意外的 {bad.type} '{bad}'",
                   token_span(bad, source), hint=f"期望：{expected}" if expected else '')
        if index is None:
            # 无法定位（不应发生），丢弃后面全部 token
            return tokens[:0]

        start = index
        while start > 0 and tokens[start - 1].type not in _BOUNDARY:
            start -= 1
        end = index
        while end < len(tokens):
            kind = tokens[end].type
            if kind == 'SEMICOLON':
                end += 1
                break
            if kind in ('LBRACE', 'RBRACE'):
                break
            end += 1
        if end <= start:
            end = index + 1
        logger.debug("recovery: dropping tokens [%d, %d) around %r", start, end, str(bad))
        return tokens[:start] + tokens[end:]

    def _recover_eof(self, tokens: list, e: UnexpectedEOF,
                     diag: DiagnosticBag, source: str) -> Optional[list]:
        if not tokens:
            diag.fatal(E_SYNTAX, "文件意外结束", None)
            return None
        last = tokens[-1]
        boundary = len(tokens) - 1
        while boundary >= 0 and tokens[boundary].type not in _BOUNDARY:
            boundary -= 1

        # 结尾有未完成的语句：整条丢弃
        if boundary < len(tokens) - 1:
            first = tokens[boundary + 1]
            diag.error(E_SYNTAX, "文件在语句中途结束（缺少 ';'？）", token_span(first, source))
            return tokens[:boundary + 1]

        depth = sum(1 if t.type == 'LBRACE' else -1 if t.type == 'RBRACE' else 0 for t in tokens)
        if depth <= 0:
            diag.fatal(E_SYNTAX, "文件意外结束", token_span(last, source))
            return None
        diag.error(E_SYNTAX, f"缺少 {depth} 个 '}}'", token_span(last, source))
        closers = [Token('RBRACE', '}', start_pos=last.end_pos, line=last.end_line,
                         column=last.end_column, end_line=last.end_line,
                         end_column=last.end_column, end_pos=last.end_pos)
                   for _ in range(depth)]
        return tokens + closers

    # ── 版本声明 ────────────────────────────────────────────────────────────

    def _check_version(self, program: Program, diag: DiagnosticBag):
        """OPENQASM 声明只能是第一条语句，且至多一次；违反时对整个文件致命"""
        seen = False
        for position, stmt in enumerate(program.statements):
            if not isinstance(stmt, VersionDecl):
                continue
            if seen:
                diag.fatal(E_SYNTAX, "重复的 OPENQASM 版本声明", stmt)
            elif position != 0:
                diag.fatal(E_SYNTAX, "OPENQASM 版本声明必须是第一条语句", stmt)
            else:
                program.version = stmt.version
                if stmt.version.split('.')[0] not in SUPPORTED_VERSIONS:
                    diag.warning(E_SYNTAX, f"未知的 OpenQASM 版本 {stmt.version}", stmt)
            seen = True


def _index_of(tokens: list, tok: Token) -> Optional[int]:
    for index, candidate in enumerate(tokens):
        if candidate is tok:
            return index
    for index, candidate in enumerate(tokens):
        if candidate.start_pos == tok.start_pos and candidate.type == tok.type:
            return index
    return None


def _empty(source: str) -> Program:
    program = Program()
    program.source = source
    return program
