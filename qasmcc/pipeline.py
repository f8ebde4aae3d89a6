"""
QasmCC 编译流水线
==================
将 词法分析 → 语法分析 → include 展开 → 作用域解析 → 类型检查 → 修饰符 / 广播展开
串联为一个高层接口。各个 pass 严格依次执行，唯一共享的状态是本次编译的 DiagnosticBag。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Optional

from lark import Token

from .config import CompilerOptions
from .error import (
    DiagnosticBag, Diagnostic, LexError, CompilationAborted, E_SYNTAX,
)
from .includes import SourceProvider, FileSourceProvider, IncludeExpander
from .lexer import tokenize
from .tree.parser import QasmParser
from .tree.transformer import Program
from .semantic.checker import TypeChecker
from .semantic.expander import Expander
from .semantic.resolver import ScopeResolver
from .semantic.symbol import SymbolTable

logger = logging.getLogger(__name__)


# ─── 结果对象 ──────────────────────────────────────────────────────────────────

@dataclass
class CompileResult:
    """编译流水线的输出"""
    ast:          Optional[Program]        # 致命错误时仍尽量给出已解析的部分
    diags:        DiagnosticBag
    symbol_table: Optional[SymbolTable] = None   # None 表示未进入语义分析

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return self.diags.sorted()

    @property
    def success(self) -> bool:
        return self.ast is not None and not self.diags.has_errors


# ─── 主流水线 ─────────────────────────────────────────────────────────────────

class QasmFrontend:
    """
    OpenQASM 3 编译器前端。

    主要流程：
      1. Lexer + QasmParser   → AST（语句级错误恢复）
      2. IncludeExpander      → 拼接被包含文件的顶层语句
      3. ScopeResolver        → 符号表
      4. TypeChecker          → 类型注解 + 常量折叠
      5. Expander             → 修饰符规范形式 + 逐比特展开

    用法::

        frontend = QasmFrontend(provider=FileSourceProvider(['lib']))
        result = frontend.process_file("bell.qasm")
        print(result.diags.report())
    """

    def __init__(self, options: Optional[CompilerOptions] = None,
                 provider: Optional[SourceProvider] = None,
                 grammar_file: str | Path | None = None,
                 externs: Optional[dict] = None):
        """
        Args:
            options:      CompilerOptions；None 使用默认值
            provider:     include 文本来源；None 时只能包含内置的 stdgates.inc
            grammar_file: 替换默认的 qasm3.lark（调试用）
            externs:      额外的外部函数签名 {'name': ('ret', ['arg', ...])}
        """
        self.options  = options or CompilerOptions()
        self.provider = provider
        self.externs  = externs
        self._parser  = QasmParser(self.options, grammar_file)

    # ── 分析入口 ───────────────────────────────────────────────────────────

    def process_file(self, path: str | Path) -> CompileResult:
        """编译单个 .qasm 文件；include 相对该文件所在目录查找"""
        path = Path(path)
        if not path.is_file():
            diag = DiagnosticBag(root_source=str(path))
            diag.error(E_SYNTAX, f"文件不存在: {path}")
            return CompileResult(ast=None, diags=diag)
        text = path.read_text(encoding='utf-8', errors='replace')
        if self.provider is None:
            self.provider = FileSourceProvider()
        return self.process_string(text, source=str(path))

    def process_string(self, text: str, source: str = '<input>') -> CompileResult:
        """
        编译源码字符串，返回 CompileResult。不会抛出异常：
        fail-fast 模式在第一个错误处停止，内部崩溃记为致命 E001。
        """
        diag = DiagnosticBag(fail_fast=self.options.fail_fast, root_source=source)
        program, table = None, None
        try:
            # ── Step 1: 词法 + 语法分析 ─────────────────────────────────
            program = self.parse_text(text, source, diag)
            if diag.has_fatal:
                return CompileResult(program, diag)

            # ── Step 2: include 展开 ────────────────────────────────────
            includes = IncludeExpander(diag, self.provider,
                                       partial(self.parse_text, diag=diag), self.options)
            program = includes.expand(program)
            if diag.has_fatal:
                return CompileResult(program, diag)

            # ── Step 3: 语义分析 ─────────────────────────────────────────
            table = ScopeResolver(diag, self.options, self.externs).resolve(program)
            TypeChecker(diag, self.options).check(program)
            Expander(diag, self.options).expand(program)
        except CompilationAborted as e:
            logger.debug("compilation aborted: %s", e.diagnostic)
        except Exception as e:
            logger.exception("internal error while compiling %s", source)
            _internal_error(diag, e)

        logger.debug("compiled %s: %d error(s), %d warning(s)",
                     source, len(diag.errors), len(diag.warnings))
        return CompileResult(program, diag, table)

    def parse_text(self, text: str, source: str, diag: DiagnosticBag) -> Program:
        """词法 + 语法分析（含错误恢复）；词法错误记为致命 E001。被包含文件也走这里"""
        def on_error(e: LexError):
            diag.fatal(E_SYNTAX, e.message, e.span)

        tokens = tokenize(text, source, on_error, self.options.max_comment_depth)
        return self._parser.parse(tokens, diag, source)

    # ── 调试工具 ───────────────────────────────────────────────────────────

    def tokenize_only(self, text: str, source: str = '<input>') -> list[Token]:
        """仅做词法分析；词法错误直接抛出 LexError"""
        return list(tokenize(text, source, max_comment_depth=self.options.max_comment_depth))

    def parse_only(self, text: str, source: str = '<input>') -> tuple[Program, DiagnosticBag]:
        """词法 + 语法分析，不展开 include，不做语义分析"""
        diag = DiagnosticBag(root_source=source)
        return self.parse_text(text, source, diag), diag


def _internal_error(diag: DiagnosticBag, exc: Exception):
    diag.fail_fast = False
    diag.fatal(E_SYNTAX, f"编译器内部错误（请报告 bug）: {type(exc).__name__}: {exc}")


def compile(source_text: str, source_id: str = '<input>',
            provider: Optional[SourceProvider] = None,
            options: Optional[CompilerOptions] = None) -> CompileResult:
    """一次性编译入口：compile(text) → CompileResult(ast, diagnostics)"""
    return QasmFrontend(options, provider).process_string(source_text, source_id)
