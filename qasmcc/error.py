"""
qasmcc 诊断信息体系
====================
收集所有词法 / 语法 / 语义诊断，支持"继续分析模式"（报错后不立即崩溃，
尽量多检测错误）以及 fail-fast 模式（首个错误即中止）。

诊断码（对外稳定）：
  E001 语法错误            E006 递归定义
  E002 未定义标识符        E007 缺少 return
  E003 类型不匹配          E008 非法类型转换
  E004 下标越界            E009 循环 include
  E005 寄存器大小不兼容    E010 硬件约束冲突
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto

logger = logging.getLogger(__name__)


E_SYNTAX            = 'E001'
E_UNDEFINED         = 'E002'
E_TYPE              = 'E003'
E_INDEX             = 'E004'
E_REGISTER_SIZE     = 'E005'
E_RECURSION         = 'E006'
E_MISSING_RETURN    = 'E007'
E_CAST              = 'E008'
E_INCLUDE_CYCLE     = 'E009'
E_HARDWARE          = 'E010'

ERROR_CODES = {
    E_SYNTAX:         'syntax error',
    E_UNDEFINED:      'undefined identifier',
    E_TYPE:           'type mismatch',
    E_INDEX:          'index out of bounds',
    E_REGISTER_SIZE:  'incompatible register sizes',
    E_RECURSION:      'recursive definition',
    E_MISSING_RETURN: 'missing return statement',
    E_CAST:           'invalid cast',
    E_INCLUDE_CYCLE:  'circular include dependency',
    E_HARDWARE:       'hardware-constraint violation',
}


class Severity(Enum):
    WARNING = auto()
    ERROR   = auto()
    FATAL   = auto()     # 中止本文件后续所有 pass


@dataclass(frozen=True)
class Span:
    """源码区间。列号从 1 开始，end_column 指向区间后一列（与 Lark 一致）"""
    source:     str = '<input>'
    line:       int = -1
    column:     int = -1
    end_line:   int = -1
    end_column: int = -1

    def __str__(self):
        if self.line < 0:
            return f"{self.source}:?:?"
        return f"{self.source}:{self.line}:{self.column}"


@dataclass
class Diagnostic:
    """一条诊断信息"""
    code:     str
    severity: Severity
    message:  str
    spans:    list[Span] = field(default_factory=list)
    hint:     str = ''       # 可选修复提示

    @property
    def span(self) -> Span:
        return self.spans[0] if self.spans else Span()

    @property
    def line(self) -> int:
        return self.span.line

    @property
    def column(self) -> int:
        return self.span.column

    def __str__(self):
        base = f"{self.span}: [{self.code}] {self.severity.name.lower()}: {self.message}"
        for extra in self.spans[1:]:
            base += f"\n  note: {extra}"
        if self.hint:
            base += f"\n  hint: {self.hint}"
        return base


# ──────────────────────────────────────────────────────────────────────────────
# 异常
# ──────────────────────────────────────────────────────────────────────────────

class LexError(Exception):
    """词法错误：非法字符、未闭合字符串 / 注释"""
    def __init__(self, message: str, span: Span):
        super().__init__(message)
        self.message = message
        self.span    = span


class SemanticError(Exception):
    """raise_if_errors() 抛出的汇总异常"""
    def __init__(self, message, diagnostics=()):
        super().__init__(message)
        self.diagnostics = list(diagnostics)


class CompilationAborted(Exception):
    """fail-fast 模式下，首个错误出现后中止编译"""
    def __init__(self, diagnostic: Diagnostic):
        super().__init__(str(diagnostic))
        self.diagnostic = diagnostic


# ──────────────────────────────────────────────────────────────────────────────
# DiagnosticBag
# ──────────────────────────────────────────────────────────────────────────────

class DiagnosticBag:
    """
    诊断信息收集袋。
    每次编译独占一个；各个 pass 将错误/警告加入此袋，
    编译结束后按源码顺序统一输出，而不是每遇一个错误立即中断。
    """
    def __init__(self, fail_fast: bool = False, root_source: str = '<input>'):
        self._diags: list[Diagnostic] = []
        self.fail_fast   = fail_fast
        self.root_source = root_source
        # include 展开时压栈：被包含文件中的诊断会额外附上 include 语句位置
        self._include_sites: list[Span] = []

    # ── 添加诊断 ────────────────────────────────────────────────────────────

    def fatal(self, code: str, message: str, node=None, hint: str = '', related=()):
        return self._add(code, Severity.FATAL, message, node, hint, related)

    def error(self, code: str, message: str, node=None, hint: str = '', related=()):
        return self._add(code, Severity.ERROR, message, node, hint, related)

    def warning(self, code: str, message: str, node=None, hint: str = '', related=()):
        return self._add(code, Severity.WARNING, message, node, hint, related)

    def _add(self, code, severity, message, node, hint, related) -> Diagnostic:
        spans = [_span(node)]
        spans.extend(_span(r) for r in related)
        spans.extend(reversed(self._include_sites))
        diag = Diagnostic(code, severity, message, spans, hint)
        self._diags.append(diag)
        logger.debug("diagnostic %s", diag)
        if self.fail_fast and severity is not Severity.WARNING:
            raise CompilationAborted(diag)
        return diag

    def push_include_site(self, span: Span):
        self._include_sites.append(span)

    def pop_include_site(self):
        self._include_sites.pop()

    # ── 查询 ────────────────────────────────────────────────────────────────

    @property
    def has_errors(self) -> bool:
        return any(d.severity is not Severity.WARNING for d in self._diags)

    @property
    def has_fatal(self) -> bool:
        return any(d.severity is Severity.FATAL for d in self._diags)

    @property
    def count(self) -> int:
        return len(self._diags)

    @property
    def errors(self):
        return [d for d in self._diags if d.severity is not Severity.WARNING]

    @property
    def warnings(self):
        return [d for d in self._diags if d.severity is Severity.WARNING]

    def codes(self) -> list[str]:
        return [d.code for d in self.sorted()]

    def __iter__(self):
        return iter(self._diags)

    def __len__(self):
        return len(self._diags)

    def sorted(self) -> list[Diagnostic]:
        """按主文件中的源码顺序排序（被包含文件的诊断排在其 include 语句处）"""
        return sorted(self._diags, key=self._sort_key)

    def _sort_key(self, diag: Diagnostic):
        anchor = next((s for s in diag.spans if s.source == self.root_source), diag.span)
        inner = diag.span if anchor is not diag.span else Span()
        return (anchor.line, anchor.column, inner.line, inner.column)

    # ── 输出 ────────────────────────────────────────────────────────────────

    def report(self) -> str:
        if not self._diags:
            return "No diagnostics."
        lines = [str(d) for d in self.sorted()]
        summary = (f"\n{'─'*60}\n"
                   f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)")
        return '\n'.join(lines) + summary

    def raise_if_errors(self):
        if self.has_errors:
            raise SemanticError(f"{len(self.errors)} error(s) found.\n" +
                                '\n'.join(str(d) for d in self.errors),
                                self.errors)


def _span(node) -> Span:
    """从 AST 节点 / Lark Token / Span 提取源码区间"""
    if node is None:
        return Span()
    if isinstance(node, Span):
        return node
    span = getattr(node, 'span', None)
    if isinstance(span, Span):
        return span
    # Lark Token
    if hasattr(node, 'line') and hasattr(node, 'column'):
        return Span(getattr(node, 'source', '<input>'),
                    getattr(node, 'line', -1) or -1,
                    getattr(node, 'column', -1) or -1,
                    getattr(node, 'end_line', -1) or -1,
                    getattr(node, 'end_column', -1) or -1)
    return Span()
