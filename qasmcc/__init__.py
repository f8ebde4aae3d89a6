"""
QasmCC - OpenQASM 3 编译器前端
================================
模块结构：
  qasmcc/
    __init__.py          本文件：公共 API
    __main__.py          命令行入口（python -m qasmcc）
    config.py            编译选项
    error.py             诊断信息系统
    lexer.py             词法分析
    includes.py          include 展开与源码提供者
    pipeline.py          编译流水线
    tree/
      qasm3.lark         语法
      parser.py          Earley 解析器 + 错误恢复
      transformer.py     CST → AST 转换器 & AST 节点定义
    semantic/
      type.py            类型系统与转换矩阵
      symbol.py          符号表、量子比特存储
      consteval.py       常量求值
      builtins.py        内置常量 / 函数 / 门
      resolver.py        作用域解析
      checker.py         类型检查
      expander.py        修饰符规范化与广播展开

快速使用示例：

    import qasmcc

    result = qasmcc.compile('OPENQASM 3.0; include "stdgates.inc"; qubit[2] q; h q;')
    if result.diags.has_errors:
        print(result.diags.report())
    else:
        for app in result.ast.statements[-1].expansion:
            print(app)
"""

from .pipeline import QasmFrontend, CompileResult, compile
from .config import CompilerOptions
from .error import (
    DiagnosticBag, Diagnostic, Severity, Span,
    LexError, SemanticError, CompilationAborted,
)
from .includes import (
    SourceProvider, FileSourceProvider, MappingSourceProvider, IncludeNotFound, STDGATES,
)
from .semantic.consteval import NotConstant, CastError, eval_const
from .semantic.expander import GateApplication, FractionalPowerError
from .semantic.symbol import QubitRef
from .semantic.type import (
    QUBIT, BIT, BOOL, DURATION, STRETCH, VOID, ERROR_T,
    QType, QubitType, BitType, IntType, FloatType, AngleType, ComplexType, ArrayType,
    CastRule, cast_rule,
)

__all__ = [
    'compile', 'QasmFrontend', 'CompileResult', 'CompilerOptions',
    'DiagnosticBag', 'Diagnostic', 'Severity', 'Span',
    'LexError', 'SemanticError', 'CompilationAborted',
    'SourceProvider', 'FileSourceProvider', 'MappingSourceProvider', 'IncludeNotFound', 'STDGATES',
    'NotConstant', 'CastError', 'eval_const',
    'GateApplication', 'FractionalPowerError', 'QubitRef',
    'QUBIT', 'BIT', 'BOOL', 'DURATION', 'STRETCH', 'VOID', 'ERROR_T',
    'QType', 'QubitType', 'BitType', 'IntType', 'FloatType', 'AngleType', 'ComplexType',
    'ArrayType', 'CastRule', 'cast_rule',
]
