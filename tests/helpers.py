"""测试共用的编译 / 查询辅助函数"""

from qasmcc import compile, CompilerOptions
from qasmcc.error import DiagnosticBag
from qasmcc.lexer import tokenize
from qasmcc.tree.parser import QasmParser
from qasmcc.tree.transformer import GateCall

HEADER = 'OPENQASM 3.0;\ninclude "stdgates.inc";\n'


def run(source: str, header: bool = True, **options):
    """编译一段源码（默认带上版本声明与 stdgates.inc）"""
    text = HEADER + source if header else source
    return compile(text, 'main.qasm', options=CompilerOptions(**options))


def codes(result) -> list:
    return [d.code for d in result.diagnostics]


def error_codes(result) -> list:
    return [d.code for d in result.diagnostics if d.severity.name != 'WARNING']


def symbol(result, name: str):
    return result.symbol_table.lookup_global(name)


def gate_calls(result) -> list:
    return [s for s in result.ast.statements
            if isinstance(s, GateCall) and s.source == 'main.qasm']


def last_call(result) -> GateCall:
    return gate_calls(result)[-1]


def parse(source: str):
    diag = DiagnosticBag()
    program = QasmParser().parse(tokenize(source, 'main.qasm', diag_on_error(diag)), diag,
                                 source='main.qasm')
    return program, diag


def diag_on_error(diag: DiagnosticBag):
    def on_error(e):
        diag.fatal('E001', e.message, e.span)
    return on_error


def token_types(source: str) -> list:
    return [t.type for t in tokenize(source)]


