"""
OpenQASM 3 AST Transformer
===========================
将 Lark 生成的 CST（具体语法树）转换为更易于分析的 AST 节点树。

使用 Lark 的 Transformer 机制：每个方法对应 grammar 中一条规则
（或一个 -> 别名），接收已转换的子节点，返回 AST 节点对象。

使用方式：
    transformer = QasmTransformer(source='main.qasm')
    ast = transformer.transform(lark_tree)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from lark import Token, Transformer, v_args

from ..error import Span


# ──────────────────────────────────────────────────────────────────────────────
# AST 节点基类
# ──────────────────────────────────────────────────────────────────────────────

class ASTNode:
    """
    所有 AST 节点的公共基类。

    Attributes:
        line, col, end_line, end_col, source: 源码位置（由 Transformer 从 meta 填入）
        qtype:       类型检查后填写的类型（QType 实例）
        symbol:      作用域解析后填写的符号引用（Symbol 实例）
        const_value: 能在编译期求值时填写的常量值
        annotations / pragmas: 附着在该语句上的注解与 pragma（原样透传）
    """
    line:     int = -1
    col:      int = -1
    end_line: int = -1
    end_col:  int = -1
    source:   str = '<input>'
    qtype = None
    symbol = None
    const_value = None
    annotations = ()
    pragmas = ()

    @property
    def span(self) -> Span:
        return Span(self.source, self.line, self.col, self.end_line, self.end_col)

    def _pos(self):
        return f"{self.line}:{self.col}"

    def copy_pos(self, other: 'ASTNode') -> 'ASTNode':
        self.line, self.col = other.line, other.col
        self.end_line, self.end_col = other.end_line, other.end_col
        self.source = other.source
        return self


# ──────────────────────────────────────────────────────────────────────────────
# 顶层 & 元数据
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class Program(ASTNode):
    """整个程序（include 展开后包含被包含文件的顶层语句）"""
    statements: List[ASTNode] = field(default_factory=list)
    version:    Optional[str] = None


@dataclass
class VersionDecl(ASTNode):
    version: str = ''


@dataclass
class Include(ASTNode):
    path: str = ''


@dataclass
class Pragma(ASTNode):
    """#pragma / pragma 整行；text 为原文"""
    text: str = ''

    @property
    def content(self) -> str:
        body = self.text[1:] if self.text.startswith('#') else self.text
        return body[len('pragma'):].strip()


@dataclass
class Annotation(ASTNode):
    """@keyword 其余内容；text 为原文"""
    text: str = ''

    @property
    def keyword(self) -> str:
        end = 1
        while end < len(self.text) and (self.text[end].isalnum() or self.text[end] in '_.'):
            end += 1
        return self.text[1:end]

    @property
    def content(self) -> str:
        return self.text[1 + len(self.keyword):].strip()


@dataclass
class CalibrationGrammar(ASTNode):
    name: str = ''


# ──────────────────────────────────────────────────────────────────────────────
# 类型说明
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class ScalarTypeSpec(ASTNode):
    """bit[n] / int[n] / uint[n] / float[n] / angle[n] / bool / duration /
    stretch / complex[float[n]] / port / frame / waveform / void"""
    kind: str = ''
    size: Optional[ASTNode] = None
    base: Optional['ScalarTypeSpec'] = None   # 仅 complex


@dataclass
class QubitTypeSpec(ASTNode):
    size: Optional[ASTNode] = None


@dataclass
class ArrayTypeSpec(ASTNode):
    base: ScalarTypeSpec = None
    dims: List[ASTNode] = field(default_factory=list)


@dataclass
class ArrayRefTypeSpec(ASTNode):
    """readonly / mutable 形参使用的数组引用类型；#dim = n 形式只给出维数"""
    base:      ScalarTypeSpec = None
    dims:      List[ASTNode] = field(default_factory=list)
    dim_count: Optional[ASTNode] = None


@dataclass
class Designator(ASTNode):
    """[expr]，只在转换期间使用"""
    expr: ASTNode = None


# ──────────────────────────────────────────────────────────────────────────────
# 声明节点
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class ClassicalDecl(ASTNode):
    """经典变量声明；io 为 'input' / 'output' / 'extern' 或 None"""
    type_spec: ASTNode = None
    name:      str = ''
    init:      Optional[ASTNode] = None
    is_const:  bool = False
    io:        Optional[str] = None


@dataclass
class QuantumDecl(ASTNode):
    name:      str = ''
    size:      Optional[ASTNode] = None
    old_style: bool = False


@dataclass
class AliasDecl(ASTNode):
    """let name = <寄存器视图表达式>;"""
    name:  str = ''
    value: ASTNode = None


@dataclass
class GateDecl(ASTNode):
    name:   str = ''
    params: List[str] = field(default_factory=list)
    qubits: List[str] = field(default_factory=list)
    body:   List[ASTNode] = field(default_factory=list)


@dataclass
class ArgumentDef(ASTNode):
    """def / defcal 形参；access 为 'readonly' / 'mutable' / None"""
    type_spec: ASTNode = None
    name:      str = ''
    access:    Optional[str] = None


@dataclass
class DefDecl(ASTNode):
    name:        str = ''
    arguments:   List[ArgumentDef] = field(default_factory=list)
    return_type: Optional[ScalarTypeSpec] = None
    body:        List[ASTNode] = field(default_factory=list)


@dataclass
class ExternDecl(ASTNode):
    name:           str = ''
    argument_types: List[ASTNode] = field(default_factory=list)
    return_type:    Optional[ScalarTypeSpec] = None


@dataclass
class DefcalDecl(ASTNode):
    """arguments 中既可以是 ArgumentDef，也可以是具体的常量表达式"""
    target:      str = ''
    arguments:   List[ASTNode] = field(default_factory=list)
    operands:    List[ASTNode] = field(default_factory=list)
    return_type: Optional[ScalarTypeSpec] = None
    body:        List[ASTNode] = field(default_factory=list)


@dataclass
class CalBlock(ASTNode):
    body: List[ASTNode] = field(default_factory=list)


# ──────────────────────────────────────────────────────────────────────────────
# 语句节点
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class ScopeBlock(ASTNode):
    statements: List[ASTNode] = field(default_factory=list)


@dataclass
class IfStmt(ASTNode):
    condition: ASTNode = None
    then_body: List[ASTNode] = field(default_factory=list)
    else_body: Optional[List[ASTNode]] = None


@dataclass
class ForStmt(ASTNode):
    var_type: ScalarTypeSpec = None
    var_name: str = ''
    iterable: ASTNode = None        # SetExpr / RangeExpr / 寄存器或数组表达式
    body:     List[ASTNode] = field(default_factory=list)


@dataclass
class WhileStmt(ASTNode):
    condition: ASTNode = None
    body:      List[ASTNode] = field(default_factory=list)


@dataclass
class SwitchCase(ASTNode):
    """labels 为空表示 default；colon_form 表示 `case x: ... break;` 写法"""
    labels:     List[ASTNode] = field(default_factory=list)
    body:       List[ASTNode] = field(default_factory=list)
    is_default: bool = False
    colon_form: bool = False


@dataclass
class SwitchStmt(ASTNode):
    target: ASTNode = None
    cases:  List[SwitchCase] = field(default_factory=list)

    @property
    def default(self) -> Optional[SwitchCase]:
        return next((c for c in self.cases if c.is_default), None)


@dataclass
class BreakStmt(ASTNode):
    pass


@dataclass
class ContinueStmt(ASTNode):
    pass


@dataclass
class EndStmt(ASTNode):
    pass


@dataclass
class ReturnStmt(ASTNode):
    value: Optional[ASTNode] = None


@dataclass
class BarrierStmt(ASTNode):
    qubits: List[ASTNode] = field(default_factory=list)


@dataclass
class DelayStmt(ASTNode):
    duration: ASTNode = None
    qubits:   List[ASTNode] = field(default_factory=list)


@dataclass
class BoxStmt(ASTNode):
    duration: Optional[ASTNode] = None
    body:     List[ASTNode] = field(default_factory=list)


@dataclass
class ResetStmt(ASTNode):
    qubit: ASTNode = None


@dataclass
class MeasureStmt(ASTNode):
    """measure q;  或  measure q -> c;"""
    measure: 'MeasureExpr' = None
    target:  Optional[ASTNode] = None


@dataclass
class GateModifier(ASTNode):
    kind:     str = ''                 # 'inv' / 'pow' / 'ctrl' / 'negctrl'
    argument: Optional[ASTNode] = None


@dataclass
class GateCall(ASTNode):
    name:      str = ''
    modifiers: List[GateModifier] = field(default_factory=list)
    arguments: List[ASTNode] = field(default_factory=list)
    qubits:    List[ASTNode] = field(default_factory=list)
    duration:  Optional[ASTNode] = None


@dataclass
class ExprStmt(ASTNode):
    expr: ASTNode = None


@dataclass
class AssignStmt(ASTNode):
    target: ASTNode = None
    op:     str = '='        # '=', '+=', '<<=' ...
    value:  ASTNode = None


# ──────────────────────────────────────────────────────────────────────────────
# 表达式节点
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class Identifier(ASTNode):
    name: str = ''

    def __repr__(self):
        return f"Id({self.name})"


@dataclass
class HardwareQubit(ASTNode):
    raw: str = ''

    @property
    def index(self) -> int:
        return int(self.raw[1:])


@dataclass
class IntLiteral(ASTNode):
    raw: str = ''

    @property
    def value(self) -> int:
        text = self.raw.replace('_', '')
        if len(text) > 1 and text[0] == '0' and text[1] in 'xXoObB':
            return int(text, 0)
        return int(text, 10)


@dataclass
class FloatLiteral(ASTNode):
    raw: str = ''

    @property
    def value(self) -> float:
        return float(self.raw.replace('_', ''))


@dataclass
class ImaginaryLiteral(ASTNode):
    raw: str = ''

    @property
    def value(self) -> complex:
        return complex(0.0, float(self.raw[:-2].strip().replace('_', '')))


@dataclass
class BoolLiteral(ASTNode):
    value: bool = False


@dataclass
class BitstringLiteral(ASTNode):
    raw: str = ''   # 含引号的原始字符串

    @property
    def value(self) -> str:
        return self.raw[1:-1].replace('_', '')


@dataclass
class DurationLiteral(ASTNode):
    raw: str = ''

    @property
    def unit(self) -> str:
        for unit in ('dt', 'ns', 'us', 'μs', 'µs', 'ms', 's'):
            if self.raw.endswith(unit):
                return 'us' if unit in ('μs', 'µs') else unit
        return 's'

    @property
    def value(self) -> float:
        text = self.raw.rstrip('dtnsuμµm').strip().replace('_', '')
        return float(text)


@dataclass
class BinaryOp(ASTNode):
    op:    str = ''
    left:  ASTNode = None
    right: ASTNode = None

    def __repr__(self):
        return f"BinOp({self.op})"


@dataclass
class UnaryOp(ASTNode):
    op:      str = ''
    operand: ASTNode = None


@dataclass
class Cast(ASTNode):
    type_spec: ASTNode = None
    operand:   ASTNode = None


@dataclass
class RangeExpr(ASTNode):
    """start:stop 或 start:step:stop（两端均包含）"""
    start: Optional[ASTNode] = None
    step:  Optional[ASTNode] = None
    stop:  Optional[ASTNode] = None


@dataclass
class SetExpr(ASTNode):
    values: List[ASTNode] = field(default_factory=list)


@dataclass
class IndexExpr(ASTNode):
    """base[i, j]、base[a:b]、base[{0, 2}]；indices 中的每一项对应一个维度"""
    base:    ASTNode = None
    indices: List[ASTNode] = field(default_factory=list)


@dataclass
class Concatenation(ASTNode):
    left:  ASTNode = None
    right: ASTNode = None


@dataclass
class Call(ASTNode):
    name:      str = ''
    arguments: List[ASTNode] = field(default_factory=list)


@dataclass
class MeasureExpr(ASTNode):
    operand: ASTNode = None


@dataclass
class ArrayLiteral(ASTNode):
    values: List[ASTNode] = field(default_factory=list)


@dataclass
class DurationOf(ASTNode):
    body: List[ASTNode] = field(default_factory=list)


@dataclass
class ModifiedGateRef(ASTNode):
    """
    修饰符链的规范形式（由 Expander 生成，挂在 GateCall.normalized 上）。
    controls 按操作数顺序记录每个控制比特的极性（True = ctrl，False = negctrl）。
    """
    name:     str = ''
    controls: tuple = ()
    inverse:  bool = False
    power:    Any = 1


# ──────────────────────────────────────────────────────────────────────────────
# Transformer
# ──────────────────────────────────────────────────────────────────────────────

def _is_tok(tok, *types) -> bool:
    return isinstance(tok, Token) and str(tok.type) in types


def _tok(items, *types) -> Optional[Token]:
    return next((i for i in items if _is_tok(i, *types)), None)


def _nodes(items, cls=ASTNode) -> list:
    return [i for i in items if isinstance(i, cls)]


def _node(items, cls=ASTNode):
    return next((i for i in items if isinstance(i, cls)), None)


def _lists(items) -> list:
    return [i for i in items if isinstance(i, list)]


def _body(node) -> list:
    """循环 / 分支体：花括号块展开为语句列表，单条语句包成列表"""
    if isinstance(node, ScopeBlock):
        return node.statements
    return [node] if node is not None else []


def attach_pragmas(statements: list) -> list:
    """把 pragma 挂到紧随其后的语句上；文件末尾的 pragma 保留为独立节点"""
    result, pending = [], []
    for stmt in statements:
        if isinstance(stmt, Pragma):
            pending.append(stmt)
            continue
        if pending:
            stmt.pragmas = tuple(pending) + tuple(stmt.pragmas)
            pending = []
        result.append(stmt)
    result.extend(pending)
    return result


class QasmTransformer(Transformer):
    """
    将 Lark CST 转换为 OpenQASM 3 AST。
    规则名与 grammar 中的产生式名 / 别名保持一致。

    使用 @v_args(meta=True) 来获取源码位置。
    """

    def __init__(self, source: str = '<input>'):
        super().__init__()
        self.source = source

    # ── 辅助 ────────────────────────────────────────────────────────────────

    def _set_pos(self, node: ASTNode, meta) -> ASTNode:
        if meta is not None and not getattr(meta, 'empty', True):
            node.line = meta.line
            node.col = meta.column
            node.end_line = meta.end_line
            node.end_col = meta.end_column
        node.source = self.source
        return node

    def _tok_pos(self, node: ASTNode, tok: Token) -> ASTNode:
        node.line, node.col = tok.line, tok.column
        node.end_line, node.end_col = tok.end_line, tok.end_column
        node.source = self.source
        return node

    # ── 顶层 ────────────────────────────────────────────────────────────────

    @v_args(meta=True)
    def program(self, meta, items):
        return self._set_pos(Program(statements=attach_pragmas(_nodes(items))), meta)

    @v_args(meta=True)
    def scope(self, meta, items):
        return self._set_pos(ScopeBlock(statements=attach_pragmas(_nodes(items))), meta)

    @v_args(meta=True)
    def pragma(self, meta, items):
        return self._set_pos(Pragma(text=str(items[0])), meta)

    @v_args(meta=True)
    def annotated_statement(self, meta, items):
        stmt = items[-1]
        anns = tuple(self._tok_pos(Annotation(text=str(t)), t)
                     for t in items if _is_tok(t, 'ANNOTATION'))
        stmt.annotations = anns + tuple(stmt.annotations)
        return stmt

    # ── 简单语句 ────────────────────────────────────────────────────────────

    @v_args(meta=True)
    def version_statement(self, meta, items):
        tok = _tok(items, 'INTEGER_LITERAL', 'FLOAT_LITERAL')
        return self._set_pos(VersionDecl(version=str(tok)), meta)

    @v_args(meta=True)
    def include_statement(self, meta, items):
        tok = _tok(items, 'STRING_LITERAL', 'BITSTRING_LITERAL')
        return self._set_pos(Include(path=str(tok)[1:-1]), meta)

    @v_args(meta=True)
    def calibration_grammar_statement(self, meta, items):
        tok = _tok(items, 'STRING_LITERAL', 'BITSTRING_LITERAL')
        return self._set_pos(CalibrationGrammar(name=str(tok)[1:-1]), meta)

    @v_args(meta=True)
    def break_statement(self, meta, items):
        return self._set_pos(BreakStmt(), meta)

    @v_args(meta=True)
    def continue_statement(self, meta, items):
        return self._set_pos(ContinueStmt(), meta)

    @v_args(meta=True)
    def end_statement(self, meta, items):
        return self._set_pos(EndStmt(), meta)

    @v_args(meta=True)
    def return_statement(self, meta, items):
        return self._set_pos(ReturnStmt(value=_node(items)), meta)

    # ── 控制流 ──────────────────────────────────────────────────────────────

    @v_args(meta=True)
    def for_statement(self, meta, items):
        var_type, iterable, body = _nodes(items)
        name = _tok(items, 'IDENTIFIER')
        return self._set_pos(ForStmt(var_type=var_type, var_name=str(name),
                                     iterable=iterable, body=_body(body)), meta)

    def for_iterable(self, items):
        return _node(items)

    @v_args(meta=True)
    def if_statement(self, meta, items):
        nodes = _nodes(items)
        cond, then = nodes[0], nodes[1]
        else_body = _body(nodes[2]) if len(nodes) > 2 else None
        return self._set_pos(IfStmt(condition=cond, then_body=_body(then),
                                    else_body=else_body), meta)

    @v_args(meta=True)
    def while_statement(self, meta, items):
        cond, body = _nodes(items)
        return self._set_pos(WhileStmt(condition=cond, body=_body(body)), meta)

    @v_args(meta=True)
    def switch_statement(self, meta, items):
        nodes = _nodes(items)
        return self._set_pos(SwitchStmt(target=nodes[0], cases=nodes[1:]), meta)

    @v_args(meta=True)
    def case_block(self, meta, items):
        labels = _lists(items)[0]
        return self._set_pos(SwitchCase(labels=labels, body=_node(items, ScopeBlock).statements), meta)

    @v_args(meta=True)
    def default_block(self, meta, items):
        return self._set_pos(SwitchCase(body=_node(items, ScopeBlock).statements,
                                        is_default=True), meta)

    @v_args(meta=True)
    def case_clause(self, meta, items):
        labels = _lists(items)[0]
        return self._set_pos(SwitchCase(labels=labels, body=attach_pragmas(_nodes(items)),
                                        colon_form=True), meta)

    @v_args(meta=True)
    def default_clause(self, meta, items):
        return self._set_pos(SwitchCase(body=attach_pragmas(_nodes(items)),
                                        is_default=True, colon_form=True), meta)

    # ── 量子语句 ────────────────────────────────────────────────────────────

    @v_args(meta=True)
    def barrier_statement(self, meta, items):
        operands = _lists(items)
        return self._set_pos(BarrierStmt(qubits=operands[0] if operands else []), meta)

    @v_args(meta=True)
    def box_statement(self, meta, items):
        designator = _node(items, Designator)
        return self._set_pos(BoxStmt(duration=designator.expr if designator else None,
                                     body=_node(items, ScopeBlock).statements), meta)

    @v_args(meta=True)
    def delay_statement(self, meta, items):
        operands = _lists(items)
        return self._set_pos(DelayStmt(duration=_node(items, Designator).expr,
                                       qubits=operands[0] if operands else []), meta)

    @v_args(meta=True)
    def gate_call_statement(self, meta, items):
        node = GateCall()
        in_paren = False
        for item in items:
            if isinstance(item, GateModifier):
                node.modifiers.append(item)
            elif _is_tok(item, 'IDENTIFIER', 'GPHASE'):
                node.name = str(item)
            elif _is_tok(item, 'LPAREN'):
                in_paren = True
            elif _is_tok(item, 'RPAREN'):
                in_paren = False
            elif isinstance(item, list):
                if in_paren:
                    node.arguments = item
                else:
                    node.qubits = item
            elif isinstance(item, Designator):
                node.duration = item.expr
        return self._set_pos(node, meta)

    @v_args(meta=True)
    def measure_arrow_assignment_statement(self, meta, items):
        nodes = _nodes(items)
        target = nodes[1] if len(nodes) > 1 else None
        return self._set_pos(MeasureStmt(measure=nodes[0], target=target), meta)

    @v_args(meta=True)
    def reset_statement(self, meta, items):
        return self._set_pos(ResetStmt(qubit=_node(items)), meta)

    @v_args(meta=True)
    def inv_modifier(self, meta, items):
        return self._set_pos(GateModifier(kind='inv'), meta)

    @v_args(meta=True)
    def pow_modifier(self, meta, items):
        return self._set_pos(GateModifier(kind='pow', argument=_node(items)), meta)

    @v_args(meta=True)
    def ctrl_modifier(self, meta, items):
        return self._set_pos(GateModifier(kind='ctrl', argument=_node(items)), meta)

    @v_args(meta=True)
    def negctrl_modifier(self, meta, items):
        return self._set_pos(GateModifier(kind='negctrl', argument=_node(items)), meta)

    # ── 声明 ────────────────────────────────────────────────────────────────

    @v_args(meta=True)
    def alias_declaration_statement(self, meta, items):
        name = _tok(items, 'IDENTIFIER')
        return self._set_pos(AliasDecl(name=str(name), value=_node(items)), meta)

    @v_args(meta=True)
    def classical_declaration_statement(self, meta, items):
        nodes = _nodes(items)
        name = _tok(items, 'IDENTIFIER')
        init = nodes[1] if len(nodes) > 1 else None
        return self._set_pos(ClassicalDecl(type_spec=nodes[0], name=str(name), init=init), meta)

    @v_args(meta=True)
    def const_declaration_statement(self, meta, items):
        type_spec, init = _nodes(items)
        name = _tok(items, 'IDENTIFIER')
        return self._set_pos(ClassicalDecl(type_spec=type_spec, name=str(name),
                                           init=init, is_const=True), meta)

    @v_args(meta=True)
    def io_declaration_statement(self, meta, items):
        io = _tok(items, 'INPUT', 'OUTPUT')
        name = _tok(items, 'IDENTIFIER')
        return self._set_pos(ClassicalDecl(type_spec=_node(items), name=str(name),
                                           io=str(io)), meta)

    @v_args(meta=True)
    def old_style_declaration_statement(self, meta, items):
        kind = _tok(items, 'CREG', 'QREG')
        name = _tok(items, 'IDENTIFIER')
        designator = _node(items, Designator)
        size = designator.expr if designator else None
        if kind.type == 'QREG':
            node = QuantumDecl(name=str(name), size=size, old_style=True)
        else:
            spec = self._tok_pos(ScalarTypeSpec(kind='bit', size=size), kind)
            node = ClassicalDecl(type_spec=spec, name=str(name))
        return self._set_pos(node, meta)

    @v_args(meta=True)
    def quantum_declaration_statement(self, meta, items):
        qtype = _node(items, QubitTypeSpec)
        name = _tok(items, 'IDENTIFIER')
        return self._set_pos(QuantumDecl(name=str(name), size=qtype.size), meta)

    @v_args(meta=True)
    def def_statement(self, meta, items):
        name = _tok(items, 'IDENTIFIER')
        args = _lists(items)
        return self._set_pos(DefDecl(name=str(name),
                                     arguments=args[0] if args else [],
                                     return_type=_node(items, ScalarTypeSpec),
                                     body=_node(items, ScopeBlock).statements), meta)

    @v_args(meta=True)
    def extern_statement(self, meta, items):
        name = _tok(items, 'IDENTIFIER')
        args = _lists(items)
        return self._set_pos(ExternDecl(name=str(name),
                                        argument_types=args[0] if args else [],
                                        return_type=_node(items, ScalarTypeSpec)), meta)

    @v_args(meta=True)
    def extern_variable_statement(self, meta, items):
        name = _tok(items, 'IDENTIFIER')
        return self._set_pos(ClassicalDecl(type_spec=_node(items), name=str(name),
                                           io='extern'), meta)

    @v_args(meta=True)
    def gate_statement(self, meta, items):
        node = GateDecl(name=str(_tok(items, 'IDENTIFIER')))
        in_paren = False
        for item in items:
            if _is_tok(item, 'LPAREN'):
                in_paren = True
            elif _is_tok(item, 'RPAREN'):
                in_paren = False
            elif isinstance(item, list):
                if in_paren:
                    node.params = item
                else:
                    node.qubits = item
            elif isinstance(item, ScopeBlock):
                node.body = item.statements
        return self._set_pos(node, meta)

    @v_args(meta=True)
    def assignment_statement(self, meta, items):
        target, value = _nodes(items)
        op = _tok(items, 'EQUALS', 'COMPOUND_ASSIGNMENT_OPERATOR')
        return self._set_pos(AssignStmt(target=target, op=str(op), value=value), meta)

    @v_args(meta=True)
    def expression_statement(self, meta, items):
        return self._set_pos(ExprStmt(expr=_node(items)), meta)

    @v_args(meta=True)
    def cal_statement(self, meta, items):
        return self._set_pos(CalBlock(body=_node(items, ScopeBlock).statements), meta)

    @v_args(meta=True)
    def defcal_statement(self, meta, items):
        node = DefcalDecl()
        in_paren = False
        for item in items:
            if _is_tok(item, 'DEFCAL'):
                continue
            if _is_tok(item, 'LPAREN'):
                in_paren = True
            elif _is_tok(item, 'RPAREN'):
                in_paren = False
            elif isinstance(item, Token):
                node.target = str(item)
            elif isinstance(item, list):
                if in_paren:
                    node.arguments = item
                else:
                    node.operands = item
            elif isinstance(item, ScalarTypeSpec):
                node.return_type = item
            elif isinstance(item, ScopeBlock):
                node.body = item.statements
        return self._set_pos(node, meta)

    def defcal_target(self, items):
        return items[0]

    @v_args(meta=True)
    def defcal_operand(self, meta, items):
        tok = items[0]
        if tok.type == 'HARDWARE_QUBIT':
            return self._tok_pos(HardwareQubit(raw=str(tok)), tok)
        return self._tok_pos(Identifier(name=str(tok)), tok)

    def defcal_operand_list(self, items):
        return _nodes(items)

    def defcal_argument_list(self, items):
        return _nodes(items)

    # ── 表达式 ──────────────────────────────────────────────────────────────

    @v_args(meta=True)
    def concatenation(self, meta, items):
        left, right = _nodes(items)
        return self._set_pos(Concatenation(left=left, right=right), meta)

    @v_args(meta=True)
    def binary_expression(self, meta, items):
        left, op, right = items
        return self._set_pos(BinaryOp(op=str(op), left=left, right=right), meta)

    @v_args(meta=True)
    def unary_op(self, meta, items):
        op, operand = items
        return self._set_pos(UnaryOp(op=str(op), operand=operand), meta)

    @v_args(meta=True)
    def index_expression(self, meta, items):
        base, indices = items
        return self._set_pos(IndexExpr(base=base, indices=indices), meta)

    def paren_expression(self, items):
        return _node(items)

    @v_args(meta=True)
    def identifier(self, meta, items):
        return self._set_pos(Identifier(name=str(items[0])), meta)

    @v_args(meta=True)
    def hardware_qubit(self, meta, items):
        return self._set_pos(HardwareQubit(raw=str(items[0])), meta)

    @v_args(meta=True)
    def integer_literal(self, meta, items):
        return self._set_pos(IntLiteral(raw=str(items[0])), meta)

    @v_args(meta=True)
    def float_literal(self, meta, items):
        return self._set_pos(FloatLiteral(raw=str(items[0])), meta)

    @v_args(meta=True)
    def imaginary_literal(self, meta, items):
        return self._set_pos(ImaginaryLiteral(raw=str(items[0])), meta)

    @v_args(meta=True)
    def timing_literal(self, meta, items):
        return self._set_pos(DurationLiteral(raw=str(items[0])), meta)

    @v_args(meta=True)
    def boolean_literal(self, meta, items):
        return self._set_pos(BoolLiteral(value=str(items[0]) == 'true'), meta)

    @v_args(meta=True)
    def bitstring_literal(self, meta, items):
        return self._set_pos(BitstringLiteral(raw=str(items[0])), meta)

    @v_args(meta=True)
    def cast_expression(self, meta, items):
        type_spec, operand = _nodes(items)
        return self._set_pos(Cast(type_spec=type_spec, operand=operand), meta)

    @v_args(meta=True)
    def call_expression(self, meta, items):
        name = items[0]
        args = _lists(items)
        return self._set_pos(Call(name=str(name), arguments=args[0] if args else []), meta)

    @v_args(meta=True)
    def durationof_expression(self, meta, items):
        return self._set_pos(DurationOf(body=_node(items, ScopeBlock).statements), meta)

    def index_operator(self, items):
        return _nodes(items)

    @v_args(meta=True)
    def range_expression(self, meta, items):
        parts: list[Optional[ASTNode]] = [None]
        for item in items:
            if _is_tok(item, 'COLON'):
                parts.append(None)
            else:
                parts[-1] = item
        if len(parts) == 3:
            start, step, stop = parts
        else:
            (start, stop), step = parts, None
        return self._set_pos(RangeExpr(start=start, step=step, stop=stop), meta)

    @v_args(meta=True)
    def set_expression(self, meta, items):
        return self._set_pos(SetExpr(values=_nodes(items)), meta)

    @v_args(meta=True)
    def array_literal(self, meta, items):
        return self._set_pos(ArrayLiteral(values=_nodes(items)), meta)

    @v_args(meta=True)
    def indexed_identifier(self, meta, items):
        tok = items[0]
        node: ASTNode = self._tok_pos(Identifier(name=str(tok)), tok)
        for indices in items[1:]:
            node = self._set_pos(IndexExpr(base=node, indices=indices), meta)
        return node

    @v_args(meta=True)
    def measure_expression(self, meta, items):
        return self._set_pos(MeasureExpr(operand=_node(items)), meta)

    def expression_list(self, items):
        return _nodes(items)

    def identifier_list(self, items):
        return [str(t) for t in items if _is_tok(t, 'IDENTIFIER')]

    def gate_operand(self, items):
        item = items[0]
        if _is_tok(item, 'HARDWARE_QUBIT'):
            return self._tok_pos(HardwareQubit(raw=str(item)), item)
        return item

    def gate_operand_list(self, items):
        return _nodes(items)

    # ── 类型 ────────────────────────────────────────────────────────────────

    @v_args(meta=True)
    def scalar_type(self, meta, items):
        kind = items[0]
        designator = _node(items, Designator)
        node = ScalarTypeSpec(kind=str(kind),
                              size=designator.expr if designator else None,
                              base=_node(items[1:], ScalarTypeSpec))
        return self._set_pos(node, meta)

    @v_args(meta=True)
    def qubit_type(self, meta, items):
        designator = _node(items, Designator)
        return self._set_pos(QubitTypeSpec(size=designator.expr if designator else None), meta)

    @v_args(meta=True)
    def array_type(self, meta, items):
        base = _node(items, ScalarTypeSpec)
        return self._set_pos(ArrayTypeSpec(base=base, dims=_lists(items)[0]), meta)

    @v_args(meta=True)
    def array_reference_type(self, meta, items):
        base = _node(items, ScalarTypeSpec)
        dims = _lists(items)
        if dims:
            return self._set_pos(ArrayRefTypeSpec(base=base, dims=dims[0]), meta)
        count = _nodes(items)[-1]
        return self._set_pos(ArrayRefTypeSpec(base=base, dim_count=count), meta)

    @v_args(meta=True)
    def designator(self, meta, items):
        return self._set_pos(Designator(expr=_node(items)), meta)

    # ── 形参 ────────────────────────────────────────────────────────────────

    @v_args(meta=True)
    def scalar_argument(self, meta, items):
        return self._set_pos(ArgumentDef(type_spec=_node(items),
                                         name=str(_tok(items, 'IDENTIFIER'))), meta)

    @v_args(meta=True)
    def qubit_argument(self, meta, items):
        return self._set_pos(ArgumentDef(type_spec=_node(items),
                                         name=str(_tok(items, 'IDENTIFIER'))), meta)

    @v_args(meta=True)
    def old_style_argument(self, meta, items):
        kind = _tok(items, 'CREG', 'QREG')
        designator = _node(items, Designator)
        size = designator.expr if designator else None
        if kind.type == 'QREG':
            spec = QubitTypeSpec(size=size)
        else:
            spec = ScalarTypeSpec(kind='bit', size=size)
        self._tok_pos(spec, kind)
        return self._set_pos(ArgumentDef(type_spec=spec,
                                         name=str(_tok(items, 'IDENTIFIER'))), meta)

    @v_args(meta=True)
    def array_argument(self, meta, items):
        access = _tok(items, 'READONLY', 'MUTABLE')
        return self._set_pos(ArgumentDef(type_spec=_node(items, ArrayRefTypeSpec),
                                         name=str(_tok(items, 'IDENTIFIER')),
                                         access=str(access)), meta)

    def argument_definition_list(self, items):
        return _nodes(items)

    @v_args(meta=True)
    def extern_argument(self, meta, items):
        spec = _node(items)
        if isinstance(spec, Designator) or spec is None:
            spec = ScalarTypeSpec(kind='bit', size=spec.expr if spec else None)
        return self._set_pos(spec, meta)

    def extern_argument_list(self, items):
        return _nodes(items)

    @v_args(meta=True)
    def return_signature(self, meta, items):
        spec = _node(items, ScalarTypeSpec)
        if spec is None:
            spec = ScalarTypeSpec(kind='void')
        return self._set_pos(spec, meta)
