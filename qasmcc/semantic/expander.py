"""
门修饰符规范化与寄存器广播展开
==============================
在类型检查之后运行，为量子语句补充两类注解：

  GateCall.normalized   ModifiedGateRef：修饰符链的规范形式
                        ctrl @ ctrl @ G 与 ctrl(2) @ G 得到同一形式；
                        inv / pow 合并为一个带符号的总幂次
  GateCall.expansion    GateApplication 列表：广播、pow 展开、inv 求逆之后
                        逐比特的门应用序列

  ResetStmt / MeasureStmt / AssignStmt(= measure) / BarrierStmt / DelayStmt / BoxStmt
  也会得到 expansion（或 targets），空操作数表示作用域内的全部比特。

求逆规则：
  stdgates 固定门          → 已知逆门（s → sdg，自逆门不变）
  U(θ, φ, λ)             → U(-θ, -λ, -φ)
  旋转门（rx / rz / p ...） → 参数取负
  有定义体的用户门          → 内联，语句逆序、逐条求逆（显式栈，深度有上限）
  带参数的不透明门          → 参数全部取负
  其余                     → 保留 inverse=True
"""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Any, Optional

from ..config import CompilerOptions
from ..error import DiagnosticBag, E_SYNTAX, E_TYPE, E_REGISTER_SIZE
from ..tree.transformer import (
    ASTNode, Program, GateDecl, ScopeBlock, BarrierStmt, DelayStmt, BoxStmt, ResetStmt,
    MeasureStmt, AssignStmt, GateCall, ModifiedGateRef, Identifier, IndexExpr, MeasureExpr,
    UnaryOp, BinaryOp, FloatLiteral, RangeExpr, SetExpr,
)
from .checker import operand_refs
from .consteval import ConstEvaluator, NotConstant
from .symbol import SymbolKind, QubitRef
from .type import QubitType, BitType

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────────
# 展开结果
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GateApplication:
    """
    一次具体的门应用。
    qubits 先列出控制比特（与 controls 一一对应），再列出目标比特；
    params 中能折叠的参数为 Python 数值，否则为原 AST 表达式。
    """
    gate:     str
    params:   tuple = ()
    qubits:   tuple = ()
    controls: tuple = ()
    inverse:  bool = False

    @property
    def targets(self) -> tuple:
        return self.qubits[len(self.controls):]

    def __str__(self):
        mods = ''.join('ctrl @ ' if c else 'negctrl @ ' for c in self.controls)
        if self.inverse:
            mods = 'inv @ ' + mods
        params = f"({', '.join(_param_text(p) for p in self.params)})" if self.params else ''
        return f"{mods}{self.gate}{params} {', '.join(map(repr, self.qubits))}"


@dataclass(frozen=True)
class MeasureApplication:
    qubit:  QubitRef
    target: Optional[str] = None        # 'c[0]'；无目标时为 None


@dataclass(frozen=True)
class ResetApplication:
    qubit: QubitRef


@dataclass(frozen=True)
class BarrierApplication:
    qubits: tuple


@dataclass(frozen=True)
class DelayApplication:
    duration: Any
    qubits:   tuple


class FractionalPowerError(Exception):
    """pow(k) 的 k 不是整数，且该门无法解析地分解"""
    def __init__(self, gate: str, power):
        super().__init__(f"门 '{gate}' 不支持分数次幂 pow({power})")
        self.gate = gate
        self.power = power


# 求逆时参数取负的旋转门
ROTATION_GATES = frozenset({
    'gphase', 'rx', 'ry', 'rz', 'p', 'phase', 'u1',
    'crx', 'cry', 'crz', 'cp', 'cphase', 'cu1',
})

# 已知逆门（stdgates.inc 中的固定门）；自逆门映射到自身
KNOWN_INVERSES = {
    's': 'sdg', 'sdg': 's', 't': 'tdg', 'tdg': 't',
    'id': 'id', 'x': 'x', 'y': 'y', 'z': 'z', 'h': 'h',
    'cx': 'cx', 'CX': 'CX', 'cy': 'cy', 'cz': 'cz', 'ch': 'ch',
    'swap': 'swap', 'ccx': 'ccx', 'cswap': 'cswap',
}

# stdgates.inc 中没有同名逆门的固定门：求逆后保留 inverse 标记
UNNAMED_INVERSES = frozenset({'sx'})

STANDARD_INCLUDE = 'stdgates.inc'

# 分数次幂：固定门 → (旋转门, 对应 pow(1) 的角度)
PHASE_EQUIVALENTS = {
    'z':   ('p', math.pi),
    's':   ('p', math.pi / 2),
    'sdg': ('p', -math.pi / 2),
    't':   ('p', math.pi / 4),
    'tdg': ('p', -math.pi / 4),
}


def _param_text(p) -> str:
    if isinstance(p, float):
        return f"{p:.6g}"
    if isinstance(p, ASTNode):
        return '<expr>'
    return str(p)


def _negate(p):
    if isinstance(p, ASTNode):
        return UnaryOp(op='-', operand=p).copy_pos(p)
    return -p


def _scale(p, factor):
    if isinstance(p, ASTNode):
        return BinaryOp(op='*', left=p, right=FloatLiteral(raw=repr(float(factor)))).copy_pos(p)
    return p * factor


def _flatten(statements: list):
    for stmt in statements:
        if isinstance(stmt, ScopeBlock):
            yield from _flatten(stmt.statements)
        else:
            yield stmt


@contextmanager
def _bound(symbols: list, values: list):
    """内联 gate 体时，把形参符号临时绑定到实参值"""
    saved = [(s, s.value) for s in symbols]
    try:
        for sym, value in zip(symbols, values):
            sym.value = None if isinstance(value, ASTNode) else value
        yield
    finally:
        for sym, value in saved:
            sym.value = value


class Expander:
    """
    修饰符规范化 + 寄存器广播展开。

    用法：
        Expander(diag, options).expand(program)
        for app in gate_call.expansion:
            print(app)
    """

    def __init__(self, diag: DiagnosticBag, options: Optional[CompilerOptions] = None):
        self.diag    = diag
        self.options = options or CompilerOptions()
        self._eval   = ConstEvaluator(self.options, propagate_known=True)
        self._strict = ConstEvaluator(self.options)
        self._in_gate_body = False
        self._gates: dict[str, GateDecl] = {}

    # ══════════════════════════════════════════════════════════════════════
    # 入口
    # ══════════════════════════════════════════════════════════════════════

    def expand(self, program: Program):
        logger.debug("expansion start")
        self._visit(program.statements)
        logger.debug("expansion done")

    # ══════════════════════════════════════════════════════════════════════
    # 分发器
    # ══════════════════════════════════════════════════════════════════════

    def _visit(self, node):
        if node is None:
            return
        if isinstance(node, list):
            for item in node:
                self._visit(item)
            return
        handler = getattr(self, '_visit_' + type(node).__name__, self._visit_default)
        handler(node)

    def _visit_default(self, node: ASTNode):
        for f in fields(node):
            child = getattr(node, f.name)
            if isinstance(child, list):
                self._visit([c for c in child if isinstance(c, ASTNode)])
            elif isinstance(child, ASTNode):
                self._visit(child)

    def _visit_GateDecl(self, node: GateDecl):
        # gate 体是模板：只做规范化，不展开
        self._gates[node.name] = node
        self._in_gate_body = True
        self._visit(node.body)
        self._in_gate_body = False

    # ══════════════════════════════════════════════════════════════════════
    # 修饰符规范化
    # ══════════════════════════════════════════════════════════════════════

    def _value(self, expr):
        if expr is None:
            return None
        if expr.const_value is not None:
            return expr.const_value
        try:
            return self._eval.evaluate(expr)
        except NotConstant:
            return None

    def _modifier_value(self, expr):
        """修饰符参数只接受 const 表达式"""
        try:
            return self._strict.evaluate(expr)
        except NotConstant:
            return None

    def normalize(self, call: GateCall) -> Optional[ModifiedGateRef]:
        """
        修饰符链 → ModifiedGateRef。
        controls 按操作数顺序记录极性；inv 与 pow 合并为总幂次，
        负幂次记为 inverse=True、power=|k|。参数不是常量时返回 None。
        """
        controls: list[bool] = []
        power: Any = 1
        inverted = False
        for mod in call.modifiers:
            if mod.kind in ('ctrl', 'negctrl'):
                count = 1 if mod.argument is None else self._modifier_value(mod.argument)
                if not isinstance(count, int) or count <= 0:
                    return None
                controls.extend([mod.kind == 'ctrl'] * count)
            elif mod.kind == 'inv':
                inverted = not inverted
            elif mod.kind == 'pow':
                k = self._modifier_value(mod.argument)
                if isinstance(k, bool) or not isinstance(k, (int, float)):
                    return None
                power = power * k
        if isinstance(power, float) and power.is_integer():
            power = int(power)
        if power < 0:
            inverted, power = not inverted, -power
        if power == 0:
            inverted = False
        ref = ModifiedGateRef(name=call.name, controls=tuple(controls),
                              inverse=inverted, power=power).copy_pos(call)
        return ref

    # ══════════════════════════════════════════════════════════════════════
    # 门调用
    # ══════════════════════════════════════════════════════════════════════

    def _visit_GateCall(self, node: GateCall):
        if len(node.modifiers) > self.options.max_modifier_depth:
            self.diag.error(E_SYNTAX, f"修饰符链过长（{len(node.modifiers)} 层，上限 "
                            f"{self.options.max_modifier_depth}）", node)
            return
        node.normalized = self.normalize(node)
        node.expansion = None
        if self._in_gate_body or node.normalized is None:
            return
        sym = node.symbol
        # sym 为 None 时是只有 defcal 的门
        if sym is not None and sym.kind is not SymbolKind.GATE:
            return

        width = self._broadcast_width(node)
        if width is None:
            node.expansion = []
            return
        operands = [operand_refs(q, self._eval) for q in node.qubits]
        if any(refs is None for refs in operands):
            return          # 动态下标：无法在编译期展开
        if any(len(refs) not in (1, width) for refs in operands):
            return
        params = self._params(node.arguments)
        rows = [tuple(refs[i] if len(refs) > 1 else refs[0] for refs in operands)
                for i in range(width)]
        try:
            pending = []
            for qubits in rows:
                pending.extend(self._build(node.normalized, params, qubits, node))
            node.expansion = self._resolve_inverses(pending, node)
        except FractionalPowerError as e:
            self.diag.error(E_TYPE, str(e), node,
                            hint="设置 allow_fractional_pow=True 以把旋转门的分数次幂折叠进角度")
            node.expansion = []

    def _broadcast_width(self, node: GateCall) -> Optional[int]:
        """寄存器操作数的公共长度；单比特操作数重复使用。长度不一致报 E005 并返回 None"""
        sizes = []
        for q in node.qubits:
            qtype = q.qtype
            if isinstance(qtype, QubitType) and qtype.size is not None:
                sizes.append((q, qtype.size))
        distinct = {size for _, size in sizes}
        if len(distinct) > 1:
            detail = '，'.join(f"'{_operand_name(q)}' 大小为 {size}" for q, size in sizes)
            self.diag.error(E_REGISTER_SIZE,
                            f"门 '{node.name}' 的寄存器操作数大小不一致：{detail}",
                            node, related=[q for q, _ in sizes])
            return None
        return distinct.pop() if distinct else 1

    def _params(self, arguments: list) -> tuple:
        """能折叠的参数取数值，其余保留表达式"""
        values = []
        for arg in arguments:
            value = self._value(arg)
            values.append(arg if value is None else value)
        return tuple(values)

    def _build(self, ref: ModifiedGateRef, params: tuple, qubits: tuple, node) -> list:
        """一行操作数 → 待求逆的门应用序列（已处理 pow）"""
        if ref.power == 0:
            return [GateApplication('id', (), qubits)]
        name, power = ref.name, ref.power
        if not isinstance(power, int):
            name, params = self._fractional(name, params, power)
            power = 1
        if power > self.options.max_pow_repeat:
            self.diag.error(E_TYPE, f"pow({power}) 超过展开上限 {self.options.max_pow_repeat}", node)
            return []
        app = GateApplication(name, params, qubits, ref.controls, ref.inverse)
        return [app] * power

    def _fractional(self, name: str, params: tuple, power: float):
        if not self.options.allow_fractional_pow:
            raise FractionalPowerError(name, power)
        if name in ROTATION_GATES and params:
            return name, tuple(_scale(p, power) for p in params)
        if name in PHASE_EQUIVALENTS:
            rotation, angle = PHASE_EQUIVALENTS[name]
            return rotation, (angle * power,)
        raise FractionalPowerError(name, power)

    # ══════════════════════════════════════════════════════════════════════
    # 求逆
    # ══════════════════════════════════════════════════════════════════════

    def _resolve_inverses(self, pending: list, node) -> list:
        """
        显式栈处理 inverse=True 的应用：按求逆规则改写，
        用户门的定义体内联为逆序、逐条取逆的序列。
        """
        result = []
        stack = [(app, 0) for app in reversed(pending)]
        while stack:
            app, depth = stack.pop()
            if not isinstance(app, GateApplication) or not app.inverse:
                result.append(app)
                continue
            decl = self._gates.get(app.gate)
            inverse_name = KNOWN_INVERSES.get(app.gate)
            if inverse_name is not None and (decl is None or _is_standard(decl)):
                result.append(GateApplication(inverse_name, app.params, app.qubits, app.controls))
                continue
            if app.gate in UNNAMED_INVERSES and (decl is None or _is_standard(decl)):
                result.append(app)
                continue
            if app.gate in ('U', 'u', 'u3') and len(app.params) == 3:
                theta, phi, lam = app.params
                negated = (_negate(theta), _negate(lam), _negate(phi))
                result.append(GateApplication(app.gate, negated,
                                              app.qubits, app.controls))
                continue
            if app.gate in ROTATION_GATES:
                result.append(GateApplication(app.gate, tuple(_negate(p) for p in app.params),
                                              app.qubits, app.controls))
                continue
            if decl is not None and decl.body:
                if any(isinstance(p, ASTNode) for p in app.params):
                    result.append(app)      # 参数未知，无法内联
                    continue
                if depth >= self.options.max_modifier_depth:
                    self.diag.error(E_SYNTAX, f"内联门 '{app.gate}' 的逆时嵌套过深", node)
                    return []
                body = self._instantiate(decl, app, node)
                stack.extend((_flip(b), depth + 1) for b in body)
                continue
            if app.params:
                result.append(GateApplication(app.gate, tuple(_negate(p) for p in app.params),
                                              app.qubits, app.controls))
                continue
            result.append(app)
        return result

    def _instantiate(self, decl: GateDecl, app: GateApplication, node) -> list:
        """把 gate 定义体实例化为门应用序列；外层控制比特附加到每一条上"""
        n_ctrl = len(app.controls)
        outer, actual = app.qubits[:n_ctrl], app.qubits[n_ctrl:]
        mapping = {formal.view.refs[0]: ref for formal, ref in zip(decl.qubit_symbols, actual)}

        apps = []
        with _bound(decl.param_symbols, list(app.params)):
            for stmt in _flatten(decl.body):
                if isinstance(stmt, BarrierStmt):
                    refs = actual
                    if stmt.qubits:
                        refs = [r for q in stmt.qubits for r in operand_refs(q, self._eval) or ()]
                    apps.append(BarrierApplication(tuple(mapping.get(r, r) for r in refs)))
                    continue
                if not isinstance(stmt, GateCall):
                    continue
                ref = self.normalize(stmt)
                if ref is None:
                    continue
                qubits = tuple(mapping.get(r, r)
                               for q in stmt.qubits for r in operand_refs(q, self._eval) or ())
                for inner in self._build(ref, self._params(stmt.arguments), qubits, node):
                    apps.append(GateApplication(inner.gate, inner.params, outer + inner.qubits,
                                                app.controls + inner.controls, inner.inverse))
        return apps

    # ══════════════════════════════════════════════════════════════════════
    # 其它量子语句
    # ══════════════════════════════════════════════════════════════════════

    def _refs(self, operands: list, node) -> Optional[tuple]:
        if not operands:
            return tuple(getattr(node, 'scope_qubits', ()))
        refs = []
        for q in operands:
            r = operand_refs(q, self._eval)
            if r is None:
                return None
            refs.extend(r)
        return tuple(refs)

    def _visit_BarrierStmt(self, node: BarrierStmt):
        if self._in_gate_body:
            return
        refs = self._refs(node.qubits, node)
        node.expansion = None if refs is None else [BarrierApplication(refs)]

    def _visit_DelayStmt(self, node: DelayStmt):
        refs = self._refs(node.qubits, node)
        duration = self._value(node.duration)
        node.expansion = None if refs is None else \
            [DelayApplication(duration if duration is not None else node.duration, refs)]

    def _visit_BoxStmt(self, node: BoxStmt):
        node.targets = tuple(getattr(node, 'scope_qubits', ()))
        self._visit(node.body)

    def _visit_ResetStmt(self, node: ResetStmt):
        refs = operand_refs(node.qubit, self._eval)
        node.expansion = None if refs is None else [ResetApplication(r) for r in refs]

    def _visit_MeasureStmt(self, node: MeasureStmt):
        node.expansion = self._measure(node.measure, node.target)

    def _visit_AssignStmt(self, node: AssignStmt):
        if isinstance(node.value, MeasureExpr):
            node.expansion = self._measure(node.value, node.target)

    def _measure(self, measure: MeasureExpr, target) -> Optional[list]:
        refs = operand_refs(measure.operand, self._eval)
        if refs is None:
            return None
        labels = self._bit_labels(target, len(refs)) if target is not None else None
        if labels is None:
            labels = [None] * len(refs)
        return [MeasureApplication(r, label) for r, label in zip(refs, labels)]

    def _bit_labels(self, target, count: int) -> Optional[list]:
        """测量目标 → 逐比特的 'c[i]' 标签"""
        if isinstance(target, Identifier):
            qtype = target.qtype
            if isinstance(qtype, BitType) and qtype.size is not None:
                return [f"{target.name}[{i}]" for i in range(qtype.size)]
            return [target.name] * count
        if isinstance(target, IndexExpr) and isinstance(target.base, Identifier):
            base = target.base
            length = base.qtype.size if isinstance(base.qtype, BitType) else None
            if length is None or len(target.indices) != 1:
                return None
            index = target.indices[0]
            try:
                if isinstance(index, (RangeExpr, SetExpr)):
                    positions = self._eval.index_positions(index, length, index)
                else:
                    i = self._eval.evaluate_int(index)
                    positions = [i + length if i < 0 else i]
            except NotConstant:
                return None
            return [f"{base.name}[{p}]" for p in positions]
        return None


def _flip(app):
    if isinstance(app, GateApplication):
        return GateApplication(app.gate, app.params, app.qubits, app.controls, not app.inverse)
    return app


def _operand_name(expr) -> str:
    while isinstance(expr, IndexExpr):
        expr = expr.base
    return getattr(expr, 'name', None) or getattr(expr, 'raw', '?')


def _is_standard(decl: GateDecl) -> bool:
    return decl.source.replace('\\', '/').rsplit('/', 1)[-1] == STANDARD_INCLUDE
