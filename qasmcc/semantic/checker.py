"""
OpenQASM 3 类型检查器
=====================
在作用域解析之后遍历 AST，完成：
  1. 为每个表达式推导类型（填写 node.qtype）
  2. 赋值 / 初始化 / 传参的隐式转换检查（E003）
  3. 显式类型转换 T(x) 按转换矩阵检查（E008），目标位宽必须是常量
  4. 常量下标越界检查，负下标按 size + i 解析（E004）
  5. 有符号 / 无符号混用告警
  6. 门调用的参数个数、比特个数、修饰符参数检查
  7. 非 void 子程序的返回路径检查（E007）
  8. let 别名的类型与寄存器视图
  9. 已知值的折叠（填写 node.const_value / Symbol.value）

设计原则：
  - 只检查本 pass 负责的问题；标识符是否已绑定由 ScopeResolver 负责，
    未绑定的标识符直接记为 ErrorType
  - ErrorType 与一切类型兼容，一个错误不会引发连锁报错
  - 广播时寄存器大小是否一致（E005）由 Expander 负责
"""

from __future__ import annotations

import logging
from dataclasses import fields
from typing import Optional

from ..config import CompilerOptions
from ..error import (
    DiagnosticBag, E_TYPE, E_INDEX, E_REGISTER_SIZE, E_MISSING_RETURN, E_CAST,
)
from ..tree.transformer import (
    ASTNode, Program, ClassicalDecl, QuantumDecl, AliasDecl, GateDecl, ArgumentDef, DefDecl,
    ExternDecl, DefcalDecl,
    ScopeBlock, IfStmt, ForStmt, WhileStmt, SwitchStmt, ReturnStmt, EndStmt,
    BarrierStmt, DelayStmt, BoxStmt, ResetStmt, MeasureStmt, GateCall, AssignStmt,
    Identifier, HardwareQubit, IntLiteral, FloatLiteral, ImaginaryLiteral, BoolLiteral,
    BitstringLiteral, DurationLiteral, BinaryOp, UnaryOp, Cast, RangeExpr, SetExpr,
    IndexExpr, Concatenation, Call, MeasureExpr, ArrayLiteral, DurationOf,
)
from .builtins import BUILTIN_SIGNATURES, accepts, signature_return
from .consteval import ConstEvaluator, NotConstant, InvalidSize, CastError, coerce
from .symbol import Symbol, SymbolKind, QubitRef, RegisterView
from .type import (
    QType, QubitType, BitType, IntType, FloatType, AngleType, ComplexType, ArrayType,
    GateType, FunctionType, VoidType, ErrorType,
    QUBIT, BOOL, DURATION, VOID, ERROR_T,
    can_assign, check_explicit_cast, is_signedness_mixed, is_bool_convertible,
    is_real, is_timing, resolve_binary_op, resolve_unary_op, concat_type,
    indexable_length, element_type, slice_type,
)

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────────
# 量子操作数 → QubitRef
# ──────────────────────────────────────────────────────────────────────────────

def operand_refs(expr, evaluator: ConstEvaluator) -> Optional[tuple]:
    """
    把量子操作数表达式解析为具体的 QubitRef 序列。
    支持：寄存器名 / 别名 / 形参、物理比特 $n、常量下标、切片、集合下标、++ 拼接。
    下标不是编译期常量时返回 None。
    """
    if isinstance(expr, HardwareQubit):
        return (QubitRef(label=expr.raw, physical=expr.index),)
    if isinstance(expr, Identifier):
        sym = expr.symbol
        if sym is None or sym.view is None or sym.view.refs is None:
            return None
        return sym.view.refs
    if isinstance(expr, Concatenation):
        left = operand_refs(expr.left, evaluator)
        right = operand_refs(expr.right, evaluator)
        if left is None or right is None:
            return None
        return left + right
    if isinstance(expr, IndexExpr):
        refs = operand_refs(expr.base, evaluator)
        if refs is None:
            return None
        for index in expr.indices:
            try:
                if isinstance(index, (RangeExpr, SetExpr)):
                    positions = evaluator.index_positions(index, len(refs), index)
                else:
                    i = evaluator.evaluate_int(index)
                    positions = [i + len(refs) if i < 0 else i]
            except NotConstant:
                return None
            if any(not 0 <= p < len(refs) for p in positions):
                return None
            refs = tuple(refs[p] for p in positions)
        return refs
    return None


def _always_returns(statements: list) -> bool:
    """语句序列是否在每条路径上都以 return / end 结束"""
    for stmt in statements:
        if isinstance(stmt, (ReturnStmt, EndStmt)):
            return True
        if isinstance(stmt, ScopeBlock) and _always_returns(stmt.statements):
            return True
        if isinstance(stmt, BoxStmt) and _always_returns(stmt.body):
            return True
        if isinstance(stmt, IfStmt) and stmt.else_body is not None:
            if _always_returns(stmt.then_body) and _always_returns(stmt.else_body):
                return True
        if isinstance(stmt, SwitchStmt) and stmt.default is not None:
            if all(_always_returns(c.body) for c in stmt.cases):
                return True
    return False


class TypeChecker:
    """
    OpenQASM 3 类型检查器。

    用法：
        checker = TypeChecker(diag, options)
        checker.check(program)        # 之后每个表达式节点的 .qtype 已填写
    """

    def __init__(self, diag: DiagnosticBag, options: Optional[CompilerOptions] = None):
        self.diag    = diag
        self.options = options or CompilerOptions()
        self._eval   = ConstEvaluator(self.options, propagate_known=True)
        self._strict = ConstEvaluator(self.options)      # 只认 const 符号
        self._curr_def: Optional[Symbol] = None

    # ══════════════════════════════════════════════════════════════════════
    # 入口
    # ══════════════════════════════════════════════════════════════════════

    def check(self, program: Program):
        logger.debug("type check start")
        self._visit(program.statements)
        logger.debug("type check done: %d error(s) so far", len(self.diag.errors))

    # ══════════════════════════════════════════════════════════════════════
    # 分发器
    # ══════════════════════════════════════════════════════════════════════

    def _visit(self, node) -> QType:
        """分发到对应的 _visit_* 方法，返回表达式类型并写入 node.qtype"""
        if node is None:
            return VOID
        if isinstance(node, list):
            for item in node:
                self._visit(item)
            return VOID
        method = '_visit_' + type(node).__name__
        handler = getattr(self, method, self._visit_default)
        result = handler(node)
        if result is None:
            return VOID
        node.qtype = result
        return result

    def _visit_default(self, node: ASTNode):
        for f in fields(node):
            child = getattr(node, f.name)
            if isinstance(child, (ASTNode, list)):
                self._visit(child)

    # ── 辅助 ────────────────────────────────────────────────────────────────

    def _fold(self, expr):
        """尝试求值；成功时写入 expr.const_value"""
        if expr is None:
            return None
        try:
            value, _ = self._eval.evaluate_typed(expr)
        except NotConstant:
            return None
        expr.const_value = value
        return value

    def _check_assign(self, dst: QType, expr, src: QType, what: str) -> bool:
        """赋值兼容性；数组字面量逐元素检查"""
        if isinstance(dst, ErrorType) or isinstance(src, ErrorType):
            return True
        if isinstance(expr, ArrayLiteral) and isinstance(dst, ArrayType):
            if dst.length is not None and len(expr.values) != dst.length:
                self.diag.error(E_TYPE, f"{what}：数组字面量有 {len(expr.values)} 个元素，"
                                f"{dst} 需要 {dst.length} 个", expr)
                return False
            inner = dst.element if len(dst.dims) == 1 else ArrayType(dst.element, dst.dims[1:])
            return all(self._check_assign(inner, v, v.qtype or ERROR_T, what) for v in expr.values)
        if can_assign(dst, src):
            return True
        hint = ''
        if check_explicit_cast(src, dst) is None:
            hint = f"如确需转换，请写成显式转换 {dst}(...)"
        self.diag.error(E_TYPE, f"{what}：类型 '{src}' 不能隐式转换为 '{dst}'", expr, hint=hint)
        return False

    def _check_quantum(self, expr, what: str) -> QType:
        qtype = self._visit(expr)
        if not isinstance(qtype, (QubitType, ErrorType)):
            self.diag.error(E_TYPE, f"{what}需要量子比特操作数，得到 '{qtype}'", expr)
            return ERROR_T
        return qtype

    def _check_condition(self, expr, what: str):
        qtype = self._visit(expr)
        if not is_bool_convertible(qtype):
            self.diag.error(E_TYPE, f"{what}条件表达式类型 '{qtype}' 无法转换为 bool", expr)

    def _check_duration(self, expr, what: str):
        qtype = self._visit(expr)
        if not isinstance(qtype, ErrorType) and not is_timing(qtype):
            self.diag.error(E_TYPE, f"{what}需要 duration / stretch，得到 '{qtype}'", expr)

    def _const_int(self, expr, what: str) -> Optional[int]:
        """必须是编译期整数常量，否则 E003"""
        qtype = self._visit(expr)
        if isinstance(qtype, ErrorType):
            return None
        try:
            value = self._strict.evaluate_int(expr)
        except NotConstant as e:
            self.diag.error(E_TYPE, f"{what}必须是编译期整数常量：{e.reason}", expr)
            return None
        expr.const_value = value
        return value

    # ══════════════════════════════════════════════════════════════════════
    # 声明
    # ══════════════════════════════════════════════════════════════════════

    def _visit_ClassicalDecl(self, node: ClassicalDecl):
        sym = node.symbol
        qtype = node.type_spec.qtype or ERROR_T
        if node.init is None:
            return None
        init_type = self._visit(node.init)
        if not self._check_assign(qtype, node.init, init_type, f"'{node.name}' 的初始化"):
            return None
        if sym is not None and sym.value is None and not node.is_const:
            self._propagate(node, sym, qtype)
        return None

    def _propagate(self, node: ClassicalDecl, sym: Symbol, qtype: QType):
        """从未被重新赋值的变量：记录初始化值"""
        if sym.reassigned or isinstance(qtype, ErrorType):
            return
        try:
            value, src = self._eval.evaluate_typed(node.init)
            value = coerce(value, src, qtype, node.init)
        except (NotConstant, CastError):
            return
        sym.value = value
        node.const_value = value

    def _visit_QuantumDecl(self, node: QuantumDecl):
        return None             # 大小已由 ScopeResolver 求值

    def _visit_ExternDecl(self, node: ExternDecl):
        return None

    def _visit_AliasDecl(self, node: AliasDecl):
        qtype = self._visit(node.value)
        sym = node.symbol
        if not isinstance(qtype, (QubitType, BitType, ArrayType, ErrorType)):
            self.diag.error(E_TYPE, f"let 只能为量子 / 比特寄存器或数组起别名，得到 '{qtype}'",
                            node.value)
            qtype = ERROR_T
        if sym is None:
            return None
        sym.qtype = qtype
        if isinstance(qtype, QubitType):
            base = node.value
            while isinstance(base, IndexExpr):
                base = base.base
            refs = operand_refs(node.value, self._eval)
            sym.view = RegisterView(refs, base.symbol if isinstance(base, Identifier) else None)
        return None

    def _visit_GateDecl(self, node: GateDecl):
        self._visit(node.body)
        return None

    def _visit_DefDecl(self, node: DefDecl):
        sym = node.symbol
        prev, self._curr_def = self._curr_def, sym
        self._visit(node.body)
        self._curr_def = prev
        if sym is None:
            return None
        ret = sym.qtype.return_type
        if not isinstance(ret, (ErrorType, VoidType)) and not _always_returns(node.body):
            self.diag.error(E_MISSING_RETURN,
                            f"子程序 '{node.name}' 声明返回 '{ret}'，但并非所有路径都有 return",
                            node)
        return None

    def _visit_DefcalDecl(self, node: DefcalDecl):
        for arg in node.arguments:
            if not isinstance(arg, ArgumentDef):
                self._visit(arg)
        self._visit(node.body)
        return None

    # ══════════════════════════════════════════════════════════════════════
    # 语句
    # ══════════════════════════════════════════════════════════════════════

    def _visit_IfStmt(self, node: IfStmt):
        self._check_condition(node.condition, "if ")
        self._visit(node.then_body)
        if node.else_body is not None:
            self._visit(node.else_body)
        return None

    def _visit_WhileStmt(self, node: WhileStmt):
        self._check_condition(node.condition, "while ")
        self._visit(node.body)
        return None

    def _visit_ForStmt(self, node: ForStmt):
        var_type = node.var_type.qtype or ERROR_T
        iterable = node.iterable
        if isinstance(iterable, RangeExpr):
            for part in (iterable.start, iterable.step, iterable.stop):
                if part is not None:
                    self._check_assign(var_type, part, self._visit(part), "for 循环范围")
        elif isinstance(iterable, SetExpr):
            for value in iterable.values:
                self._check_assign(var_type, value, self._visit(value), "for 循环集合元素")
        else:
            qtype = self._visit(iterable)
            elem = element_type(qtype) if not isinstance(qtype, ErrorType) else ERROR_T
            if elem is None or isinstance(qtype, QubitType):
                self.diag.error(E_TYPE, f"for 循环不能遍历 '{qtype}'", iterable)
            else:
                self._check_assign(var_type, iterable, elem, "for 循环变量")
        self._visit(node.body)
        return None

    def _visit_SwitchStmt(self, node: SwitchStmt):
        target = self._visit(node.target)
        if not isinstance(target, (IntType, BitType, ErrorType)):
            self.diag.error(E_TYPE, f"switch 目标必须是整数，得到 '{target}'", node.target)
        seen: dict = {}
        for case in node.cases:
            for label in case.labels:
                value = self._const_int(label, "case 标签")
                if value is None:
                    continue
                if value in seen:
                    self.diag.error(E_TYPE, f"case 标签 {value} 重复", label, related=[seen[value]])
                else:
                    seen[value] = label
            self._visit(case.body)
        return None

    def _visit_ReturnStmt(self, node: ReturnStmt):
        sym = node.symbol
        actual = self._visit(node.value) if node.value is not None else VOID
        if sym is None:
            return None
        expected = sym.qtype.return_type
        if node.value is None:
            if expected != VOID and not isinstance(expected, ErrorType):
                self.diag.error(E_TYPE, f"子程序 '{sym.name}' 必须返回 '{expected}'", node)
        elif expected == VOID and not isinstance(actual, ErrorType):
            self.diag.error(E_TYPE, f"void 子程序 '{sym.name}' 不能有返回值", node.value)
        else:
            self._check_assign(expected, node.value, actual, "返回值")
        return None

    def _visit_BarrierStmt(self, node: BarrierStmt):
        for q in node.qubits:
            self._check_quantum(q, "barrier ")
        return None

    def _visit_DelayStmt(self, node: DelayStmt):
        self._check_duration(node.duration, "delay ")
        for q in node.qubits:
            self._check_quantum(q, "delay ")
        return None

    def _visit_BoxStmt(self, node: BoxStmt):
        if node.duration is not None:
            self._check_duration(node.duration, "box ")
        self._visit(node.body)
        return None

    def _visit_ResetStmt(self, node: ResetStmt):
        self._check_quantum(node.qubit, "reset ")
        return None

    def _visit_MeasureStmt(self, node: MeasureStmt):
        result = self._visit(node.measure)
        if node.target is not None:
            target = self._visit(node.target)
            self._check_measure_target(node.target, target, node.measure, result)
            self._check_mutable(node.target)
        return None

    def _check_measure_target(self, target_node, target: QType, measure, result: QType):
        if isinstance(target, ErrorType) or isinstance(result, ErrorType):
            return
        if not isinstance(target, BitType):
            self.diag.error(E_TYPE, f"测量结果只能写入 bit / bit[n]，目标类型为 '{target}'",
                            target_node)
            return
        if target.size != result.size:
            operand = measure.operand.qtype
            self.diag.error(E_REGISTER_SIZE,
                            f"测量的寄存器大小不一致：'{operand}'（{_size_text(operand)}）"
                            f"写入 '{target}'（{_size_text(target)}）",
                            target_node, related=[measure.operand])

    def _visit_AssignStmt(self, node: AssignStmt):
        target = self._visit(node.target)
        value = self._visit(node.value)
        self._check_mutable(node.target)
        if isinstance(node.value, MeasureExpr):
            self._check_measure_target(node.target, target, node.value, value)
            return None
        if node.op != '=':
            op = node.op[:-1]
            result = resolve_binary_op(op, target, value)
            if result is None:
                self.diag.error(E_TYPE, f"'{node.op}' 不能作用于 '{target}' 与 '{value}'", node)
                return None
            value = result
        self._check_assign(target, node.value, value, "赋值")
        return None

    def _check_mutable(self, target):
        base = target
        while isinstance(base, IndexExpr):
            base = base.base
        sym = base.symbol if isinstance(base, Identifier) else None
        if sym is None:
            return
        reason = None
        if sym.kind is SymbolKind.CONST:
            reason = "常量"
        elif isinstance(sym.qtype, QubitType) or sym.kind is SymbolKind.QUBIT_REGISTER:
            reason = "量子比特"
        elif sym.role == 'loop':
            reason = "循环变量"
        elif sym.role == 'readonly':
            reason = "readonly 形参"
        elif sym.kind is SymbolKind.VARIABLE and not sym.mutable:
            reason = "只读变量"
        elif sym.kind not in (SymbolKind.VARIABLE, SymbolKind.ALIAS):
            reason = sym.kind.name.lower()
        if reason is not None:
            self.diag.error(E_TYPE, f"不能给{reason} '{sym.name}' 赋值", target,
                            related=[sym.node] if sym.node is not None else ())

    # ── 门调用 ──────────────────────────────────────────────────────────────

    def _visit_GateCall(self, node: GateCall):
        controls = 0
        for mod in node.modifiers:
            if mod.kind in ('ctrl', 'negctrl'):
                if mod.argument is None:
                    controls += 1
                    continue
                count = self._const_int(mod.argument, f"{mod.kind} 的控制比特数")
                if count is not None:
                    if count <= 0:
                        self.diag.error(E_TYPE, f"{mod.kind} 的控制比特数必须为正，得到 {count}",
                                        mod.argument)
                    else:
                        controls += count
            elif mod.kind == 'pow':
                exponent = self._visit(mod.argument)
                if not is_real(exponent) and not isinstance(exponent, ErrorType):
                    self.diag.error(E_TYPE, f"pow 的指数必须是实数，得到 '{exponent}'", mod.argument)
                elif not isinstance(exponent, ErrorType):
                    try:
                        mod.argument.const_value = self._strict.evaluate(mod.argument)
                    except NotConstant as e:
                        self.diag.error(E_TYPE, f"pow 的指数必须是编译期常量：{e.reason}",
                                        mod.argument)

        for arg in node.arguments:
            qtype = self._visit(arg)
            if not isinstance(qtype, (AngleType, FloatType, IntType, ErrorType)):
                self.diag.error(E_TYPE, f"门参数必须是角度或实数，得到 '{qtype}'", arg)
            self._fold(arg)
        if node.duration is not None:
            self._check_duration(node.duration, "门调用时长")
        for q in node.qubits:
            self._check_quantum(q, f"门 '{node.name}' ")

        sym = node.symbol
        if sym is None:
            return None
        if not isinstance(sym.qtype, GateType):
            self.diag.error(E_TYPE, f"'{node.name}' 不是门（{sym.kind.name.lower()}）", node)
            return None
        gtype = sym.qtype
        if len(node.arguments) != gtype.param_count:
            self.diag.error(E_TYPE, f"门 '{node.name}' 需要 {gtype.param_count} 个参数，"
                            f"得到 {len(node.arguments)} 个", node)
        expected = gtype.qubit_count + controls
        if len(node.qubits) != expected:
            self.diag.error(E_TYPE, f"门 '{node.name}' 需要 {expected} 个量子操作数"
                            f"（含 {controls} 个控制比特），得到 {len(node.qubits)} 个", node)
        return None

    # ══════════════════════════════════════════════════════════════════════
    # 表达式
    # ══════════════════════════════════════════════════════════════════════

    def _visit_Identifier(self, node: Identifier):
        sym = node.symbol
        if sym is None:
            return ERROR_T
        return sym.qtype

    def _visit_HardwareQubit(self, node: HardwareQubit):
        return QUBIT

    def _visit_IntLiteral(self, node: IntLiteral):
        return IntType(None)

    def _visit_FloatLiteral(self, node: FloatLiteral):
        return FloatType(None)

    def _visit_ImaginaryLiteral(self, node: ImaginaryLiteral):
        return ComplexType(FloatType(None))

    def _visit_BoolLiteral(self, node: BoolLiteral):
        return BOOL

    def _visit_BitstringLiteral(self, node: BitstringLiteral):
        return BitType(len(node.value))

    def _visit_DurationLiteral(self, node: DurationLiteral):
        return DURATION

    def _visit_ArrayLiteral(self, node: ArrayLiteral):
        types = [self._visit(v) for v in node.values]
        if not types:
            return ERROR_T
        first = types[0]
        if isinstance(first, ArrayType):
            return ArrayType(first.element, (len(types),) + first.dims)
        return ArrayType(first, (len(types),))

    def _visit_BinaryOp(self, node: BinaryOp):
        ltype = self._visit(node.left)
        rtype = self._visit(node.right)
        result = resolve_binary_op(node.op, ltype, rtype)
        if result is None:
            self.diag.error(E_TYPE, f"运算符 '{node.op}' 不能作用于 '{ltype}' 与 '{rtype}'", node)
            return ERROR_T
        if is_signedness_mixed(ltype, rtype):
            self.diag.warning(E_TYPE, f"运算符 '{node.op}' 混用了有符号与无符号整数"
                              f"（'{ltype}' 与 '{rtype}'）", node,
                              hint="用显式转换统一符号性")
        return result

    def _visit_UnaryOp(self, node: UnaryOp):
        qtype = self._visit(node.operand)
        result = resolve_unary_op(node.op, qtype)
        if result is None:
            self.diag.error(E_TYPE, f"运算符 '{node.op}' 不能作用于 '{qtype}'", node)
            return ERROR_T
        return result

    def _visit_Cast(self, node: Cast):
        src = self._visit(node.operand)
        try:
            dst = self._strict.resolve_type_spec(node.type_spec)
        except NotConstant as e:
            self.diag.error(E_CAST, f"类型转换的目标位宽必须是编译期常量：{e.reason}",
                            e.node or node.type_spec)
            return ERROR_T
        node.type_spec.qtype = dst
        reason = check_explicit_cast(src, dst)
        if reason is not None:
            self.diag.error(E_CAST, f"非法类型转换 '{src}' → '{dst}'：{reason}", node)
            return ERROR_T
        self._fold(node)
        return dst

    def _visit_RangeExpr(self, node: RangeExpr):
        for part in (node.start, node.step, node.stop):
            if part is not None:
                qtype = self._visit(part)
                if not isinstance(qtype, (IntType, ErrorType)):
                    self.diag.error(E_TYPE, f"范围端点必须是整数，得到 '{qtype}'", part)
        return IntType(None)

    def _visit_SetExpr(self, node: SetExpr):
        for value in node.values:
            qtype = self._visit(value)
            if not isinstance(qtype, (IntType, ErrorType)):
                self.diag.error(E_TYPE, f"集合元素必须是整数，得到 '{qtype}'", value)
        return IntType(None)

    def _visit_IndexExpr(self, node: IndexExpr):
        qtype = self._visit(node.base)
        for index in node.indices:
            qtype = self._apply_index(node, qtype, index)
        return qtype

    def _apply_index(self, node: IndexExpr, qtype: QType, index) -> QType:
        if isinstance(qtype, ErrorType):
            self._visit(index)
            return ERROR_T
        length = indexable_length(qtype)
        if isinstance(index, (RangeExpr, SetExpr)):
            self._visit(index)
            count = self._checked_positions(index, length, qtype)
            result = slice_type(qtype, count)
        else:
            itype = self._visit(index)
            if not isinstance(itype, (IntType, BitType, ErrorType)):
                self.diag.error(E_TYPE, f"下标必须是整数，得到 '{itype}'", index)
            else:
                self._check_bound(index, length, qtype)
            result = element_type(qtype)
        if result is None:
            self.diag.error(E_TYPE, f"类型 '{qtype}' 不能下标访问", node)
            return ERROR_T
        return result

    def _check_bound(self, index, length: Optional[int], qtype: QType):
        if length is None:
            return
        try:
            i = self._eval.evaluate_int(index)
        except NotConstant:
            return
        index.const_value = i
        resolved = i + length if i < 0 else i
        if not 0 <= resolved < length:
            self.diag.error(E_INDEX, f"下标 {i} 越界：'{qtype}' 的长度为 {length}", index)

    def _checked_positions(self, index, length: Optional[int], qtype: QType) -> Optional[int]:
        if length is None:
            return None
        try:
            positions = self._eval.index_positions(index, length, index)
        except InvalidSize as e:
            self.diag.error(E_TYPE, e.reason, index)
            return None
        except NotConstant:
            return None
        for p in positions:
            if not 0 <= p < length:
                self.diag.error(E_INDEX, f"下标 {p - length if p >= length else p} 越界："
                                f"'{qtype}' 的长度为 {length}", index)
                return None
        return len(positions)

    def _visit_Concatenation(self, node: Concatenation):
        ltype = self._visit(node.left)
        rtype = self._visit(node.right)
        result = concat_type(ltype, rtype)
        if result is None:
            self.diag.error(E_TYPE, f"'++' 要求两侧元素类型相同，得到 '{ltype}' 与 '{rtype}'", node)
            return ERROR_T
        return result

    def _visit_MeasureExpr(self, node: MeasureExpr):
        qtype = self._check_quantum(node.operand, "measure ")
        if isinstance(qtype, ErrorType):
            return ERROR_T
        return BitType(qtype.size)

    def _visit_DurationOf(self, node: DurationOf):
        self._visit(node.body)
        return DURATION

    def _visit_Call(self, node: Call):
        arg_types = [self._visit(a) for a in node.arguments]
        sym = node.symbol
        if sym is None:
            return ERROR_T
        ftype = sym.qtype
        if not isinstance(ftype, FunctionType):
            self.diag.error(E_TYPE, f"'{node.name}' 不是函数（{sym.kind.name.lower()}）", node)
            return ERROR_T
        if ftype.arg_types is None:
            result = self._check_builtin_call(node, arg_types)
        else:
            result = self._check_call(node, ftype, arg_types)
        self._fold(node)
        return result

    def _check_builtin_call(self, node: Call, arg_types: list) -> QType:
        sig = BUILTIN_SIGNATURES.get(node.name)
        if sig is None:
            return node.symbol.qtype.return_type
        required = len(sig.params) - sig.optional
        if not required <= len(arg_types) <= len(sig.params):
            expected = str(len(sig.params)) if not sig.optional else f"{required}~{len(sig.params)}"
            self.diag.error(E_TYPE, f"{node.name}() 需要 {expected} 个参数，得到 {len(arg_types)} 个",
                            node)
            return ERROR_T
        for param, arg, arg_node in zip(sig.params, arg_types, node.arguments):
            if not accepts(param, arg):
                self.diag.error(E_TYPE, f"{node.name}() 的参数类型 '{arg}' 不合法（需要 {param}）",
                                arg_node)
                return ERROR_T
        return signature_return(sig, arg_types)

    def _check_call(self, node: Call, ftype: FunctionType, arg_types: list) -> QType:
        if len(arg_types) != len(ftype.arg_types):
            self.diag.error(E_TYPE, f"'{node.name}' 需要 {len(ftype.arg_types)} 个参数，"
                            f"得到 {len(arg_types)} 个", node)
            return ftype.return_type
        for param, arg, arg_node in zip(ftype.arg_types, arg_types, node.arguments):
            if isinstance(param, QubitType):
                if isinstance(arg, ErrorType):
                    continue
                if not isinstance(arg, QubitType):
                    self.diag.error(E_TYPE, f"'{node.name}' 的参数需要 '{param}'，得到 '{arg}'",
                                    arg_node)
                elif param.size != arg.size:
                    self.diag.error(E_REGISTER_SIZE,
                                    f"'{node.name}' 的量子参数大小不一致：形参 '{param}'"
                                    f"（{_size_text(param)}），实参 '{arg}'（{_size_text(arg)}）",
                                    arg_node)
                continue
            self._check_assign(param, arg_node, arg, f"'{node.name}' 的参数")
        return ftype.return_type


def _size_text(qtype) -> str:
    size = getattr(qtype, 'size', None)
    return "单个比特" if size is None else f"大小 {size}"
