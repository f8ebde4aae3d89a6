"""
OpenQASM 3 作用域解析器
========================
自顶向下单遍遍历 AST，完成：
  1. 内置符号注册（常量、内置门、内置函数、OpenPulse 原语）
  2. 嵌套符号表构建（global → gate / def 体 → block / loop）
  3. 把每个标识符引用绑定到唯一的 Symbol（node.symbol）
  4. 位置合法性检查：qubit / gate / def / include 只能在全局，
     break / continue 只能在循环内，return 只能在 def 内，
     gate 体内只能出现量子语句
  5. 递归定义检测（gate 恒为 E006，def 视配置而定）
  6. 声明处的类型说明解析（位宽必须是编译期常量），
     const 初始化值求值
  7. defcal 签名一致性检查（E010）

设计原则：
  - 单遍、无前向引用：gate / def 必须在首次使用前完整定义
  - 遇到错误后继续：无法解析的类型记为 ErrorType
  - 只绑定、不做类型检查（赋值兼容、运算符类型由 TypeChecker 负责）
"""

from __future__ import annotations

import logging
from dataclasses import fields
from typing import Optional

from ..config import CompilerOptions
from ..error import (
    DiagnosticBag, E_SYNTAX, E_UNDEFINED, E_TYPE, E_RECURSION, E_HARDWARE,
)
from ..tree.transformer import (
    ASTNode, Program, VersionDecl, Include, Pragma, CalibrationGrammar,
    ClassicalDecl, QuantumDecl, AliasDecl, GateDecl, ArgumentDef, DefDecl, ExternDecl,
    DefcalDecl, CalBlock,
    ScopeBlock, IfStmt, ForStmt, WhileStmt, SwitchStmt, BreakStmt, ContinueStmt,
    EndStmt, ReturnStmt, BarrierStmt, DelayStmt, BoxStmt, ResetStmt, MeasureStmt,
    GateCall, ExprStmt, AssignStmt,
    Identifier, HardwareQubit, IndexExpr, Call, MeasureExpr, DurationOf, Cast,
)
from .builtins import (
    BUILTIN_CONSTANTS, BUILTIN_GATES, BUILTIN_SIGNATURES, OPENPULSE_EXTERNS, ExternLoader,
)
from .consteval import ConstEvaluator, NotConstant, CastError, coerce
from .symbol import (
    Symbol, SymbolKind, SymbolTable, ScopeKind, QubitRef, RegisterView,
    VISIBLE_ACROSS_BOUNDARY,
)
from .type import (
    QType, QubitType, FloatType, AngleType, GateType, FunctionType, ErrorType,
    VOID, ERROR_T,
)

logger = logging.getLogger(__name__)


# gate 体内允许出现的语句
GATE_BODY_STATEMENTS = (GateCall, BarrierStmt, Pragma, ScopeBlock)


class ScopeResolver:
    """
    OpenQASM 3 作用域解析器。

    用法：
        resolver = ScopeResolver(diag, options)
        table = resolver.resolve(program)
        print(table.dump())
    """

    def __init__(self, diag: DiagnosticBag, options: Optional[CompilerOptions] = None,
                 externs: Optional[dict] = None):
        """
        Args:
            diag:    本次编译的诊断袋
            options: 编译选项（默认位宽、是否允许递归 def ...）
            externs: 额外的外部函数签名 {'name': ('ret', ['arg', ...])}
        """
        self.diag    = diag
        self.options = options or CompilerOptions()
        self.table   = SymbolTable()

        # 解析器状态
        self._loop_depth   = 0
        self._break_depth  = 0          # 循环 + 冒号形式的 switch
        self._callables: list[Symbol] = []    # 正在定义的 def / defcal

        self._register_builtins(externs)

    # ══════════════════════════════════════════════════════════════════════
    # 内置符号
    # ══════════════════════════════════════════════════════════════════════

    def _register_builtins(self, externs: Optional[dict]):
        scope = self.table.global_scope
        float_t = FloatType(self.options.default_float_width)
        for name, value in BUILTIN_CONSTANTS.items():
            scope.define(Symbol(name, SymbolKind.CONST, float_t, mutable=False,
                                value=float(value), builtin=True))

        for name, (n_params, n_qubits) in BUILTIN_GATES.items():
            scope.define(Symbol(name, SymbolKind.GATE, GateType(n_params, n_qubits),
                                mutable=False, builtin=True))

        for name, sig in BUILTIN_SIGNATURES.items():
            ret = sig.returns if isinstance(sig.returns, QType) else ERROR_T
            scope.define(Symbol(name, SymbolKind.EXTERN, FunctionType(None, ret),
                                mutable=False, builtin=True))

        loader = ExternLoader()
        if self.options.load_openpulse:
            loader.load_from_dict(OPENPULSE_EXTERNS)
        if externs:
            loader.load_from_dict(externs)
        for name, ftype in loader.get_externs().items():
            existing = scope.lookup_local(name)
            sym = Symbol(name, SymbolKind.EXTERN, ftype, mutable=False, builtin=True)
            if existing is None:
                scope.define(sym)
            else:
                scope.redefine(sym)

    # ══════════════════════════════════════════════════════════════════════
    # 入口
    # ══════════════════════════════════════════════════════════════════════

    def resolve(self, program: Program) -> SymbolTable:
        """解析整个程序，返回符号表；诊断写入 self.diag"""
        logger.debug("scope resolution start: %d statements", len(program.statements))
        self._visit_statements(program.statements)
        user = [s for s in self.table.global_scope.symbols() if not s.builtin]
        logger.debug("scope resolution done: %d global symbols, %d qubits",
                     len(user), len(self.table.arena))
        return self.table

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
        method = '_visit_' + type(node).__name__
        handler = getattr(self, method, self._visit_default)
        handler(node)

    def _visit_default(self, node: ASTNode):
        """未注册的节点：递归处理子节点"""
        for f in fields(node):
            child = getattr(node, f.name)
            if isinstance(child, (ASTNode, list)):
                self._visit(child)

    def _visit_statements(self, statements: list):
        in_gate = self._in_gate
        for stmt in statements:
            if in_gate and not isinstance(stmt, GATE_BODY_STATEMENTS):
                self.diag.error(E_SYNTAX,
                                f"gate 体内只能出现门调用与 barrier，不能出现 {_describe(stmt)}",
                                stmt)
                continue
            self._visit(stmt)

    def _visit_block(self, statements: list, kind: ScopeKind = ScopeKind.BLOCK, name: str = ''):
        self.table.enter(kind, name)
        self._visit_statements(statements)
        self.table.leave_scope()

    # ── 状态辅助 ────────────────────────────────────────────────────────────

    @property
    def _in_gate(self) -> bool:
        boundary = self.table.current_scope.enclosing(ScopeKind.GATE, ScopeKind.DEF)
        return boundary is not None and boundary.kind is ScopeKind.GATE

    def _require_global(self, node, what: str) -> bool:
        if self.table.is_global:
            return True
        self.diag.error(E_SYNTAX, f"{what}只能出现在全局作用域", node)
        return False

    def _declare(self, sym: Symbol, node) -> bool:
        """在当前作用域声明符号；同层重复声明报 E002，内置符号可被覆盖"""
        existing = self.table.lookup_local(sym.name)
        if existing is not None:
            if existing.builtin:
                self.table.current_scope.redefine(sym)
                return True
            self.diag.error(E_UNDEFINED, f"'{sym.name}' 在当前作用域中重复声明", node,
                            related=[existing.node] if existing.node is not None else ())
            return False
        self.table.define(sym)
        return True

    def _evaluator(self) -> ConstEvaluator:
        return ConstEvaluator(self.options, self.table.current_scope)

    def _resolve_type(self, spec) -> QType:
        """解析类型说明；位宽不是合法常量时报 E003 并返回 ErrorType"""
        self._visit_default(spec)
        try:
            qtype = self._evaluator().resolve_type_spec(spec)
        except NotConstant as e:
            self.diag.error(E_TYPE, f"类型位宽必须是正的编译期常量：{e.reason}", e.node or spec)
            qtype = ERROR_T
        spec.qtype = qtype
        return qtype

    def _mark_assigned(self, target):
        """赋值 / 测量目标：标记基符号已被重新赋值"""
        while isinstance(target, IndexExpr):
            target = target.base
        if isinstance(target, Identifier) and target.symbol is not None:
            target.symbol.reassigned = True

    # ══════════════════════════════════════════════════════════════════════
    # 顶层 & 元数据
    # ══════════════════════════════════════════════════════════════════════

    def _visit_VersionDecl(self, node: VersionDecl):
        self._require_global(node, "OPENQASM 版本声明")

    def _visit_Include(self, node: Include):
        # 全局 include 已由 includes 模块展开，这里只剩非法位置的
        self._require_global(node, "include 语句")

    def _visit_Pragma(self, node: Pragma):
        pass

    def _visit_CalibrationGrammar(self, node: CalibrationGrammar):
        self._require_global(node, "defcalgrammar 声明")

    # ══════════════════════════════════════════════════════════════════════
    # 声明
    # ══════════════════════════════════════════════════════════════════════

    def _visit_ClassicalDecl(self, node: ClassicalDecl):
        if node.io is not None:
            self._require_global(node, f"{node.io} 声明")
        qtype = self._resolve_type(node.type_spec)

        # 初始化表达式在声明之前解析：int x = x; 中的 x 指外层符号
        self._visit(node.init)

        if node.is_const:
            sym = Symbol(node.name, SymbolKind.CONST, qtype, mutable=False, node=node)
        else:
            sym = Symbol(node.name, SymbolKind.VARIABLE, qtype, node=node)
            sym.role = node.io
        if node.init is not None and not isinstance(qtype, ErrorType):
            sym.value = self._initial_value(node, qtype)
        node.symbol = sym
        self._declare(sym, node)

    def _initial_value(self, node: ClassicalDecl, qtype: QType):
        """const 必须能求值（否则 E003）；普通变量只折叠纯常量初始化值"""
        try:
            value, src = self._evaluator().evaluate_typed(node.init)
        except NotConstant as e:
            if node.is_const:
                self.diag.error(E_TYPE, f"const '{node.name}' 的初始化表达式不是编译期常量："
                                f"{e.reason}", node.init)
            return None
        try:
            value = coerce(value, src, qtype, node.init)
        except CastError:
            return None          # 类型不兼容由 TypeChecker 报告
        node.const_value = value
        return value

    def _visit_QuantumDecl(self, node: QuantumDecl):
        if not self._require_global(node, "qubit 声明"):
            return
        size = None
        if node.size is not None:
            self._visit(node.size)
            try:
                size = self._evaluator().evaluate_size(node.size)
            except NotConstant as e:
                self.diag.error(E_TYPE, f"qubit 寄存器大小必须是正的编译期常量：{e.reason}",
                                node.size)
                return
        sym = Symbol(node.name, SymbolKind.QUBIT_REGISTER, QubitType(size),
                     mutable=False, node=node)
        node.symbol = sym
        if not self._declare(sym, node):
            return
        arena = self.table.arena
        sym.offset = arena.allocate(node.name, size)
        count = 1 if size is None else size
        sym.view = RegisterView([arena.ref(sym.offset + i) for i in range(count)], sym)

    def _visit_AliasDecl(self, node: AliasDecl):
        # 别名的类型与视图由 TypeChecker 在求出右侧类型后填写
        self._visit(node.value)
        sym = Symbol(node.name, SymbolKind.ALIAS, ERROR_T, mutable=False, node=node)
        node.symbol = sym
        self._declare(sym, node)

    def _visit_GateDecl(self, node: GateDecl):
        if not self._require_global(node, "gate 定义"):
            return
        sym = Symbol(node.name, SymbolKind.GATE, GateType(len(node.params), len(node.qubits)),
                     mutable=False, node=node)
        sym.definition = node
        node.symbol = sym
        if not self._declare(sym, node):
            return

        sym.in_progress = True
        self.table.enter(ScopeKind.GATE, node.name)
        angle_t = AngleType(self.options.default_angle_width)
        node.param_symbols, node.qubit_symbols = [], []
        for name in node.params:
            param = Symbol(name, SymbolKind.VARIABLE, angle_t, mutable=False, node=node)
            param.role = 'param'
            self._declare(param, node)
            node.param_symbols.append(param)
        for name in node.qubits:
            formal = Symbol(name, SymbolKind.QUBIT_REGISTER, QubitType(None),
                            mutable=False, node=node)
            formal.view = RegisterView([QubitRef(label=name)], formal)
            formal.role = 'param'
            self._declare(formal, node)
            node.qubit_symbols.append(formal)
        self._visit_statements(node.body)
        self.table.leave_scope()
        sym.in_progress = False

    def _visit_DefDecl(self, node: DefDecl):
        if not self._require_global(node, "def 定义"):
            return
        arg_types = [self._resolve_type(a.type_spec) for a in node.arguments]
        ret = self._resolve_type(node.return_type) if node.return_type is not None else VOID
        sym = Symbol(node.name, SymbolKind.DEF, FunctionType(arg_types, ret),
                     mutable=False, node=node)
        sym.definition = node
        node.symbol = sym
        if not self._declare(sym, node):
            return

        sym.in_progress = True
        self._callables.append(sym)
        self.table.enter(ScopeKind.DEF, node.name)
        for arg, qtype in zip(node.arguments, arg_types):
            self._declare_argument(arg, qtype)
        # 形参与函数体共用同一个作用域
        self._visit_statements(node.body)
        self.table.leave_scope()
        self._callables.pop()
        sym.in_progress = False

    def _declare_argument(self, arg: ArgumentDef, qtype: QType):
        if isinstance(qtype, QubitType):
            formal = Symbol(arg.name, SymbolKind.QUBIT_REGISTER, qtype, mutable=False, node=arg)
            if qtype.size is None:
                refs = [QubitRef(label=arg.name)]
            else:
                refs = [QubitRef(label=f"{arg.name}[{i}]") for i in range(qtype.size)]
            formal.view = RegisterView(refs, formal)
            formal.role = 'param'
        else:
            readonly = arg.access == 'readonly'
            formal = Symbol(arg.name, SymbolKind.VARIABLE, qtype, mutable=not readonly, node=arg)
            formal.role = arg.access or 'param'
        arg.symbol = formal
        self._declare(formal, arg)

    def _visit_ExternDecl(self, node: ExternDecl):
        if not self._require_global(node, "extern 声明"):
            return
        arg_types = [self._resolve_type(t) for t in node.argument_types]
        ret = self._resolve_type(node.return_type) if node.return_type is not None else VOID
        sym = Symbol(node.name, SymbolKind.EXTERN, FunctionType(arg_types, ret),
                     mutable=False, node=node)
        node.symbol = sym
        self._declare(sym, node)

    def _visit_DefcalDecl(self, node: DefcalDecl):
        if not self._require_global(node, "defcal 定义"):
            return
        self.table.enter(ScopeKind.BLOCK, f"defcal {node.target}")
        params = []
        for arg in node.arguments:
            if isinstance(arg, ArgumentDef):
                self._declare_argument(arg, self._resolve_type(arg.type_spec))
                params.append('*')
            else:
                self._visit(arg)
                try:
                    params.append(repr(self._evaluator().evaluate(arg)))
                except NotConstant:
                    params.append('?')
        operands = []
        for op in node.operands:
            if isinstance(op, HardwareQubit):
                operands.append(op.raw)
                continue
            formal = Symbol(op.name, SymbolKind.QUBIT_REGISTER, QubitType(None),
                            mutable=False, node=op)
            formal.view = RegisterView([QubitRef(label=op.name)], formal)
            op.symbol = formal
            self._declare(formal, op)
            operands.append('*')
        ret = self._resolve_type(node.return_type) if node.return_type is not None else VOID
        node.qtype = ret

        sym = Symbol(node.target, SymbolKind.DEFCAL, FunctionType(None, ret),
                     mutable=False, node=node)
        self._callables.append(sym)
        self._visit_statements(node.body)
        self._callables.pop()
        self.table.leave_scope()

        self._check_defcal(node, tuple(params), tuple(operands), ret)
        node.symbol = sym

    def _check_defcal(self, node: DefcalDecl, params: tuple, operands: tuple, ret: QType):
        gate = self.table.lookup_global(node.target)
        if gate is not None and gate.kind is SymbolKind.GATE:
            gtype = gate.qtype
            if len(params) != gtype.param_count or len(operands) != gtype.qubit_count:
                self.diag.error(
                    E_HARDWARE,
                    f"defcal '{node.target}' 的签名 ({len(params)} 个参数, {len(operands)} 个比特) "
                    f"与门定义 ({gtype.param_count} 个参数, {gtype.qubit_count} 个比特) 不一致",
                    node, related=[gate.node] if gate.node is not None else ())
                return
        entries = self.table.defcals.setdefault(node.target, [])
        for key, other_ret, other in entries:
            if key == (params, operands) and other_ret != ret:
                self.diag.error(E_HARDWARE,
                                f"defcal '{node.target}' 以不同的返回类型重复定义"
                                f"（{other_ret} 与 {ret}）", node, related=[other])
                return
        entries.append(((params, operands), ret, node))

    def _visit_CalBlock(self, node: CalBlock):
        if not self._require_global(node, "cal 块"):
            return
        self._visit_block(node.body, name='cal')

    # ══════════════════════════════════════════════════════════════════════
    # 语句
    # ══════════════════════════════════════════════════════════════════════

    def _visit_ScopeBlock(self, node: ScopeBlock):
        self._visit_block(node.statements)

    def _visit_IfStmt(self, node: IfStmt):
        self._visit(node.condition)
        self._visit_block(node.then_body)
        if node.else_body is not None:
            self._visit_block(node.else_body)

    def _visit_ForStmt(self, node: ForStmt):
        self._visit(node.iterable)
        qtype = self._resolve_type(node.var_type)
        self.table.enter(ScopeKind.LOOP, 'for')
        var = Symbol(node.var_name, SymbolKind.VARIABLE, qtype, mutable=False, node=node)
        var.role = 'loop'
        node.symbol = var
        self.table.define(var)
        self._loop_body(node.body)
        self.table.leave_scope()

    def _visit_WhileStmt(self, node: WhileStmt):
        self._visit(node.condition)
        self.table.enter(ScopeKind.LOOP, 'while')
        self._loop_body(node.body)
        self.table.leave_scope()

    def _loop_body(self, body: list):
        self._loop_depth += 1
        self._break_depth += 1
        self._visit_statements(body)
        self._break_depth -= 1
        self._loop_depth -= 1

    def _visit_SwitchStmt(self, node: SwitchStmt):
        self._visit(node.target)
        defaults = [c for c in node.cases if c.is_default]
        if len(defaults) > 1:
            self.diag.error(E_SYNTAX, "switch 只能有一个 default 分支", defaults[1])
        for case in node.cases:
            if case.is_default and case is not node.cases[-1]:
                self.diag.error(E_SYNTAX, "default 分支必须是 switch 的最后一个分支", case)
            self._visit(case.labels)
            if case.colon_form:
                if not case.body or not isinstance(case.body[-1], BreakStmt):
                    self.diag.error(E_SYNTAX, "case 分支必须以 break 结束（不允许贯穿）", case,
                                    hint="在分支末尾加上 break;，或改用 case x { ... } 写法")
                self._break_depth += 1
                self._visit_block(case.body, name='case')
                self._break_depth -= 1
            else:
                self._visit_block(case.body, name='case')

    def _visit_BreakStmt(self, node: BreakStmt):
        if self._break_depth == 0:
            self.diag.error(E_SYNTAX, "break 只能出现在循环内", node)

    def _visit_ContinueStmt(self, node: ContinueStmt):
        if self._loop_depth == 0:
            self.diag.error(E_SYNTAX, "continue 只能出现在循环内", node)

    def _visit_EndStmt(self, node: EndStmt):
        pass

    def _visit_ReturnStmt(self, node: ReturnStmt):
        if not self._callables:
            self.diag.error(E_SYNTAX, "return 只能出现在 def / defcal 内", node)
        elif self._callables[-1].kind is SymbolKind.DEF:
            node.symbol = self._callables[-1]
        self._visit(node.value)

    def _visit_BarrierStmt(self, node: BarrierStmt):
        self._visit(node.qubits)
        if not node.qubits:
            node.scope_qubits = self.table.qubits_in_scope()

    def _visit_DelayStmt(self, node: DelayStmt):
        self._visit(node.duration)
        self._visit(node.qubits)
        if not node.qubits:
            node.scope_qubits = self.table.qubits_in_scope()

    def _visit_BoxStmt(self, node: BoxStmt):
        self._visit(node.duration)
        node.scope_qubits = self.table.qubits_in_scope()
        self._visit_block(node.body, name='box')

    def _visit_ResetStmt(self, node: ResetStmt):
        self._visit(node.qubit)

    def _visit_MeasureStmt(self, node: MeasureStmt):
        self._visit(node.measure)
        if node.target is not None:
            self._visit(node.target)
            self._mark_assigned(node.target)

    def _visit_GateCall(self, node: GateCall):
        sym, crossed = self.table.lookup(node.name)
        if sym is None:
            if node.name not in self.table.defcals:
                self.diag.error(E_UNDEFINED, f"未定义的门 '{node.name}'", node)
        elif sym.in_progress and sym.kind is SymbolKind.GATE:
            self.diag.error(E_RECURSION, f"门 '{node.name}' 不能递归调用自身", node)
        elif sym.in_progress and sym.kind is SymbolKind.DEF:
            self._recursive_def(node, sym)
        node.symbol = sym
        for mod in node.modifiers:
            self._visit(mod.argument)
        self._visit(node.arguments)
        self._visit(node.duration)
        self._visit(node.qubits)

    def _visit_ExprStmt(self, node: ExprStmt):
        self._visit(node.expr)

    def _visit_AssignStmt(self, node: AssignStmt):
        self._visit(node.value)
        self._visit(node.target)
        self._mark_assigned(node.target)

    # ══════════════════════════════════════════════════════════════════════
    # 表达式
    # ══════════════════════════════════════════════════════════════════════

    def _visit_Identifier(self, node: Identifier):
        sym, crossed = self.table.lookup(node.name)
        if sym is None:
            self.diag.error(E_UNDEFINED, f"未定义的标识符 '{node.name}'", node)
            return
        if crossed and sym.kind not in VISIBLE_ACROSS_BOUNDARY:
            boundary = self.table.current_scope.enclosing(ScopeKind.GATE, ScopeKind.DEF)
            self.diag.error(E_UNDEFINED,
                            f"'{node.name}' 在 {boundary.kind.value} '{boundary.name}' 内不可见",
                            node, hint="gate / def 体内只能使用形参和全局常量；"
                                       "量子比特请作为参数传入")
            return
        if sym.in_progress and sym.kind is SymbolKind.GATE:
            self.diag.error(E_RECURSION, f"门 '{node.name}' 不能引用自身", node)
        node.symbol = sym

    def _visit_Call(self, node: Call):
        sym, crossed = self.table.lookup(node.name)
        if sym is None:
            self.diag.error(E_UNDEFINED, f"未定义的函数 '{node.name}'", node)
        elif sym.in_progress and sym.kind is SymbolKind.DEF:
            self._recursive_def(node, sym)
        node.symbol = sym
        self._visit(node.arguments)

    def _recursive_def(self, node, sym: Symbol):
        if not self.options.allow_recursive_defs:
            self.diag.error(E_RECURSION, f"子程序 '{sym.name}' 不能递归调用自身", node,
                            hint="设置 allow_recursive_defs=True 以允许递归 def")

    def _visit_MeasureExpr(self, node: MeasureExpr):
        self._visit(node.operand)

    def _visit_Cast(self, node: Cast):
        # 目标位宽在 TypeChecker 中求值（失败为 E008）
        self._visit_default(node.type_spec)
        self._visit(node.operand)

    def _visit_DurationOf(self, node: DurationOf):
        self._visit_block(node.body, name='durationof')


def _describe(stmt) -> str:
    names = {
        ClassicalDecl: '经典变量声明', QuantumDecl: 'qubit 声明', MeasureStmt: 'measure',
        ResetStmt: 'reset', ReturnStmt: 'return', AssignStmt: '赋值', IfStmt: 'if',
        ForStmt: 'for', WhileStmt: 'while', SwitchStmt: 'switch', DelayStmt: 'delay',
        BoxStmt: 'box', AliasDecl: 'let', ExprStmt: '表达式语句',
    }
    return names.get(type(stmt), type(stmt).__name__)
