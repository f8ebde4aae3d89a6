"""
OpenQASM 3 符号表
=================
实现作用域嵌套的符号表：global → gate / def 体 → block / loop …

量子存储归全局作用域所有：每个 qubit 声明在 QubitArena 中分配一段
连续槽位，符号只记录起始偏移；let 别名与形参只持有 RegisterView
（QubitRef 序列），从不复制存储。
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from .type import QType


class SymbolKind(Enum):
    VARIABLE       = auto()   # 经典变量（含 input / output / 形参）
    CONST          = auto()   # const 常量（含内置常量）
    QUBIT_REGISTER = auto()   # qubit / qreg 声明及 gate / def 的量子形参
    GATE           = auto()
    DEF            = auto()   # 子程序
    DEFCAL         = auto()
    ALIAS          = auto()   # let 别名
    EXTERN         = auto()   # extern 函数（含 OpenPulse 原语）


class ScopeKind(Enum):
    GLOBAL = 'global'
    GATE   = 'gate'
    DEF    = 'def'
    BLOCK  = 'block'
    LOOP   = 'loop'


# 在 gate / def 体内仍然可见的全局符号种类
VISIBLE_ACROSS_BOUNDARY = (SymbolKind.CONST, SymbolKind.GATE, SymbolKind.DEF,
                           SymbolKind.DEFCAL, SymbolKind.EXTERN)


class Symbol:
    """
    符号表条目。

    Attributes:
        name:      符号名
        kind:      SymbolKind
        qtype:     QType 实例
        scope:     声明所在作用域
        mutable:   能否被赋值（const、循环变量、readonly 形参为 False）
        node:      声明节点（用于报错定位）；内置符号为 None
        value:     编译期已知的值（const 或从未被重新赋值的变量）
        builtin:   内置符号
        in_progress: 正在处理自身定义（用于检测递归）
        offset:    qubit 寄存器在 arena 中的起始槽位
        view:      let 别名 / 量子形参绑定的 RegisterView
        definition: gate 的声明节点（GateDecl），供展开器内联
    """
    def __init__(self, name: str, kind: SymbolKind, qtype: QType, *,
                 scope: 'Scope' = None, mutable: bool = True, node=None,
                 value=None, builtin: bool = False):
        self.name        = name
        self.kind        = kind
        self.qtype       = qtype
        self.scope       = scope
        self.mutable     = mutable
        self.node        = node
        self.value       = value
        self.builtin     = builtin
        self.in_progress = False
        self.reassigned  = False
        self.offset: Optional[int] = None
        self.view: Optional[RegisterView] = None
        self.definition  = None
        self.role: Optional[str] = None     # 'loop' / 'readonly' / 'mutable' / 'param' / 'input' ...

    @property
    def is_const(self) -> bool:
        return self.kind is SymbolKind.CONST

    @property
    def span(self):
        return self.node.span if self.node is not None else None

    def __repr__(self):
        flags = []
        if self.builtin:      flags.append('builtin')
        if not self.mutable:  flags.append('readonly')
        if self.role:         flags.append(self.role)
        flag_str = ' '.join(flags)
        extra = ''
        if self.offset is not None:
            extra = f' @{self.offset}'
        elif self.view is not None:
            extra = f' -> {self.view}'
        elif self.value is not None:
            extra = f' = {self.value!r}'
        return f"Symbol({self.kind.name} {flag_str} {self.qtype} {self.name!r}{extra})"


class Scope:
    """单个作用域（一个哈希表 + 指向父作用域的弱引用）"""
    def __init__(self, kind: ScopeKind, parent: Optional['Scope'] = None, name: str = ''):
        self.kind    = kind
        self.name    = name or kind.value
        self._parent = weakref.ref(parent) if parent is not None else None
        self._table: dict[str, Symbol] = {}

    @property
    def parent(self) -> Optional['Scope']:
        return self._parent() if self._parent is not None else None

    def define(self, sym: Symbol) -> bool:
        if sym.name in self._table:
            return False
        sym.scope = self
        self._table[sym.name] = sym
        return True

    def redefine(self, sym: Symbol):
        """覆盖同名符号（只用于用户声明替换内置符号）"""
        sym.scope = self
        self._table[sym.name] = sym

    def lookup_local(self, name: str):
        return self._table.get(name)

    def lookup(self, name: str) -> tuple[Optional[Symbol], bool]:
        """
        沿父链查找。返回 (符号, 是否跨过了 gate/def 边界)。
        """
        scope, crossed = self, False
        while scope is not None:
            sym = scope._table.get(name)
            if sym is not None:
                return sym, crossed
            if scope.kind in (ScopeKind.GATE, ScopeKind.DEF):
                crossed = True
            scope = scope.parent
        return None, crossed

    def enclosing(self, *kinds: ScopeKind) -> Optional['Scope']:
        scope = self
        while scope is not None:
            if scope.kind in kinds:
                return scope
            scope = scope.parent
        return None

    def symbols(self):
        return self._table.values()

    def __repr__(self):
        return f"Scope({self.name})"


# ──────────────────────────────────────────────────────────────────────────────
# 量子存储
# ──────────────────────────────────────────────────────────────────────────────

class QubitArena:
    """全局 qubit 存储：每个槽位一个逻辑比特，槽位带有 'q[2]' 形式的标签"""
    def __init__(self):
        self.labels: list[str] = []

    def allocate(self, name: str, size: Optional[int]) -> int:
        offset = len(self.labels)
        if size is None:
            self.labels.append(name)
        else:
            self.labels.extend(f"{name}[{i}]" for i in range(size))
        return offset

    def __len__(self):
        return len(self.labels)

    def label(self, slot: int) -> str:
        return self.labels[slot]

    def ref(self, slot: int) -> 'QubitRef':
        return QubitRef(slot=slot, label=self.labels[slot])


@dataclass(frozen=True)
class QubitRef:
    """
    单个量子比特的引用。
    slot:     arena 槽位；gate / def 的形参比特在定义处无具体槽位，为 None
    label:    人类可读的名字，如 'q[2]'
    physical: 物理比特 $n 的编号
    """
    slot:     Optional[int] = None
    label:    str = ''
    physical: Optional[int] = None

    @property
    def resolved(self) -> bool:
        return self.slot is not None or self.physical is not None

    def __repr__(self):
        return self.label


class RegisterView:
    """
    对已有 qubit 存储的非拥有视图：一组按顺序排列的 QubitRef。
    连续切片、带步长切片、显式索引集合在绑定时都已解析为具体元素。
    refs 为 None 表示视图在编译期无法确定（动态下标）。
    """
    def __init__(self, refs: Optional[tuple], base: Optional[Symbol] = None):
        self.refs = None if refs is None else tuple(refs)
        self.base = base

    @property
    def slots(self) -> Optional[tuple]:
        return None if self.refs is None else tuple(r.slot for r in self.refs)

    @property
    def length(self) -> Optional[int]:
        return None if self.refs is None else len(self.refs)

    def __repr__(self):
        base = self.base.name if self.base is not None else '?'
        return f"view({base}: {list(self.refs) if self.refs is not None else '?'})"


class SymbolTable:
    """
    嵌套作用域符号表。

    作用域层次：
      global → gate / def 体 → block / loop …
    """
    def __init__(self):
        self.global_scope = Scope(ScopeKind.GLOBAL)
        self._stack: list[Scope] = [self.global_scope]
        self._all: list[Scope] = [self.global_scope]   # 保持作用域存活，供 dump
        self.arena = QubitArena()
        self.defcals: dict[str, list] = {}          # 目标名 → DefcalDecl 列表

    # ── 作用域管理 ──────────────────────────────────────────────────────────

    def enter(self, kind: ScopeKind, name: str = '') -> Scope:
        scope = Scope(kind, self.current_scope, name)
        self._stack.append(scope)
        self._all.append(scope)
        return scope

    def leave_scope(self):
        if len(self._stack) > 1:
            self._stack.pop()

    @property
    def current_scope(self) -> Scope:
        return self._stack[-1]

    @property
    def is_global(self) -> bool:
        return len(self._stack) == 1

    @property
    def depth(self) -> int:
        return len(self._stack)

    def in_scope(self, *kinds: ScopeKind) -> bool:
        return self.current_scope.enclosing(*kinds) is not None

    # ── 符号操作 ────────────────────────────────────────────────────────────

    def define(self, sym: Symbol) -> bool:
        """在当前作用域定义符号，重复定义返回 False"""
        return self.current_scope.define(sym)

    def lookup(self, name: str) -> tuple[Optional[Symbol], bool]:
        return self.current_scope.lookup(name)

    def lookup_local(self, name: str) -> Symbol | None:
        """仅在当前作用域查找（用于检测同层重定义）"""
        return self.current_scope.lookup_local(name)

    def lookup_global(self, name: str) -> Symbol | None:
        """仅查全局作用域"""
        return self.global_scope.lookup_local(name)

    def qubits_in_scope(self) -> tuple:
        """
        当前位置可见的全部 qubit（无操作数的 barrier / delay / box 使用）。
        gate / def 体内是其量子形参，全局是目前为止已分配的全部槽位。
        """
        boundary = self.current_scope.enclosing(ScopeKind.GATE, ScopeKind.DEF)
        if boundary is None:
            return tuple(self.arena.ref(slot) for slot in range(len(self.arena)))
        refs: list = []
        for sym in boundary.symbols():
            if sym.kind is SymbolKind.QUBIT_REGISTER and sym.view is not None:
                if sym.view.refs is None:
                    return ()
                refs.extend(sym.view.refs)
        return tuple(refs)

    # ── 调试辅助 ────────────────────────────────────────────────────────────

    def dump(self) -> str:
        lines = []
        for scope in self._all:
            depth = 0
            parent = scope.parent
            while parent is not None:
                depth += 1
                parent = parent.parent
            indent = '  ' * depth
            user_symbols = [s for s in scope.symbols() if not s.builtin]
            if not user_symbols and scope is not self.global_scope:
                continue
            lines.append(f"{indent}[{scope.name}]")
            for sym in user_symbols:
                lines.append(f"{indent}  {sym}")
        if len(self.arena):
            lines.append(f"qubits: {', '.join(self.arena.labels)}")
        return '\n'.join(lines)
