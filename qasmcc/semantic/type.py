"""
OpenQASM 3 类型系统
===================
量子类型（qubit / 物理比特）、定宽经典数值类型（bit、int、uint、float、
angle、complex）、bool、duration / stretch、数组，以及 gate / 函数签名。

类型只描述"形状"（族 + 位宽），用于类型检查，不携带运行期值。

位宽为 None 的含义：
  - bit / qubit：单个比特（不是寄存器）
  - int / uint / float：无位宽的字面量，与任意位宽兼容
  - angle / complex：使用实现默认宽度
"""

from __future__ import annotations

from enum import Enum, auto
from typing import NamedTuple, Optional


class QType:
    """所有类型的基类"""
    family = 'type'

    def _key(self) -> tuple:
        return ()

    def __eq__(self, other):
        if isinstance(other, ErrorType):
            return True
        return type(other) is type(self) and self._key() == other._key()

    def __hash__(self):
        return hash((self.family,) + self._key())

    def __repr__(self):
        return self.family


# ──────────────────────────────────────────────────────────────────────────────
# 量子类型
# ──────────────────────────────────────────────────────────────────────────────

class QubitType(QType):
    """qubit（size=None）或 qubit[n] 寄存器；物理比特 $n 也是单个 qubit"""
    family = 'qubit'

    def __init__(self, size: Optional[int] = None):
        self.size = size

    def _key(self):
        return (self.size,)

    @property
    def is_register(self) -> bool:
        return self.size is not None

    @property
    def length(self) -> int:
        return 1 if self.size is None else self.size

    def __repr__(self):
        return 'qubit' if self.size is None else f'qubit[{self.size}]'


# ──────────────────────────────────────────────────────────────────────────────
# 经典标量类型
# ──────────────────────────────────────────────────────────────────────────────

class BitType(QType):
    family = 'bit'

    def __init__(self, size: Optional[int] = None):
        self.size = size

    def _key(self):
        return (self.size,)

    @property
    def is_register(self) -> bool:
        return self.size is not None

    @property
    def width(self) -> int:
        return 1 if self.size is None else self.size

    @property
    def length(self) -> int:
        return self.width

    def __repr__(self):
        return 'bit' if self.size is None else f'bit[{self.size}]'


class IntType(QType):
    """int[n] / uint[n]；size=None 表示无位宽字面量"""

    def __init__(self, size: Optional[int] = None, signed: bool = True):
        self.size = size
        self.signed = signed

    @property
    def family(self):
        return 'int' if self.signed else 'uint'

    @property
    def width(self) -> Optional[int]:
        return self.size

    def _key(self):
        return (self.size, self.signed)

    def __repr__(self):
        return self.family if self.size is None else f'{self.family}[{self.size}]'


class FloatType(QType):
    family = 'float'

    def __init__(self, size: Optional[int] = None):
        self.size = size

    @property
    def width(self) -> Optional[int]:
        return self.size

    def _key(self):
        return (self.size,)

    def __repr__(self):
        return 'float' if self.size is None else f'float[{self.size}]'


class AngleType(QType):
    family = 'angle'

    def __init__(self, size: Optional[int] = None):
        self.size = size

    @property
    def width(self) -> Optional[int]:
        return self.size

    def _key(self):
        return (self.size,)

    def __repr__(self):
        return 'angle' if self.size is None else f'angle[{self.size}]'


class ComplexType(QType):
    """complex[float[n]]：实部和虚部各为一个 float[n]"""
    family = 'complex'

    def __init__(self, base: Optional[FloatType] = None):
        self.base = base or FloatType(None)

    def _key(self):
        return (self.base.size,)

    def __repr__(self):
        return f'complex[{self.base}]'


class BoolType(QType):
    family = 'bool'


class DurationType(QType):
    family = 'duration'


class StretchType(QType):
    family = 'stretch'


class VoidType(QType):
    family = 'void'


class OpaqueType(QType):
    """port / frame / waveform：由外部提供定义的不透明类型"""
    family = 'opaque'

    def __init__(self, name: str):
        self.name = name

    def _key(self):
        return (self.name,)

    def __repr__(self):
        return self.name


# ──────────────────────────────────────────────────────────────────────────────
# 复合类型
# ──────────────────────────────────────────────────────────────────────────────

class ArrayType(QType):
    """array[elem, d1, d2, ...]；dims 中的 None 表示 #dim 形参的未知长度"""
    family = 'array'

    def __init__(self, element: QType, dims: tuple):
        self.element = element
        self.dims = tuple(dims)

    def _key(self):
        return (self.element, self.dims)

    @property
    def length(self) -> Optional[int]:
        return self.dims[0] if self.dims else None

    def __repr__(self):
        dims = ', '.join('?' if d is None else str(d) for d in self.dims)
        return f'array[{self.element}, {dims}]'


class GateType(QType):
    family = 'gate'

    def __init__(self, param_count: int, qubit_count: int):
        self.param_count = param_count
        self.qubit_count = qubit_count

    def _key(self):
        return (self.param_count, self.qubit_count)

    def __repr__(self):
        return f'gate({self.param_count}) [{self.qubit_count}]'


class FunctionType(QType):
    """def / extern / 内置函数的签名；arg_types 为 None 表示可变参数"""
    family = 'function'

    def __init__(self, arg_types, return_type: QType):
        self.arg_types = None if arg_types is None else tuple(arg_types)
        self.return_type = return_type

    def _key(self):
        return (self.arg_types, self.return_type)

    def __repr__(self):
        args = '...' if self.arg_types is None else ', '.join(map(str, self.arg_types))
        return f'({args}) -> {self.return_type}'


# ──────────────────────────────────────────────────────────────────────────────
# 特殊哨兵类型（用于错误恢复，不对外暴露）
# ──────────────────────────────────────────────────────────────────────────────

class ErrorType(QType):
    """
    语义错误恢复类型。
    当子表达式已经报过错时，父节点使用 ErrorType，
    避免产生大量级联错误。
    """
    family = 'error'

    def __repr__(self):
        return '<error>'

    def __eq__(self, other):
        return True   # ErrorType 与一切类型"兼容"，阻断级联错误

    def __hash__(self):
        return hash('error')


# ──────────────────────────────────────────────────────────────────────────────
# 预定义类型常量
# ──────────────────────────────────────────────────────────────────────────────

QUBIT    = QubitType()
BIT      = BitType()
BOOL     = BoolType()
DURATION = DurationType()
STRETCH  = StretchType()
VOID     = VoidType()
INT_LIT   = IntType(None)
UINT_LIT  = IntType(None, signed=False)
FLOAT_LIT = FloatType(None)
ERROR_T  = ErrorType()

OPAQUE_TYPES = {name: OpaqueType(name) for name in ('port', 'frame', 'waveform')}


# ──────────────────────────────────────────────────────────────────────────────
# 类型转换矩阵
# ──────────────────────────────────────────────────────────────────────────────

class CastRule(Enum):
    FORBIDDEN     = auto()
    IDENTITY      = auto()
    RESIZE        = auto()   # 同族改变位宽（整数回绕 / 浮点舍入 / 角度截位）
    SAME_WIDTH    = auto()   # bit ↔ int/uint，位宽必须相同
    WIDEN         = auto()   # int/uint → float
    TRUNCATE      = auto()   # float → int/uint，向零截断
    MOD_2PI       = auto()   # float → angle，约化到 [0, 2π)
    NONZERO       = auto()   # → bool，零 / 非零
    FROM_BOOL     = auto()   # bool → 数值，false/true → 0/1
    PROMOTE       = auto()   # 实数 → complex，虚部为 0
    COMPONENTWISE = auto()   # complex → complex，实部虚部分别转换


class Conversion(NamedTuple):
    rule:     CastRule
    explicit: bool    # 允许显式 T(x)
    implicit: bool    # 允许赋值 / 传参时隐式转换


FAMILIES = ('qubit', 'bit', 'int', 'uint', 'float', 'angle', 'complex', 'bool',
            'duration', 'stretch', 'array', 'opaque', 'void')

_FORBIDDEN = Conversion(CastRule.FORBIDDEN, False, False)


def _build_cast_matrix() -> dict:
    both, explicit_only, implicit_only = (True, True), (True, False), (False, True)
    table = {(src, dst): _FORBIDDEN for src in FAMILIES for dst in FAMILIES}

    def allow(src, dst, rule, mode=both):
        table[(src, dst)] = Conversion(rule, *mode)

    integers = ('int', 'uint')

    allow('bool', 'bool', CastRule.IDENTITY)
    for dst in integers + ('float', 'bit'):
        allow('bool', dst, CastRule.FROM_BOOL)

    for src in integers:
        allow(src, 'bool', CastRule.NONZERO)
        for dst in integers:
            allow(src, dst, CastRule.RESIZE)
        allow(src, 'float', CastRule.WIDEN)
        allow(src, 'bit', CastRule.SAME_WIDTH)
        allow(src, 'complex', CastRule.PROMOTE, implicit_only)

    allow('float', 'bool', CastRule.NONZERO)
    for dst in integers:
        allow('float', dst, CastRule.TRUNCATE, explicit_only)
    allow('float', 'float', CastRule.RESIZE)
    allow('float', 'angle', CastRule.MOD_2PI)
    allow('float', 'complex', CastRule.PROMOTE, implicit_only)

    allow('angle', 'angle', CastRule.RESIZE)
    allow('angle', 'float', CastRule.RESIZE, explicit_only)

    allow('bit', 'bool', CastRule.NONZERO)
    allow('bit', 'bit', CastRule.SAME_WIDTH)
    for dst in integers:
        allow('bit', dst, CastRule.SAME_WIDTH)

    allow('complex', 'complex', CastRule.COMPONENTWISE)

    for src in ('duration', 'stretch'):
        for dst in ('duration', 'stretch'):
            allow(src, dst, CastRule.IDENTITY)

    for fam in ('qubit', 'array', 'opaque'):
        allow(fam, fam, CastRule.IDENTITY, implicit_only)
    return table


CAST_MATRIX: dict[tuple[str, str], Conversion] = _build_cast_matrix()


def cast_rule(src: QType, dst: QType) -> Conversion:
    if src.family not in FAMILIES or dst.family not in FAMILIES:
        return _FORBIDDEN
    return CAST_MATRIX[(src.family, dst.family)]


def _width_ok(src: QType, dst: QType, rule: CastRule) -> bool:
    if rule is CastRule.SAME_WIDTH:
        sw, dw = getattr(src, 'width', None), getattr(dst, 'width', None)
        return sw is None or dw is None or sw == dw
    if rule is CastRule.IDENTITY:
        if isinstance(src, QubitType):
            return src.size == dst.size
        if isinstance(src, ArrayType):
            return _array_compatible(src, dst)
        if isinstance(src, OpaqueType):
            return src.name == dst.name
    return True


def _array_compatible(src: ArrayType, dst: ArrayType) -> bool:
    if len(src.dims) != len(dst.dims):
        return False
    if not can_assign(dst.element, src.element) or src.element.family != dst.element.family:
        return False
    return all(s is None or d is None or s == d for s, d in zip(src.dims, dst.dims))


def check_explicit_cast(src: QType, dst: QType) -> Optional[str]:
    """显式转换 dst(src) 是否合法；合法返回 None，否则返回原因"""
    if isinstance(src, ErrorType) or isinstance(dst, ErrorType):
        return None
    conv = cast_rule(src, dst)
    if not conv.explicit:
        return f"不允许从 {src} 转换为 {dst}"
    if not _width_ok(src, dst, conv.rule):
        return f"{src} 与 {dst} 之间的转换要求位宽相同"
    return None


def can_assign(dst: QType, src: QType) -> bool:
    """
    判断 src 能否赋值给 dst（隐式类型转换规则）。
    - 同族：位宽按族的规则检查
    - int/uint → float、float → angle、实数 → complex 等为隐式提升
    - ErrorType 与一切兼容（错误恢复）
    """
    if isinstance(dst, ErrorType) or isinstance(src, ErrorType):
        return True
    conv = cast_rule(src, dst)
    return conv.implicit and _width_ok(src, dst, conv.rule)


def is_signedness_mixed(ltype: QType, rtype: QType) -> bool:
    """有符号与无符号的定宽整数混用（无位宽字面量不算）"""
    return (isinstance(ltype, IntType) and isinstance(rtype, IntType)
            and ltype.size is not None and rtype.size is not None
            and ltype.signed != rtype.signed)


# ──────────────────────────────────────────────────────────────────────────────
# 类型工具函数
# ──────────────────────────────────────────────────────────────────────────────

def is_integer(t: QType) -> bool:
    return isinstance(t, IntType)

def is_real(t: QType) -> bool:
    return isinstance(t, (IntType, FloatType))

def is_numeric(t: QType) -> bool:
    return isinstance(t, (IntType, FloatType, ComplexType))

def is_timing(t: QType) -> bool:
    return isinstance(t, (DurationType, StretchType))

def is_quantum(t: QType) -> bool:
    return isinstance(t, QubitType)

def is_classical_value(t: QType) -> bool:
    return isinstance(t, (BitType, IntType, FloatType, AngleType, ComplexType, BoolType,
                          DurationType, StretchType, ArrayType))

def is_bool_convertible(t: QType) -> bool:
    return isinstance(t, ErrorType) or cast_rule(t, BOOL).implicit


def _max_size(a, b):
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _float_result(l: QType, r: QType) -> FloatType:
    sizes = [t.size for t in (l, r) if isinstance(t, FloatType)]
    size = None
    for s in sizes:
        size = _max_size(size, s)
    return FloatType(size)


def resolve_binary_op(op: str, ltype: QType, rtype: QType) -> Optional[QType]:
    """
    给定二元运算符和两个操作数类型，返回结果类型。
    无法推导时返回 None。
    """
    if isinstance(ltype, ErrorType) or isinstance(rtype, ErrorType):
        return ERROR_T

    if op in ('+', '-', '*', '/', '%', '**'):
        return _arithmetic(op, ltype, rtype)

    if op in ('<<', '>>'):
        if isinstance(ltype, (IntType, BitType)) and isinstance(rtype, IntType):
            return ltype
        return None

    if op in ('&', '|', '^'):
        if isinstance(ltype, IntType) and isinstance(rtype, IntType):
            return IntType(_max_size(ltype.size, rtype.size), ltype.signed)
        if isinstance(ltype, BitType) and isinstance(rtype, BitType):
            return ltype if ltype.width == rtype.width else None
        if isinstance(ltype, BitType) and isinstance(rtype, IntType):
            return ltype
        if isinstance(ltype, IntType) and isinstance(rtype, BitType):
            return rtype
        return None

    if op in ('<', '>', '<=', '>='):
        if is_real(ltype) and is_real(rtype):
            return BOOL
        if isinstance(ltype, (AngleType, BitType)) and type(ltype) is type(rtype):
            return BOOL
        if isinstance(ltype, BitType) and isinstance(rtype, IntType):
            return BOOL
        if isinstance(ltype, IntType) and isinstance(rtype, BitType):
            return BOOL
        if is_timing(ltype) and is_timing(rtype):
            return BOOL
        return None

    if op in ('==', '!='):
        if ltype.family == rtype.family:
            return BOOL
        if is_numeric(ltype) and is_numeric(rtype):
            return BOOL
        if {ltype.family, rtype.family} <= {'bit', 'int', 'uint', 'bool'}:
            return BOOL
        if is_timing(ltype) and is_timing(rtype):
            return BOOL
        return None

    if op in ('&&', '||'):
        if is_bool_convertible(ltype) and is_bool_convertible(rtype):
            return BOOL
        return None

    return None


def _arithmetic(op: str, l: QType, r: QType) -> Optional[QType]:
    # 时长
    if is_timing(l) or is_timing(r):
        if is_timing(l) and is_timing(r):
            if op in ('+', '-'):
                return STRETCH if STRETCH.family in (l.family, r.family) else DURATION
            if op == '/':
                return FloatType(None)
            return None
        if op == '*' and (is_real(l) or is_real(r)):
            return l if is_timing(l) else r
        if op == '/' and is_timing(l) and is_real(r):
            return l
        return None

    # 角度
    if isinstance(l, AngleType) or isinstance(r, AngleType):
        if isinstance(l, AngleType) and isinstance(r, AngleType):
            if op in ('+', '-'):
                return AngleType(_max_size(l.size, r.size))
            if op == '/':
                return IntType(l.size, signed=False)
            return None
        angle, other = (l, r) if isinstance(l, AngleType) else (r, l)
        if not is_real(other):
            return None
        if op == '*':
            return angle
        if op in ('/', '+', '-') and isinstance(l, AngleType):
            return angle
        if op in ('+', '-'):
            return angle
        return None

    if not (is_numeric(l) and is_numeric(r)):
        return None

    if isinstance(l, ComplexType) or isinstance(r, ComplexType):
        if op == '%':
            return None
        bases = [t.base for t in (l, r) if isinstance(t, ComplexType)]
        return ComplexType(_float_result(*bases) if len(bases) == 2 else bases[0])

    if isinstance(l, FloatType) or isinstance(r, FloatType):
        if op == '%':
            return None
        return _float_result(l, r)

    # 整数：结果沿用左操作数的符号性（混用由调用方报警告）
    signed = l.signed if l.size is not None or r.size is None else r.signed
    return IntType(_max_size(l.size, r.size), signed)


def resolve_unary_op(op: str, t: QType) -> Optional[QType]:
    if isinstance(t, ErrorType):
        return ERROR_T
    if op == '-':
        if is_numeric(t) or isinstance(t, AngleType) or is_timing(t):
            return t
        return None
    if op == '~':
        return t if isinstance(t, (IntType, BitType)) else None
    if op == '!':
        return BOOL if is_bool_convertible(t) else None
    return None


def concat_type(ltype: QType, rtype: QType) -> Optional[QType]:
    """a ++ b：元素类型必须完全相同，结果长度为两者之和"""
    if isinstance(ltype, ErrorType) or isinstance(rtype, ErrorType):
        return ERROR_T
    if isinstance(ltype, ArrayType) and isinstance(rtype, ArrayType):
        if ltype.element != rtype.element or ltype.dims[1:] != rtype.dims[1:]:
            return None
        if ltype.length is None or rtype.length is None:
            return ArrayType(ltype.element, (None,) + ltype.dims[1:])
        return ArrayType(ltype.element, (ltype.length + rtype.length,) + ltype.dims[1:])
    if isinstance(ltype, BitType) and isinstance(rtype, BitType):
        return BitType(ltype.width + rtype.width)
    if isinstance(ltype, QubitType) and isinstance(rtype, QubitType):
        return QubitType(ltype.length + rtype.length)
    return None


def indexable_length(t: QType) -> Optional[int]:
    """可下标访问的第一维长度（寄存器 / 数组 / 定宽整数按位访问）"""
    if isinstance(t, (QubitType, BitType)):
        return t.size
    if isinstance(t, ArrayType):
        return t.length
    if isinstance(t, (IntType, AngleType)):
        return t.size
    return None


def element_type(t: QType) -> Optional[QType]:
    """对 t 做单个整数下标后的类型"""
    if isinstance(t, QubitType) and t.is_register:
        return QUBIT
    if isinstance(t, BitType) and t.is_register:
        return BIT
    if isinstance(t, (IntType, AngleType)) and t.size is not None:
        return BIT
    if isinstance(t, ArrayType):
        if len(t.dims) == 1:
            return t.element
        return ArrayType(t.element, t.dims[1:])
    return None


def slice_type(t: QType, length: Optional[int]) -> Optional[QType]:
    """对 t 做切片 / 集合下标后的类型"""
    if isinstance(t, QubitType) and t.is_register:
        return QubitType(length)
    if isinstance(t, BitType) and t.is_register:
        return BitType(length)
    if isinstance(t, (IntType, AngleType)) and t.size is not None:
        return BitType(length)
    if isinstance(t, ArrayType):
        return ArrayType(t.element, (length,) + t.dims[1:])
    return None
