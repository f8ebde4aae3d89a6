"""
编译期常量求值
==============
在语法要求编译期常量的位置（数组维度 / 寄存器大小、const 初始化、
case 标签、修饰符重复次数、类型转换的目标位宽）对表达式求值。

值的表示：
  int / uint   Python int（按目标位宽回绕）
  float        Python float（float[16] / float[32] 经 numpy 舍入）
  angle        Python float，约化到 [0, 2π)
  bool         Python bool
  bit[n]       '0' / '1' 组成的字符串，最高位在前（b[0] 是最后一个字符）
  complex      Python complex
  duration     Duration(value, unit)
  array        Python list（多维为嵌套 list）

引用非 const 符号、任何量子操作、不在可求值集合中的函数 → NotConstant，
由调用方转换为具体位置的诊断（大小处为 E003，转换目标位宽处为 E008）。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..config import CompilerOptions
from ..tree.transformer import (
    ASTNode, ArrayRefTypeSpec, ArrayTypeSpec, Identifier, QubitTypeSpec, RangeExpr,
    ScalarTypeSpec, SetExpr,
)
from .builtins import BUILTIN_CONSTANTS
from .symbol import Scope, SymbolKind
from .type import (
    AngleType, ArrayType, BitType, BoolType, ComplexType, FloatType, IntType, QType, QubitType,
    BOOL, DURATION, STRETCH, VOID, ERROR_T, OPAQUE_TYPES, CastRule, cast_rule,
    is_signedness_mixed, resolve_binary_op, resolve_unary_op, concat_type,
)

TWO_PI = 2 * math.pi

_SECONDS = {'ns': 1e-9, 'us': 1e-6, 'ms': 1e-3, 's': 1.0}


# ──────────────────────────────────────────────────────────────────────────────
# 异常
# ──────────────────────────────────────────────────────────────────────────────

class NotConstant(Exception):
    """表达式无法在编译期求值"""
    def __init__(self, node, reason: str):
        super().__init__(reason)
        self.node = node
        self.reason = reason


class InvalidSize(NotConstant):
    """位宽 / 维度是常量但取值非法（非正、超过上限、不是整数）"""


class CastError(Exception):
    """编译期值无法按转换规则转换"""
    def __init__(self, message: str, node=None):
        super().__init__(message)
        self.message = message
        self.node = node


@dataclass(frozen=True)
class Duration:
    value: float
    unit:  str      # 'ns' / 'us' / 'ms' / 's' / 'dt'

    def seconds(self) -> Optional[float]:
        return None if self.unit == 'dt' else self.value * _SECONDS[self.unit]

    def __str__(self):
        return f"{self.value:g}{self.unit}"


# ──────────────────────────────────────────────────────────────────────────────
# 值转换（按类型转换矩阵的规则）
# ──────────────────────────────────────────────────────────────────────────────

def wrap_int(value: int, size: Optional[int], signed: bool) -> int:
    """定宽整数回绕"""
    if size is None:
        return value
    mask = (1 << size) - 1
    value &= mask
    if signed and value >> (size - 1):
        value -= 1 << size
    return value


def round_float(value: float, size: Optional[int]) -> float:
    if size == 16:
        return float(np.float16(value))
    if size == 32:
        return float(np.float32(value))
    return float(value)


def reduce_angle(value: float) -> float:
    reduced = math.fmod(value, TWO_PI)
    if reduced < 0:
        reduced += TWO_PI
    return reduced


def int_to_bits(value: int, width: int) -> str:
    return format(value & ((1 << width) - 1), f'0{width}b')


def angle_to_bits(value: float, width: int) -> str:
    """angle[width] 的位模式：round(value / 2π · 2^width) mod 2^width"""
    return int_to_bits(round(reduce_angle(value) / TWO_PI * (1 << width)), width)


def bits_to_int(bits: str, signed: bool = False) -> int:
    value = int(bits, 2) if bits else 0
    if signed and bits and bits[0] == '1':
        value -= 1 << len(bits)
    return value


def coerce(value, src: QType, dst: QType, node=None):
    """
    按 src → dst 的转换规则转换编译期值。
    不检查显式 / 隐式权限（那是类型检查器的职责），只实现数值语义。
    """
    if isinstance(dst, ArrayType):
        if not isinstance(value, list):
            raise CastError(f"无法把 {src} 转换为 {dst}", node)
        element_src = src.element if isinstance(src, ArrayType) else src
        inner = dst.element if len(dst.dims) == 1 else ArrayType(dst.element, dst.dims[1:])
        inner_src = element_src if len(dst.dims) == 1 or not isinstance(src, ArrayType) \
            else ArrayType(src.element, src.dims[1:])
        return [coerce(v, inner_src, inner, node) for v in value]

    rule = cast_rule(src, dst).rule
    if rule is CastRule.FORBIDDEN:
        raise CastError(f"不允许从 {src} 转换为 {dst}", node)

    if isinstance(dst, BoolType):
        if isinstance(value, str):
            return '1' in value
        return bool(value)

    if isinstance(dst, IntType):
        if isinstance(value, bool):
            value = int(value)
        elif isinstance(value, str):
            if dst.size is not None and len(value) != dst.size:
                raise CastError(f"{src} 与 {dst} 位宽不同", node)
            value = bits_to_int(value, dst.signed)
        elif isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                raise CastError(f"无法把 {value} 转换为整数", node)
            value = int(value)          # 向零截断
        return wrap_int(int(value), dst.size, dst.signed)

    if isinstance(dst, FloatType):
        return round_float(float(value), dst.size)

    if isinstance(dst, AngleType):
        return reduce_angle(float(value))

    if isinstance(dst, BitType):
        width = dst.width
        if isinstance(value, str):
            if len(value) != width:
                raise CastError(f"{src} 与 {dst} 位宽不同", node)
            return value
        if isinstance(value, bool):
            return int_to_bits(int(value), width)
        src_width = getattr(src, 'width', None)
        if src_width is not None and src_width != width:
            raise CastError(f"{src} 与 {dst} 位宽不同", node)
        return int_to_bits(int(value), width)

    if isinstance(dst, ComplexType):
        c = complex(value)
        size = dst.base.size
        return complex(round_float(c.real, size), round_float(c.imag, size))

    return value


# ──────────────────────────────────────────────────────────────────────────────
# 内置函数（与 numpy 对应）
# ──────────────────────────────────────────────────────────────────────────────

def _popcount(value, qtype):
    if isinstance(value, str):
        return value.count('1')
    width = getattr(qtype, 'width', None)
    if width is not None:
        value &= (1 << width) - 1
    elif value < 0:
        raise ValueError("无位宽的负数无法计算 popcount")
    return bin(value).count('1')


def _rotate(value, qtype, distance: int, left: bool):
    if isinstance(value, str):
        bits = value
    else:
        width = getattr(qtype, 'width', None)
        if width is None:
            raise ValueError("rotl / rotr 需要定宽的操作数")
        bits = int_to_bits(value, width)
    if not bits:
        return value
    n = distance % len(bits)
    if not left:
        n = (len(bits) - n) % len(bits)
    rotated = bits[n:] + bits[:n]
    if isinstance(value, str):
        return rotated
    return bits_to_int(rotated, getattr(qtype, 'signed', False))


FUNCTIONS = {
    'arccos':  np.arccos,
    'arcsin':  np.arcsin,
    'arctan':  np.arctan,
    'ceiling': np.ceil,
    'cos':     np.cos,
    'exp':     np.exp,
    'floor':   np.floor,
    'log':     np.log,
    'mod':     np.mod,
    'pow':     np.power,
    'sin':     np.sin,
    'sqrt':    np.sqrt,
    'tan':     np.tan,
    'real':    np.real,
    'imag':    np.imag,
}


def _py(value):
    """numpy 标量 → Python 标量"""
    if isinstance(value, np.generic):
        return value.item()
    return value


# ──────────────────────────────────────────────────────────────────────────────
# 求值器
# ──────────────────────────────────────────────────────────────────────────────

class ConstEvaluator:
    """
    编译期常量求值器。

    Args:
        options:         CompilerOptions（默认位宽、最大位宽）
        scope:           查找未绑定标识符时使用的作用域
        propagate_known: 为 True 时，从未被重新赋值、初始化值已知的普通变量
                         也参与折叠（类型检查器用于注解常量值，大小表达式不使用）
    """

    def __init__(self, options: Optional[CompilerOptions] = None,
                 scope: Optional[Scope] = None, propagate_known: bool = False):
        self.options = options or CompilerOptions()
        self.scope = scope
        self.propagate_known = propagate_known
        self.mixed_signedness = False

    # ── 入口 ────────────────────────────────────────────────────────────────

    def evaluate(self, expr: ASTNode):
        return self.evaluate_typed(expr)[0]

    def evaluate_typed(self, expr: ASTNode) -> tuple:
        """返回 (值, 类型)；失败抛出 NotConstant"""
        method = getattr(self, f'_eval_{type(expr).__name__}', None)
        if method is None:
            raise NotConstant(expr, f"{type(expr).__name__} 不是常量表达式")
        return method(expr)

    def evaluate_int(self, expr: ASTNode) -> int:
        value, qtype = self.evaluate_typed(expr)
        if isinstance(value, bool) or not isinstance(value, int):
            if isinstance(value, str):
                return bits_to_int(value)
            raise InvalidSize(expr, f"需要整数，得到 {qtype}")
        return value

    def evaluate_size(self, expr: ASTNode, limit: Optional[int] = None) -> int:
        """位宽 / 维度：必须是正整数，且不超过 limit；涉及有符号 / 无符号混用时非法"""
        self.mixed_signedness = False
        size = self.evaluate_int(expr)
        if self.mixed_signedness:
            raise InvalidSize(expr, "大小表达式混用了有符号与无符号整数")
        if size <= 0:
            raise InvalidSize(expr, f"大小必须为正整数，得到 {size}")
        if limit is not None and size > limit:
            raise InvalidSize(expr, f"位宽 {size} 超过上限 {limit}")
        return size

    # ── 类型说明 ────────────────────────────────────────────────────────────

    def resolve_type_spec(self, spec: ASTNode) -> QType:
        """把类型说明节点解析为 QType；位宽必须是编译期常量"""
        opts = self.options
        if isinstance(spec, QubitTypeSpec):
            return QubitType(None if spec.size is None else self.evaluate_size(spec.size))
        if isinstance(spec, ArrayTypeSpec):
            base = self.resolve_type_spec(spec.base)
            return ArrayType(base, tuple(self.evaluate_size(d) for d in spec.dims))
        if isinstance(spec, ArrayRefTypeSpec):
            base = self.resolve_type_spec(spec.base)
            if spec.dim_count is not None:
                return ArrayType(base, (None,) * self.evaluate_size(spec.dim_count))
            return ArrayType(base, tuple(self.evaluate_size(d) for d in spec.dims))
        if not isinstance(spec, ScalarTypeSpec):
            raise NotConstant(spec, "不是类型")

        kind = spec.kind
        size = None
        if spec.size is not None:
            limit = None if kind == 'bit' else opts.max_width
            size = self.evaluate_size(spec.size, limit)
        if kind == 'bit':
            return BitType(size)
        if kind == 'int':
            return IntType(size or opts.default_int_width)
        if kind == 'uint':
            return IntType(size or opts.default_int_width, signed=False)
        if kind == 'float':
            return FloatType(size or opts.default_float_width)
        if kind == 'angle':
            return AngleType(size or opts.default_angle_width)
        if kind == 'complex':
            base = self.resolve_type_spec(spec.base) if spec.base is not None \
                else FloatType(opts.default_float_width)
            if not isinstance(base, FloatType):
                raise InvalidSize(spec, f"complex 的分量必须是 float，得到 {base}")
            return ComplexType(base)
        simple = {'bool': BOOL, 'duration': DURATION, 'stretch': STRETCH, 'void': VOID}
        if kind in simple:
            return simple[kind]
        return OPAQUE_TYPES.get(kind, ERROR_T)

    # ── 字面量 ──────────────────────────────────────────────────────────────

    def _eval_IntLiteral(self, node):
        return node.value, IntType(None)

    def _eval_FloatLiteral(self, node):
        return node.value, FloatType(None)

    def _eval_ImaginaryLiteral(self, node):
        return node.value, ComplexType(FloatType(None))

    def _eval_BoolLiteral(self, node):
        return node.value, BOOL

    def _eval_BitstringLiteral(self, node):
        bits = node.value
        return bits, BitType(len(bits))

    def _eval_DurationLiteral(self, node):
        return Duration(node.value, node.unit), DURATION

    def _eval_ArrayLiteral(self, node):
        items = [self.evaluate_typed(v) for v in node.values]
        if not items:
            raise NotConstant(node, "空数组字面量")
        first = items[0][1]
        if isinstance(first, ArrayType):
            qtype = ArrayType(first.element, (len(items),) + first.dims)
        else:
            qtype = ArrayType(first, (len(items),))
        return [v for v, _ in items], qtype

    # ── 标识符 ──────────────────────────────────────────────────────────────

    def _eval_Identifier(self, node):
        sym = node.symbol
        if sym is None and self.scope is not None:
            sym, _ = self.scope.lookup(node.name)
        if sym is None:
            if node.name in BUILTIN_CONSTANTS:
                return float(BUILTIN_CONSTANTS[node.name]), FloatType(self.options.default_float_width)
            raise NotConstant(node, f"未定义的标识符 '{node.name}'")
        if sym.kind is SymbolKind.CONST:
            if sym.value is None:
                raise NotConstant(node, f"常量 '{node.name}' 的值未知")
            return sym.value, sym.qtype
        if (self.propagate_known and sym.kind is SymbolKind.VARIABLE
                and sym.value is not None and not sym.reassigned):
            return sym.value, sym.qtype
        raise NotConstant(node, f"'{node.name}' 不是 const 符号")

    # ── 运算 ────────────────────────────────────────────────────────────────

    def _eval_Cast(self, node):
        target = self.resolve_type_spec(node.type_spec)
        value, src = self.evaluate_typed(node.operand)
        try:
            return coerce(value, src, target, node), target
        except CastError as e:
            raise NotConstant(node, e.message) from e

    def _eval_UnaryOp(self, node):
        value, qtype = self.evaluate_typed(node.operand)
        result_type = resolve_unary_op(node.op, qtype)
        if result_type is None:
            raise NotConstant(node, f"'{node.op}' 不能作用于 {qtype}")
        if node.op == '!':
            return not coerce(value, qtype, BOOL, node), BOOL
        if node.op == '~':
            if isinstance(value, str):
                return ''.join('1' if b == '0' else '0' for b in value), qtype
            return wrap_int(~value, qtype.size, qtype.signed), qtype
        # '-'
        if isinstance(qtype, AngleType):
            return reduce_angle(-value), qtype
        if isinstance(value, Duration):
            return Duration(-value.value, value.unit), qtype
        if isinstance(qtype, IntType):
            return wrap_int(-value, qtype.size, qtype.signed), qtype
        return -value, qtype

    def _eval_BinaryOp(self, node):
        lval, ltype = self.evaluate_typed(node.left)
        rval, rtype = self.evaluate_typed(node.right)
        op = node.op
        if is_signedness_mixed(ltype, rtype):
            self.mixed_signedness = True
        result_type = resolve_binary_op(op, ltype, rtype)
        if result_type is None:
            raise NotConstant(node, f"'{op}' 不能作用于 {ltype} 与 {rtype}")
        try:
            value = self._binary(op, lval, ltype, rval, rtype, result_type, node)
        except (ZeroDivisionError, OverflowError, ValueError, TypeError) as e:
            raise NotConstant(node, f"编译期求值失败：{e}") from e
        return value, result_type

    def _binary(self, op, lval, ltype, rval, rtype, result_type, node):
        if op in ('&&', '||'):
            lb, rb = coerce(lval, ltype, BOOL, node), coerce(rval, rtype, BOOL, node)
            return (lb and rb) if op == '&&' else (lb or rb)

        if op in ('==', '!=', '<', '>', '<=', '>='):
            return self._compare(op, lval, ltype, rval, rtype, node)

        if isinstance(lval, Duration) or isinstance(rval, Duration):
            return self._duration_arith(op, lval, rval, node)

        if isinstance(result_type, AngleType):
            return self._angle_arith(op, lval, ltype, rval, rtype)
        if isinstance(ltype, AngleType) and isinstance(rtype, AngleType):
            # angle / angle → uint
            return int(lval // rval)

        if op in ('&', '|', '^', '<<', '>>') and isinstance(result_type, BitType):
            return self._bit_ops(op, lval, ltype, rval, result_type)

        lnum = self._numeric(lval, ltype)
        rnum = self._numeric(rval, rtype)

        if isinstance(result_type, IntType):
            value = self._int_arith(op, lnum, rnum)
            return wrap_int(value, result_type.size, result_type.signed)
        if isinstance(result_type, FloatType):
            if op == '/' and rnum == 0:
                raise ZeroDivisionError("除以零")
            value = {'+': lambda: lnum + rnum, '-': lambda: lnum - rnum,
                     '*': lambda: lnum * rnum, '/': lambda: lnum / rnum,
                     '**': lambda: float(lnum) ** rnum}[op]()
            return round_float(float(value), result_type.size)
        if isinstance(result_type, ComplexType):
            value = {'+': lambda: lnum + rnum, '-': lambda: lnum - rnum,
                     '*': lambda: lnum * rnum, '/': lambda: lnum / rnum,
                     '**': lambda: complex(lnum) ** rnum}[op]()
            return complex(value)
        raise NotConstant(node, f"'{op}' 无法在编译期求值")

    @staticmethod
    def _numeric(value, qtype):
        if isinstance(value, str):
            return bits_to_int(value)
        if isinstance(value, bool):
            return int(value)
        return value

    @staticmethod
    def _int_arith(op, a: int, b: int) -> int:
        if op == '+':
            return a + b
        if op == '-':
            return a - b
        if op == '*':
            return a * b
        if op in ('/', '%'):
            if b == 0:
                raise ZeroDivisionError("除以零")
            quotient = abs(a) // abs(b)
            if (a < 0) != (b < 0):
                quotient = -quotient          # 向零截断
            return quotient if op == '/' else a - b * quotient
        if op == '**':
            if b < 0:
                raise ValueError("整数的负指数幂")
            return a ** b
        if op == '&':
            return a & b
        if op == '|':
            return a | b
        if op == '^':
            return a ^ b
        if op == '<<':
            return a << b
        if op == '>>':
            return a >> b
        raise ValueError(f"未知运算符 {op}")

    @staticmethod
    def _bit_ops(op, lval, ltype, rval, result_type):
        width = result_type.width
        left = lval if isinstance(lval, str) else int_to_bits(lval, width)
        if op in ('<<', '>>'):
            n = int(rval)
            if op == '<<':
                return (left[n:] + '0' * min(n, width))[-width:] if n < width else '0' * width
            return ('0' * min(n, width) + left[:max(width - n, 0)])[:width]
        right = rval if isinstance(rval, str) else int_to_bits(rval, width)
        table = {'&': lambda a, b: a & b, '|': lambda a, b: a | b, '^': lambda a, b: a ^ b}
        fn = table[op]
        return ''.join(str(fn(int(a), int(b))) for a, b in zip(left, right))

    @staticmethod
    def _angle_arith(op, lval, ltype, rval, rtype):
        a = float(lval) if not isinstance(lval, str) else float(bits_to_int(lval))
        b = float(rval) if not isinstance(rval, str) else float(bits_to_int(rval))
        if op == '+':
            return reduce_angle(a + b)
        if op == '-':
            return reduce_angle(a - b)
        if op == '*':
            return reduce_angle(a * b)
        if op == '/':
            if b == 0:
                raise ZeroDivisionError("除以零")
            return reduce_angle(a / b)
        raise ValueError(f"角度不支持运算 {op}")

    @staticmethod
    def _duration_arith(op, lval, rval, node):
        if isinstance(lval, Duration) and isinstance(rval, Duration):
            if op == '/':
                ls, rs = lval.seconds(), rval.seconds()
                if lval.unit == rval.unit:
                    return lval.value / rval.value
                if ls is None or rs is None:
                    raise NotConstant(node, "dt 与 SI 时间单位不能在编译期合并")
                return ls / rs
            if lval.unit == rval.unit:
                unit, a, b = lval.unit, lval.value, rval.value
            else:
                ls, rs = lval.seconds(), rval.seconds()
                if ls is None or rs is None:
                    raise NotConstant(node, "dt 与 SI 时间单位不能在编译期合并")
                unit, a, b = 'ns', ls / _SECONDS['ns'], rs / _SECONDS['ns']
            return Duration(a + b if op == '+' else a - b, unit)
        dur, factor = (lval, rval) if isinstance(lval, Duration) else (rval, lval)
        factor = float(factor)
        if op == '*':
            return Duration(dur.value * factor, dur.unit)
        if factor == 0:
            raise ZeroDivisionError("除以零")
        return Duration(dur.value / factor, dur.unit)

    def _compare(self, op, lval, ltype, rval, rtype, node):
        if isinstance(lval, Duration) and isinstance(rval, Duration):
            if lval.unit == rval.unit:
                a, b = lval.value, rval.value
            else:
                a, b = lval.seconds(), rval.seconds()
                if a is None or b is None:
                    raise NotConstant(node, "dt 与 SI 时间单位不能在编译期比较")
        else:
            a, b = self._numeric(lval, ltype), self._numeric(rval, rtype)
        return {'==': a == b, '!=': a != b, '<': a < b,
                '>': a > b, '<=': a <= b, '>=': a >= b}[op]

    def _eval_Concatenation(self, node):
        lval, ltype = self.evaluate_typed(node.left)
        rval, rtype = self.evaluate_typed(node.right)
        result_type = concat_type(ltype, rtype)
        if result_type is None or isinstance(result_type, QubitType):
            raise NotConstant(node, f"'++' 不能作用于 {ltype} 与 {rtype}")
        return lval + rval, result_type

    def _eval_IndexExpr(self, node):
        value, qtype = self.evaluate_typed(node.base)
        for index in node.indices:
            value, qtype = self._index(node, value, qtype, index)
        return value, qtype

    def _index(self, node, value, qtype, index):
        if isinstance(index, (RangeExpr, SetExpr)):
            positions = self.index_positions(index, _length_of(value, qtype), node)
            if isinstance(value, list):
                return [value[p] for p in positions], ArrayType(qtype.element, (len(positions),) + qtype.dims[1:])
            bits = _bits_of(value, qtype)
            return ''.join(bits[len(bits) - 1 - p] for p in reversed(positions)), BitType(len(positions))
        i = self.evaluate_int(index)
        length = _length_of(value, qtype)
        if i < 0:
            i += length
        if not 0 <= i < length:
            raise NotConstant(node, f"下标 {i} 越界（长度 {length}）")
        if isinstance(value, list):
            inner = qtype.element if len(qtype.dims) == 1 else ArrayType(qtype.element, qtype.dims[1:])
            return value[i], inner
        bits = _bits_of(value, qtype)
        return bits[len(bits) - 1 - i], BitType(None)

    def index_positions(self, index, length: int, node=None) -> list[int]:
        """把 range / set 下标展开为具体位置（负数按 length + i 解析）"""
        if isinstance(index, SetExpr):
            positions = [self.evaluate_int(v) for v in index.values]
        else:
            start = 0 if index.start is None else self.evaluate_int(index.start)
            step = 1 if index.step is None else self.evaluate_int(index.step)
            stop = length - 1 if index.stop is None else self.evaluate_int(index.stop)
            if step == 0:
                raise InvalidSize(index, "range 的步长不能为 0")
            if start < 0:
                start += length
            if stop < 0:
                stop += length
            positions = list(range(start, stop + (1 if step > 0 else -1), step))
        return [p + length if p < 0 else p for p in positions]

    def range_values(self, expr: RangeExpr) -> list[int]:
        """for 循环的 start:step:stop（两端包含）"""
        start = self.evaluate_int(expr.start) if expr.start is not None else 0
        step = self.evaluate_int(expr.step) if expr.step is not None else 1
        if expr.stop is None:
            raise NotConstant(expr, "range 缺少终点")
        stop = self.evaluate_int(expr.stop)
        if step == 0:
            raise InvalidSize(expr, "range 的步长不能为 0")
        return list(range(start, stop + (1 if step > 0 else -1), step))

    def _eval_Call(self, node):
        name = node.name
        if node.symbol is not None and not node.symbol.builtin:
            raise NotConstant(node, f"'{name}' 不能在编译期求值")
        if name == 'sizeof':
            return self._sizeof(node), IntType(None, signed=False)
        if name not in FUNCTIONS and name not in ('popcount', 'rotl', 'rotr'):
            raise NotConstant(node, f"'{name}' 不能在编译期求值")
        args = [self.evaluate_typed(a) for a in node.arguments]
        try:
            if name == 'popcount':
                return _popcount(args[0][0], args[0][1]), IntType(None, signed=False)
            if name in ('rotl', 'rotr'):
                (value, qtype), (distance, _) = args
                return _rotate(value, qtype, int(distance), name == 'rotl'), qtype
            return self._numpy_call(node, name, args)
        except (IndexError, ValueError, TypeError) as e:
            raise NotConstant(node, f"{name}() 求值失败：{e}") from e

    def _numpy_call(self, node, name, args):
        values = [self._numeric(v, t) for v, t in args]
        with np.errstate(all='ignore'):
            result = _py(FUNCTIONS[name](*values))
        first = args[0][1] if args else ERROR_T
        if name in ('mod', 'pow') and all(isinstance(v, int) for v in values) \
                and not (name == 'pow' and values[1] < 0):
            return int(result), first if isinstance(first, IntType) else IntType(None)
        if name in ('real', 'imag'):
            return float(result), FloatType(self.options.default_float_width)
        if isinstance(result, complex):
            return result, ComplexType(FloatType(self.options.default_float_width))
        if isinstance(first, AngleType) and name in ('mod',):
            return reduce_angle(float(result)), first
        return float(result), FloatType(self.options.default_float_width)

    def _sizeof(self, node) -> int:
        if not node.arguments:
            raise NotConstant(node, "sizeof 缺少参数")
        target = node.arguments[0]
        qtype = target.qtype if target.qtype is not None else None
        if qtype is None and isinstance(target, Identifier):
            sym = target.symbol
            if sym is None and self.scope is not None:
                sym, _ = self.scope.lookup(target.name)
            qtype = sym.qtype if sym is not None else None
        if not isinstance(qtype, ArrayType):
            raise NotConstant(node, "sizeof 需要数组参数")
        dim = self.evaluate_int(node.arguments[1]) if len(node.arguments) > 1 else 0
        if not 0 <= dim < len(qtype.dims) or qtype.dims[dim] is None:
            raise NotConstant(node, "数组维度在编译期未知")
        return qtype.dims[dim]


def _bits_of(value, qtype) -> str:
    if isinstance(value, str):
        return value
    if isinstance(qtype, AngleType):
        return angle_to_bits(value, qtype.width)
    return int_to_bits(value, qtype.width)


def _length_of(value, qtype) -> int:
    if isinstance(value, (list, str)):
        return len(value)
    width = getattr(qtype, 'width', None)
    if width is None:
        raise NotConstant(None, f"{qtype} 不能下标访问")
    return width


def eval_const(expr: ASTNode, scope: Optional[Scope] = None,
               options: Optional[CompilerOptions] = None):
    """对常量表达式求值，失败抛出 NotConstant"""
    return ConstEvaluator(options, scope).evaluate(expr)
