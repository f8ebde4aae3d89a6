"""
内置符号
========
  - 内置常量：pi / π、tau / τ、euler / ℇ
  - 可在编译期求值的内置函数（三角、指数 / 对数、取整、位操作、复数访问）
  - 内置门：U(θ, φ, λ)、gphase(γ)，以及 OpenQASM 2 遗留的 CX
  - OpenPulse 原语与波形生成函数的外部签名（port / frame / waveform 为不透明类型）

签名用手工维护的字典描述：
  {
    'name': ('返回类型', ['参数类型', ...]),
  }
参数类型除普通类型名外还有两个伪类型：
  number  接受 int / uint / float / angle / bit / bool
  any     接受任意经典值
返回类型 'same' 表示与第一个参数相同。
"""

from __future__ import annotations

import re
from typing import NamedTuple, Optional

import numpy as np

from .type import (
    QType, IntType, FloatType, AngleType, ComplexType, BitType, QubitType, ErrorType,
    BOOL, DURATION, STRETCH, VOID, ERROR_T, OPAQUE_TYPES, FunctionType, can_assign,
)


BUILTIN_CONSTANTS: dict[str, float] = {
    'pi': np.pi, 'π': np.pi,
    'tau': 2 * np.pi, 'τ': 2 * np.pi,
    'euler': np.e, 'ℇ': np.e,
}

# name → (参数个数, 量子比特个数)
BUILTIN_GATES: dict[str, tuple[int, int]] = {
    'U':      (3, 1),
    'gphase': (1, 0),
    'CX':     (0, 2),
}

BUILTIN_FUNCTIONS: dict[str, tuple] = {
    'arccos':  ('float', ['number']),
    'arcsin':  ('float', ['number']),
    'arctan':  ('float', ['number']),
    'cos':     ('float', ['number']),
    'sin':     ('float', ['number']),
    'tan':     ('float', ['number']),
    'exp':     ('float', ['number']),
    'log':     ('float', ['number']),
    'sqrt':    ('float', ['number']),
    'ceiling': ('float', ['number']),
    'floor':   ('float', ['number']),
    'mod':     ('same',  ['number', 'number']),
    'pow':     ('same',  ['number', 'number']),
    'popcount': ('uint', ['any']),
    'rotl':    ('same',  ['any', 'int']),
    'rotr':    ('same',  ['any', 'int']),
    'real':    ('float', ['complex']),
    'imag':    ('float', ['complex']),
    'sizeof':  ('uint',  ['any', 'int?']),
}

OPENPULSE_EXTERNS: dict[str, tuple] = {
    # 帧操作
    'play':            ('void',     ['frame', 'waveform']),
    'capture_v1':      ('complex',  ['frame', 'waveform']),
    'capture_v2':      ('bit',      ['frame', 'duration']),
    'capture_v3':      ('waveform', ['frame', 'duration']),
    'capture_v4':      ('bit',      ['frame', 'waveform']),
    'shift_phase':     ('void',     ['frame', 'angle']),
    'set_phase':       ('void',     ['frame', 'angle']),
    'get_phase':       ('angle',    ['frame']),
    'shift_frequency': ('void',     ['frame', 'float']),
    'set_frequency':   ('void',     ['frame', 'float']),
    'get_frequency':   ('float',    ['frame']),
    'newframe':        ('frame',    ['port', 'float', 'angle']),

    # 波形生成
    'constant':        ('waveform', ['complex', 'duration']),
    'gaussian':        ('waveform', ['complex', 'duration', 'duration']),
    'sech':            ('waveform', ['complex', 'duration', 'duration']),
    'gaussian_square': ('waveform', ['complex', 'duration', 'duration', 'duration']),
    'drag':            ('waveform', ['complex', 'duration', 'duration', 'float']),
    'sine':            ('waveform', ['complex', 'duration', 'float', 'angle']),
    'mix':             ('waveform', ['waveform', 'waveform']),
    'sum':             ('waveform', ['waveform', 'waveform']),
    'phase_shift':     ('waveform', ['waveform', 'angle']),
    'scale':           ('waveform', ['waveform', 'float']),
}


class Signature(NamedTuple):
    """内置函数签名；params 中的元素为 QType 或伪类型字符串（'number' / 'any'）"""
    returns:  object
    params:   tuple
    optional: int = 0      # 末尾可省略的参数个数


_TYPE_RE = re.compile(r'^(?P<name>\w+)(?:\[(?P<size>\d+)\])?(?P<opt>\?)?$')

_PSEUDO = ('number', 'any', 'same')


def parse_type_str(text: str, default_float: int = 64):
    """将类型字符串解析为 QType（只处理签名表中出现的简单写法）"""
    m = _TYPE_RE.match(text.strip())
    if m is None:
        return ERROR_T
    name = m.group('name')
    size = int(m.group('size')) if m.group('size') else None
    if name in _PSEUDO:
        return name
    if name == 'int':
        return IntType(size)
    if name == 'uint':
        return IntType(size, signed=False)
    if name == 'float':
        return FloatType(size or default_float)
    if name == 'angle':
        return AngleType(size)
    if name == 'complex':
        return ComplexType(FloatType(size or default_float))
    if name == 'bit':
        return BitType(size)
    if name == 'qubit':
        return QubitType(size)
    simple = {'bool': BOOL, 'duration': DURATION, 'stretch': STRETCH, 'void': VOID}
    if name in simple:
        return simple[name]
    return OPAQUE_TYPES.get(name, ERROR_T)


def _signature(returns: str, params: list) -> Signature:
    optional = sum(1 for p in params if p.endswith('?'))
    return Signature(parse_type_str(returns),
                     tuple(parse_type_str(p.rstrip('?')) for p in params),
                     optional)


class ExternLoader:
    """
    加载外部函数签名（OpenPulse 原语、调用方通过 QasmFrontend(externs=...) 提供的签名）。
    """
    def __init__(self):
        self._funcs: dict[str, FunctionType] = {}

    def load_from_dict(self, definitions: dict[str, tuple]):
        """
        definitions 格式：
          {'func_name': ('return_type_str', ['param_type_str', ...]), ...}
        """
        for name, (ret_str, param_strs) in definitions.items():
            self._funcs[name] = FunctionType([parse_type_str(p) for p in param_strs],
                                             parse_type_str(ret_str))

    def get_externs(self) -> dict[str, FunctionType]:
        return dict(self._funcs)


BUILTIN_SIGNATURES: dict[str, Signature] = {
    name: _signature(ret, params) for name, (ret, params) in BUILTIN_FUNCTIONS.items()
}


def accepts(param, arg: QType) -> bool:
    """内置函数形参（含伪类型）能否接受实参类型"""
    if isinstance(arg, ErrorType):
        return True
    if param == 'any':
        return not isinstance(arg, QubitType) and arg.family not in ('gate', 'function', 'void')
    if param == 'number':
        return isinstance(arg, (IntType, FloatType, AngleType, BitType, ComplexType)) or arg == BOOL
    if isinstance(param, ComplexType):
        return isinstance(arg, (IntType, FloatType, ComplexType))
    return can_assign(param, arg)


def signature_return(sig: Signature, args: list) -> QType:
    if sig.returns == 'same':
        return args[0] if args else ERROR_T
    return sig.returns


def lookup_builtin_function(name: str) -> Optional[Signature]:
    return BUILTIN_SIGNATURES.get(name)
