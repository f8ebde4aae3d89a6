"""
Tests for compile-time constant evaluation and value conversion helpers.
"""

import math

import pytest

from qasmcc import CompilerOptions
from qasmcc.semantic.consteval import (
    ConstEvaluator, Duration, InvalidSize, NotConstant, CastError,
    wrap_int, reduce_angle, int_to_bits, bits_to_int, coerce, eval_const,
)
from qasmcc.semantic.type import (
    AngleType, BitType, ComplexType, FloatType, IntType, BOOL,
)

from .helpers import parse


def expr(text: str):
    """解析 `x = <text>;` 并取出右侧表达式"""
    program, diag = parse(f'x = {text};')
    assert not diag.has_errors, diag.report()
    return program.statements[0].value


def type_spec(decl: str):
    program, _ = parse(decl)
    return program.statements[0].type_spec


class TestValueHelpers:
    """Fixed-width wrapping, angle reduction and bit conversions."""

    def test_wrap_signed(self):
        assert wrap_int(300, 8, True) == 44
        assert wrap_int(200, 8, True) == -56

    def test_wrap_unsigned(self):
        assert wrap_int(-1, 8, False) == 255

    def test_wrap_unbounded(self):
        assert wrap_int(1 << 80, None, True) == 1 << 80

    def test_reduce_angle(self):
        assert reduce_angle(-math.pi / 2) == pytest.approx(3 * math.pi / 2)
        assert reduce_angle(2 * math.pi) == pytest.approx(0.0)

    def test_bits(self):
        assert int_to_bits(5, 4) == '0101'
        assert int_to_bits(-1, 4) == '1111'
        assert bits_to_int('1111') == 15
        assert bits_to_int('1111', signed=True) == -1

    def test_coerce_float_to_int_truncates(self):
        assert coerce(-2.7, FloatType(64), IntType(32)) == -2

    def test_coerce_bit_width_mismatch(self):
        with pytest.raises(CastError):
            coerce('0101', BitType(4), IntType(8))

    def test_coerce_int_to_angle_forbidden(self):
        with pytest.raises(CastError):
            coerce(1, IntType(32), AngleType(64))

    def test_coerce_bool(self):
        assert coerce('0100', BitType(4), BOOL) is True
        assert coerce(0.0, FloatType(64), BOOL) is False


class TestArithmetic:
    """Integer, float and angle arithmetic."""

    def test_integer_division_truncates_toward_zero(self):
        assert eval_const(expr('7 / 2')) == 3
        assert eval_const(expr('-7 / 2')) == -3

    def test_remainder_sign_follows_dividend(self):
        assert eval_const(expr('-7 % 2')) == -1

    def test_power(self):
        assert eval_const(expr('2 ** 10')) == 1024

    def test_precedence(self):
        assert eval_const(expr('1 + 2 * 3')) == 7

    def test_float_promotion(self):
        assert eval_const(expr('1.5 * 2')) == pytest.approx(3.0)

    def test_builtin_constant(self):
        assert eval_const(expr('pi / 2')) == pytest.approx(math.pi / 2)
        assert eval_const(expr('τ')) == pytest.approx(2 * math.pi)

    def test_division_by_zero(self):
        with pytest.raises(NotConstant):
            eval_const(expr('1 / 0'))

    def test_comparison_and_logic(self):
        assert eval_const(expr('3 > 2 && 1 == 1')) is True
        assert eval_const(expr('!(3 > 2) || false')) is False


class TestBitstrings:
    """Bit-level operators work on '0'/'1' strings."""

    def test_bitwise_and(self):
        assert eval_const(expr('"0101" & "0011"')) == '0001'

    def test_invert(self):
        assert eval_const(expr('~"0101"')) == '1010'

    def test_shift_left(self):
        assert eval_const(expr('"0011" << 1')) == '0110'

    def test_concatenation(self):
        value, qtype = ConstEvaluator().evaluate_typed(expr('"1100" ++ "0011"'))
        assert value == '11000011'
        assert qtype == BitType(8)


class TestCasts:
    """Explicit casts follow the conversion matrix."""

    def test_int_resize_wraps(self):
        assert eval_const(expr('int[8](300)')) == 44
        assert eval_const(expr('uint[8](-1)')) == 255

    def test_int_to_bit(self):
        assert eval_const(expr('bit[4](5)')) == '0101'

    def test_float_to_angle_reduces(self):
        assert eval_const(expr('angle(7.0)')) == pytest.approx(math.fmod(7.0, 2 * math.pi))

    def test_int_to_angle_is_not_constant(self):
        with pytest.raises(NotConstant):
            eval_const(expr('angle(1)'))


class TestBuiltinFunctions:
    """numpy-backed math and bit helpers."""

    def test_trig(self):
        assert eval_const(expr('sin(0.0)')) == pytest.approx(0.0)
        assert eval_const(expr('cos(pi)')) == pytest.approx(-1.0)

    def test_integer_mod_stays_integer(self):
        assert eval_const(expr('mod(7, 3)')) == 1

    def test_popcount(self):
        assert eval_const(expr('popcount("1011")')) == 3

    def test_rotl(self):
        assert eval_const(expr('rotl("1000", 1)')) == '0001'

    def test_sqrt_of_negative_is_nan(self):
        assert math.isnan(eval_const(expr('sqrt(-1.0)')))


class TestDurations:
    """Timing literals evaluate to Duration values."""

    def test_scale(self):
        assert eval_const(expr('100ns * 2')) == Duration(200.0, 'ns')

    def test_mixed_units(self):
        value = eval_const(expr('1us + 500ns'))
        assert value.unit == 'ns'
        assert value.value == pytest.approx(1500.0)

    def test_dt_does_not_mix_with_si(self):
        with pytest.raises(NotConstant):
            eval_const(expr('10dt + 5ns'))


class TestSizes:
    """Widths and dimensions must be positive integer constants."""

    def test_positive(self):
        assert ConstEvaluator().evaluate_size(expr('2 * 4')) == 8

    def test_zero_rejected(self):
        with pytest.raises(InvalidSize):
            ConstEvaluator().evaluate_size(expr('0'))

    def test_limit(self):
        with pytest.raises(InvalidSize):
            ConstEvaluator().evaluate_size(expr('256'), limit=128)

    def test_float_rejected(self):
        with pytest.raises(InvalidSize):
            ConstEvaluator().evaluate_size(expr('2.5'))

    def test_unbound_identifier(self):
        with pytest.raises(NotConstant):
            eval_const(expr('n + 1'))


class TestTypeSpecs:
    """Type specifications resolve with configured default widths."""

    def test_explicit_width(self):
        assert ConstEvaluator().resolve_type_spec(type_spec('int[16] a;')) == IntType(16)

    def test_default_widths(self):
        opts = CompilerOptions(default_float_width=32)
        evaluator = ConstEvaluator(opts)
        assert evaluator.resolve_type_spec(type_spec('float f;')) == FloatType(32)
        assert evaluator.resolve_type_spec(type_spec('uint u;')) == IntType(32, signed=False)

    def test_complex_component(self):
        spec = type_spec('complex[float[32]] z;')
        assert ConstEvaluator().resolve_type_spec(spec) == ComplexType(FloatType(32))

    def test_width_above_maximum(self):
        with pytest.raises(InvalidSize):
            ConstEvaluator().resolve_type_spec(type_spec('int[256] big;'))
