"""
Tests for type checking, cast legality, bounds checks and return-path analysis.
"""

import math

import pytest

from qasmcc.error import Severity

from .helpers import run, codes, error_codes, symbol, last_call


class TestImplicitConversions:
    """Assignments and initialisers follow the implicit conversion rules."""

    def test_float_to_int_needs_cast(self):
        result = run('int a = 1.5;')
        diag, = result.diags.errors
        assert diag.code == 'E003'
        assert 'int[32](' in diag.hint

    def test_explicit_float_to_int(self):
        result = run('int a = int(1.5);')
        assert error_codes(result) == []
        assert symbol(result, 'a').value == 1

    def test_angle_to_float_is_explicit_only(self):
        result = run('angle[8] a = pi; float f = a;')
        assert error_codes(result) == ['E003']

    def test_int_widens_to_float(self):
        result = run('int[8] i = 3; float f = i;')
        assert error_codes(result) == []

    def test_real_promotes_to_complex(self):
        result = run('complex zc = 2.0;')
        assert error_codes(result) == []

    def test_array_literal_length(self):
        result = run('array[int, 3] a = {1, 2};')
        assert error_codes(result) == ['E003']


class TestCasts:
    """Explicit casts are checked against the conversion matrix."""

    def test_int_to_angle_forbidden(self):
        result = run('angle a = angle(1);')
        assert 'E008' in codes(result)

    def test_float_to_angle(self):
        result = run('angle a = angle(7.0);')
        assert error_codes(result) == []
        assert symbol(result, 'a').value == pytest.approx(math.fmod(7.0, 2 * math.pi))

    def test_bit_int_width_mismatch(self):
        result = run('bit[4] b = "1010"; int[8] i = int[8](b);')
        assert 'E008' in codes(result)

    def test_cast_width_not_constant(self):
        result = run('input int n; int xi = int[n](3);')
        assert 'E008' in codes(result)


class TestMutability:
    """Constants, loop variables and qubits cannot be assigned."""

    def test_assign_to_const(self):
        result = run('const int c = 1; c = 2;')
        assert error_codes(result) == ['E003']

    def test_assign_to_loop_variable(self):
        result = run('for int i in [0:2] { i = 1; }')
        assert error_codes(result) == ['E003']

    def test_compound_assignment(self):
        result = run('int a = 1; a += 2;')
        assert error_codes(result) == []


class TestIndexing:
    """Constant indices are bounds-checked; negative indices count from the end."""

    def test_index_out_of_range(self):
        result = run('qubit[2] q; h q[2];')
        assert error_codes(result) == ['E004']

    def test_negative_index(self):
        assert error_codes(run('qubit[2] q; h q[-1];')) == []
        assert error_codes(run('qubit[2] q; h q[-3];')) == ['E004']

    def test_slice_out_of_range(self):
        result = run('bit[4] c; bit[2] d = c[3:4];')
        assert 'E004' in codes(result)

    def test_integer_bit_access(self):
        result = run('int[8] i = 5; bit b = i[0];')
        assert error_codes(result) == []

    def test_angle_bit_access(self):
        # 1.0 / 2π · 2^8 ≈ 40.74 → 41 = 0b00101001
        result = run('angle[8] an = 1.0; bit b0 = an[0]; bit b1 = an[1]; bit[4] lo = an[0:3];')
        assert error_codes(result) == []
        assert symbol(result, 'b0').value == '1'
        assert symbol(result, 'b1').value == '0'
        assert symbol(result, 'lo').value == '1001'


class TestReturns:
    """Non-void subroutines must return on every path."""

    def test_missing_return(self):
        result = run('def f(int[32] a) -> int[32] { if (a > 0) { return 1; } }')
        assert error_codes(result) == ['E007']

    def test_both_branches_return(self):
        result = run('def f(int[32] a) -> int[32] { if (a > 0) { return 1; } else { return 0; } }')
        assert error_codes(result) == []

    def test_void_with_value(self):
        result = run('def f() { return 1; }')
        assert error_codes(result) == ['E003']


class TestMeasurement:
    """Measurement targets must match the measured register."""

    def test_size_mismatch(self):
        result = run('qubit[3] q; bit[2] c; c = measure q;')
        assert error_codes(result) == ['E005']

    def test_arrow_size_mismatch(self):
        result = run('qubit[3] q; bit[2] c; measure q -> c;')
        assert error_codes(result) == ['E005']

    def test_target_must_be_bit(self):
        result = run('qubit q; int i; i = measure q;')
        assert error_codes(result) == ['E003']


class TestGateCalls:
    """Parameter counts, operand counts and modifier arguments."""

    def test_missing_parameter(self):
        result = run('qubit q; rz q;')
        assert error_codes(result) == ['E003']

    def test_missing_operand(self):
        result = run('qubit q; cx q;')
        assert error_codes(result) == ['E003']

    def test_ctrl_adds_operand(self):
        assert error_codes(run('qubit[2] q; ctrl @ x q[0], q[1];')) == []
        assert error_codes(run('qubit[2] q; ctrl @ x q[0];')) == ['E003']

    def test_pow_exponent_must_be_constant(self):
        result = run('qubit q; int k; pow(k) @ x q;')
        assert 'E003' in codes(result)

    def test_ctrl_count_from_const(self):
        result = run('qubit[2] q; const int n = 1; ctrl(n) @ h q[0], q[1];')
        assert error_codes(result) == []
        assert last_call(result).normalized.controls == (True,)

    def test_ctrl_count_from_variable(self):
        result = run('qubit[2] q; int n = 1; ctrl(n) @ h q[0], q[1];')
        assert 'E003' in codes(result)
        assert last_call(result).normalized is None

    def test_pow_exponent_from_variable(self):
        result = run('qubit q; int k = 2; pow(k) @ x q;')
        assert error_codes(result) == ['E003']
        assert last_call(result).normalized is None

    def test_classical_operand_rejected(self):
        result = run('int i; h i;')
        assert 'E003' in codes(result)


class TestExpressions:
    """Operator typing, conditions and known-value folding."""

    def test_condition_must_be_bool_convertible(self):
        result = run('qubit q; if (q) { x q; }')
        assert 'E003' in codes(result)

    def test_signedness_mixing_warns(self):
        result = run('int[8] a = 1; uint[8] b = 2; int[8] c = a + b;')
        assert error_codes(result) == []
        warning, = result.diags.warnings
        assert warning.code == 'E003' and warning.severity is Severity.WARNING

    def test_bit_concatenation(self):
        result = run('bit[4] a = "1100"; bit[4] b = "0011"; bit[8] c = a ++ b;')
        assert error_codes(result) == []
        sym = symbol(result, 'c')
        assert repr(sym.qtype) == 'bit[8]'
        assert sym.value == '11000011'

    def test_known_values_propagate(self):
        result = run('int a = 3; int b = a * 2;')
        assert symbol(result, 'b').value == 6

    def test_reassigned_values_do_not_propagate(self):
        result = run('int a = 3; a = 4; int b = a * 2;')
        assert symbol(result, 'b').value is None

    def test_duplicate_case_label(self):
        result = run('int i = 0; switch (i) { case 0 { } case 0 { } }')
        assert error_codes(result) == ['E003']

    def test_case_label_from_variable(self):
        result = run('int v = 1; switch (v) { case v { } }')
        assert error_codes(result) == ['E003']

    def test_case_label_from_const(self):
        result = run('const int v = 1; int w = 1; switch (w) { case v { } }')
        assert error_codes(result) == []

    def test_builtin_call_arity(self):
        result = run('float xf = sin(1.0, 2.0);')
        assert error_codes(result) == ['E003']


class TestSubroutineCalls:
    """Arguments are checked against def signatures."""

    def test_qubit_argument_size(self):
        result = run('def f(qubit[2] a) { } qubit[3] q; f(q);')
        assert error_codes(result) == ['E005']

    def test_classical_argument(self):
        result = run('def f(int[32] a) { } f(1.5);')
        assert error_codes(result) == ['E003']


class TestAliases:
    """let binds views over existing registers."""

    def test_slice_alias(self):
        result = run('qubit[4] q; let r = q[1:2];')
        sym = symbol(result, 'r')
        assert repr(sym.qtype) == 'qubit[2]'
        assert [ref.label for ref in sym.view.refs] == ['q[1]', 'q[2]']

    def test_alias_of_classical_scalar(self):
        result = run('int a = 1; let b = a;')
        assert error_codes(result) == ['E003']
