"""
Tests for modifier normalisation, broadcast expansion and gate inversion.
"""

import math

import pytest

from qasmcc import GateApplication
from qasmcc.semantic.expander import (
    BarrierApplication, MeasureApplication, ResetApplication, DelayApplication,
)

from .helpers import run, codes, error_codes, symbol, gate_calls, last_call


def labels(app) -> list:
    return [q.label for q in app.qubits]


def refs(result, name: str) -> tuple:
    return symbol(result, name).view.refs


class TestBroadcast:
    """Register operands expand to one application per index."""

    def test_single_register(self):
        result = run('qubit[4] q; h q;')
        expansion = last_call(result).expansion
        assert len(expansion) == 4
        assert [labels(a) for a in expansion] == [['q[0]'], ['q[1]'], ['q[2]'], ['q[3]']]
        assert all(a.gate == 'h' for a in expansion)

    def test_pairwise(self):
        result = run('qubit[2] a; qubit[2] b; cx a, b;')
        assert [labels(x) for x in last_call(result).expansion] == [['a[0]', 'b[0]'],
                                                                   ['a[1]', 'b[1]']]

    def test_single_qubit_reused(self):
        result = run('qubit c; qubit[3] tg; cx c, tg;')
        expansion = last_call(result).expansion
        assert [labels(x) for x in expansion] == [['c', 'tg[0]'], ['c', 'tg[1]'], ['c', 'tg[2]']]

    def test_size_mismatch(self):
        result = run('qubit[3] q; qubit[4] q2; CX q, q2;')
        diag, = result.diags.errors
        assert diag.code == 'E005'
        assert '3' in diag.message and '4' in diag.message
        assert last_call(result).expansion == []

    def test_slice_operand(self):
        result = run('qubit[4] q; x q[1:2];')
        assert [labels(a) for a in last_call(result).expansion] == [['q[1]'], ['q[2]']]

    def test_alias_operand(self):
        result = run('qubit[4] q; let r = q[0] ++ q[3]; h r;')
        assert error_codes(result) == []
        assert [labels(a) for a in last_call(result).expansion] == [['q[0]'], ['q[3]']]

    def test_hardware_qubit(self):
        result = run('x $3;')
        app, = last_call(result).expansion
        assert app.qubits[0].physical == 3

    def test_dynamic_index_not_expanded(self):
        result = run('qubit[4] q; input int i; x q[i];')
        assert last_call(result).expansion is None


class TestNormalisation:
    """Equivalent modifier chains share one normal form."""

    def test_ctrl_count_equivalence(self):
        result = run('qubit a; qubit b; qubit c; ctrl(2) @ x a, b, c; ctrl @ ctrl @ x a, b, c;')
        first, second = gate_calls(result)
        assert first.normalized == second.normalized
        assert first.normalized.controls == (True, True)
        assert first.expansion == second.expansion
        assert first.expansion[0].controls == (True, True)

    def test_negctrl_polarity(self):
        result = run('qubit a; qubit b; qubit c; negctrl @ ctrl @ x a, b, c;')
        assert last_call(result).normalized.controls == (False, True)

    def test_double_inverse_cancels(self):
        result = run('qubit q; inv @ inv @ rz(0.3) q; rz(0.3) q;')
        first, second = gate_calls(result)
        assert first.normalized.inverse is False
        assert first.expansion == second.expansion

    def test_negative_power_is_inverse(self):
        result = run('qubit q; pow(-2) @ x q;')
        ref = last_call(result).normalized
        assert ref.inverse is True and ref.power == 2

    def test_modifier_depth_limit(self):
        result = run('qubit q; inv @ inv @ inv @ x q;', max_modifier_depth=2)
        assert 'E001' in codes(result)


class TestPower:
    """pow(k) repeats, pow(0) is identity, fractional powers are opt-in."""

    def test_pow_zero(self):
        result = run('qubit q; pow(0) @ z q;')
        q, = refs(result, 'q')
        assert last_call(result).expansion == [GateApplication('id', (), (q,))]

    def test_pow_repeats(self):
        result = run('qubit q; pow(3) @ x q;')
        expansion = last_call(result).expansion
        assert len(expansion) == 3
        assert all(a == expansion[0] for a in expansion)

    def test_pow_repeat_limit(self):
        result = run('qubit q; pow(10) @ x q;', max_pow_repeat=4)
        assert 'E003' in codes(result)

    def test_fractional_rejected_by_default(self):
        result = run('qubit q; pow(0.5) @ rz(0.2) q;')
        diag, = result.diags.errors
        assert diag.code == 'E003' and diag.hint
        assert last_call(result).expansion == []

    def test_fractional_rotation(self):
        result = run('qubit q; pow(0.5) @ rz(0.2) q;', allow_fractional_pow=True)
        app, = last_call(result).expansion
        assert app.gate == 'rz'
        assert app.params[0] == pytest.approx(0.1)

    def test_fractional_phase_gate(self):
        result = run('qubit q; pow(0.5) @ z q;', allow_fractional_pow=True)
        app, = last_call(result).expansion
        assert app.gate == 'p'
        assert app.params[0] == pytest.approx(math.pi / 2)

    def test_fractional_unsupported_gate(self):
        result = run('qubit q; pow(0.5) @ h q;', allow_fractional_pow=True)
        assert error_codes(result) == ['E003']


class TestInverse:
    """inv @ G is rewritten to a concrete inverse where one is known."""

    def test_rotation(self):
        result = run('qubit q; inv @ rz(0.3) q;')
        app, = last_call(result).expansion
        assert app.gate == 'rz' and not app.inverse
        assert app.params[0] == pytest.approx(-0.3)

    def test_standard_fixed_gate(self):
        result = run('qubit q; inv @ s q; inv @ h q;')
        s_call, h_call = gate_calls(result)
        assert [a.gate for a in s_call.expansion] == ['sdg']
        assert [a.gate for a in h_call.expansion] == ['h']

    def test_negative_power_of_t(self):
        result = run('qubit q; pow(-1) @ t q;')
        assert [a.gate for a in last_call(result).expansion] == ['tdg']

    def test_builtin_u(self):
        result = run('qubit q; inv @ U(0.1, 0.2, 0.3) q;')
        app, = last_call(result).expansion
        assert app.params == pytest.approx((-0.1, -0.3, -0.2))

    def test_user_gate_inlined_in_reverse(self):
        result = run('gate g(θ) a { rz(θ) a; h a; } qubit q; inv @ g(0.5) q;')
        expansion = last_call(result).expansion
        assert [a.gate for a in expansion] == ['h', 'rz']
        assert expansion[1].params[0] == pytest.approx(-0.5)
        assert not any(a.inverse for a in expansion)

    def test_user_gate_operand_mapping(self):
        result = run('gate g a, b { h a; cx a, b; } qubit[2] q; inv @ g q[0], q[1];')
        expansion = last_call(result).expansion
        assert [(a.gate, labels(a)) for a in expansion] == [('cx', ['q[0]', 'q[1]']),
                                                             ('h', ['q[0]'])]

    def test_controlled_inverse_keeps_controls(self):
        result = run('gate g a { s a; } qubit c; qubit tq; ctrl @ inv @ g c, tq;')
        app, = last_call(result).expansion
        assert app.gate == 'sdg'
        assert labels(app) == ['c', 'tq'] and app.controls == (True,)

    def test_sx_keeps_inverse_flag(self):
        result = run('qubit q; inv @ sx q;')
        app, = last_call(result).expansion
        assert app.gate == 'sx' and app.inverse

    def test_controlled_u_inlined(self):
        result = run('qubit[2] q; inv @ cu(0.1, 0.2, 0.3, 0.4) q[0], q[1];')
        expansion = last_call(result).expansion
        assert [a.gate for a in expansion] == ['U', 'p']
        assert expansion[0].params == pytest.approx((-0.1, -0.3, -0.2))
        assert expansion[0].controls == (True,)
        assert expansion[1].params == pytest.approx((-0.4,))
        assert labels(expansion[1]) == ['q[0]']

    def test_symbolic_parameters_keep_inverse_flag(self):
        result = run('gate g(θ) a { rz(θ) a; } qubit q; input float th; inv @ g(th) q;')
        app, = last_call(result).expansion
        assert app.gate == 'g' and app.inverse


class TestOtherStatements:
    """Measurement, reset, barrier and delay expand per qubit."""

    def test_measure_assignment(self):
        result = run('qubit[2] q; bit[2] c; c = measure q;')
        stmt = result.ast.statements[-1]
        q0, q1 = refs(result, 'q')
        assert stmt.expansion == [MeasureApplication(q0, 'c[0]'), MeasureApplication(q1, 'c[1]')]

    def test_measure_arrow_indexed(self):
        result = run('qubit[2] q; bit[2] c; measure q[1] -> c[0];')
        app, = result.ast.statements[-1].expansion
        assert app.qubit.label == 'q[1]' and app.target == 'c[0]'

    def test_reset_register(self):
        result = run('qubit[2] q; reset q;')
        expansion = result.ast.statements[-1].expansion
        assert [type(a) for a in expansion] == [ResetApplication, ResetApplication]

    def test_bare_barrier_covers_all_qubits(self):
        result = run('qubit[2] q; qubit r; barrier;')
        barrier, = result.ast.statements[-1].expansion
        assert isinstance(barrier, BarrierApplication)
        assert [ref.label for ref in barrier.qubits] == ['q[0]', 'q[1]', 'r']

    def test_delay(self):
        result = run('qubit[2] q; delay[100ns] q[0];')
        app, = result.ast.statements[-1].expansion
        assert isinstance(app, DelayApplication)
        assert str(app.duration) == '100ns'
        assert [ref.label for ref in app.qubits] == ['q[0]']

    def test_gate_body_is_not_expanded(self):
        result = run('gate g a { x a; }')
        body_call = result.ast.statements[-1].body[0]
        assert body_call.normalized is not None
        assert body_call.expansion is None
