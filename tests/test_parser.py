"""
Tests for the Earley parser, the AST transformer and statement-level error recovery.
"""

from qasmcc.error import Severity
from qasmcc.tree.transformer import (
    VersionDecl, Include, QuantumDecl, ClassicalDecl, GateDecl, GateCall, DefDecl,
    ForStmt, IfStmt, SwitchStmt, MeasureStmt, AssignStmt, BinaryOp, RangeExpr, SetExpr,
    IndexExpr, IntLiteral, Identifier, MeasureExpr, Pragma, BarrierStmt, BoxStmt,
)

from .helpers import parse


class TestDeclarations:
    """Top-level declarations produce the expected node kinds."""

    def test_version_and_include(self):
        program, diag = parse('OPENQASM 3.0;\ninclude "stdgates.inc";')
        assert not diag.has_errors
        version, include = program.statements
        assert isinstance(version, VersionDecl) and version.version == '3.0'
        assert isinstance(include, Include) and include.path == 'stdgates.inc'
        assert program.version == '3.0'

    def test_quantum_and_classical(self):
        program, diag = parse('qubit[3] q; qreg r[2]; bit[3] c; creg d[2]; const int n = 4;')
        assert not diag.has_errors
        q, r, c, d, n = program.statements
        assert isinstance(q, QuantumDecl) and q.name == 'q' and not q.old_style
        assert isinstance(r, QuantumDecl) and r.old_style
        assert isinstance(c, ClassicalDecl) and c.type_spec.kind == 'bit'
        assert isinstance(d, ClassicalDecl) and d.type_spec.kind == 'bit'
        assert n.is_const and isinstance(n.init, IntLiteral)

    def test_io_declarations(self):
        program, _ = parse('input float theta; output bit result;')
        assert [s.io for s in program.statements] == ['input', 'output']

    def test_gate_definition(self):
        program, diag = parse('gate rot(a, b) q, r { U(a, b, 0) q; }')
        assert not diag.has_errors
        gate, = program.statements
        assert isinstance(gate, GateDecl)
        assert gate.params == ['a', 'b']
        assert gate.qubits == ['q', 'r']
        assert isinstance(gate.body[0], GateCall)

    def test_def_with_return_type(self):
        program, diag = parse('def f(int[32] x, qubit q) -> bit { return measure q; }')
        assert not diag.has_errors
        func, = program.statements
        assert isinstance(func, DefDecl)
        assert [a.name for a in func.arguments] == ['x', 'q']
        assert func.return_type.kind == 'bit'


class TestQuantumStatements:
    """Gate calls, modifiers and measurement forms."""

    def test_modifier_chain(self):
        program, _ = parse('inv @ pow(2) @ ctrl(2) @ negctrl @ rz(0.5) a, b, c, d;')
        call, = program.statements
        assert [m.kind for m in call.modifiers] == ['inv', 'pow', 'ctrl', 'negctrl']
        assert call.modifiers[3].argument is None
        assert call.name == 'rz'
        assert len(call.arguments) == 1
        assert [q.name for q in call.qubits] == ['a', 'b', 'c', 'd']

    def test_gphase_without_operands(self):
        program, diag = parse('gphase(pi);')
        assert not diag.has_errors
        call, = program.statements
        assert call.name == 'gphase' and call.qubits == []

    def test_indexed_operands(self):
        program, _ = parse('cx q[0], q[1:3];')
        call, = program.statements
        first, second = call.qubits
        assert isinstance(first, IndexExpr) and isinstance(first.indices[0], IntLiteral)
        assert isinstance(second.indices[0], RangeExpr)

    def test_measure_arrow(self):
        program, _ = parse('measure q -> c;')
        stmt, = program.statements
        assert isinstance(stmt, MeasureStmt)
        assert isinstance(stmt.target, Identifier) and stmt.target.name == 'c'

    def test_measure_assignment(self):
        program, _ = parse('c[0] = measure q[0];')
        stmt, = program.statements
        assert isinstance(stmt, AssignStmt)
        assert isinstance(stmt.value, MeasureExpr)

    def test_barrier_and_box(self):
        program, _ = parse('barrier; box [100ns] { x q; }')
        barrier, box = program.statements
        assert isinstance(barrier, BarrierStmt) and barrier.qubits == []
        assert isinstance(box, BoxStmt) and len(box.body) == 1


class TestControlFlow:
    """Loops, branches and switch."""

    def test_for_range_with_step(self):
        program, _ = parse('for int i in [0:2:10] { x q; }')
        loop, = program.statements
        assert isinstance(loop, ForStmt) and loop.var_name == 'i'
        rng = loop.iterable
        assert isinstance(rng, RangeExpr)
        assert (rng.start.value, rng.step.value, rng.stop.value) == (0, 2, 10)

    def test_for_set(self):
        program, _ = parse('for int i in {1, 5, 7} x q;')
        loop, = program.statements
        assert isinstance(loop.iterable, SetExpr)
        assert len(loop.iterable.values) == 3
        assert len(loop.body) == 1

    def test_if_else(self):
        program, _ = parse('if (c == 1) { x q; } else { y q; z q; }')
        stmt, = program.statements
        assert isinstance(stmt, IfStmt)
        assert isinstance(stmt.condition, BinaryOp) and stmt.condition.op == '=='
        assert len(stmt.then_body) == 1 and len(stmt.else_body) == 2

    def test_switch_brace_form(self):
        program, diag = parse('switch (i) { case 0, 1 { x q; } default { y q; } }')
        assert not diag.has_errors
        stmt, = program.statements
        assert isinstance(stmt, SwitchStmt)
        assert len(stmt.cases[0].labels) == 2
        assert stmt.default is stmt.cases[1]
        assert not stmt.cases[0].colon_form

    def test_switch_colon_form(self):
        program, diag = parse('switch (i) { case 0: x q; break; default: y q; break; }')
        assert not diag.has_errors
        stmt, = program.statements
        assert stmt.cases[0].colon_form
        assert len(stmt.cases[0].body) == 2


class TestOperatorPrecedence:
    """Binary operators bind according to the precedence table."""

    def test_multiplicative_binds_tighter(self):
        program, _ = parse('x = 1 + 2 * 3;')
        value = program.statements[0].value
        assert value.op == '+' and value.right.op == '*'

    def test_power_is_right_associative(self):
        program, _ = parse('x = 2 ** 3 ** 2;')
        value = program.statements[0].value
        assert value.op == '**' and value.right.op == '**'

    def test_logical_below_comparison(self):
        program, _ = parse('x = a < b && c == d;')
        value = program.statements[0].value
        assert value.op == '&&'
        assert value.left.op == '<' and value.right.op == '=='


class TestMetadata:
    """Pragmas and annotations pass through unchanged."""

    def test_pragma_attaches_to_next_statement(self):
        program, _ = parse('#pragma noopt\nx q;')
        call, = program.statements
        assert [p.text for p in call.pragmas] == ['#pragma noopt']

    def test_trailing_pragma_kept(self):
        program, _ = parse('x q;\npragma final\n')
        assert isinstance(program.statements[-1], Pragma)

    def test_annotations(self):
        program, _ = parse('@reversible\n@bind $0\nx q;')
        call, = program.statements
        assert [a.keyword for a in call.annotations] == ['reversible', 'bind']
        assert call.annotations[1].content == '$0'


class TestErrorRecovery:
    """Malformed statements are skipped and every error is reported."""

    def test_multiple_syntax_errors(self):
        program, diag = parse('qubit q;\nx = ;\nh q;\nint = 3;\nbit c;')
        errors = [d for d in diag if d.code == 'E001']
        assert len(errors) == 2
        assert [e.line for e in sorted(errors, key=lambda d: d.line)] == [2, 4]
        kinds = [type(s).__name__ for s in program.statements]
        assert kinds == ['QuantumDecl', 'GateCall', 'ClassicalDecl']

    def test_missing_closing_brace(self):
        program, diag = parse('gate g q { x q;')
        assert any(d.code == 'E001' for d in diag)
        assert isinstance(program.statements[0], GateDecl)

    def test_truncated_statement(self):
        program, diag = parse('qubit q;\nh')
        assert [d.code for d in diag] == ['E001']
        assert len(program.statements) == 1

    def test_version_not_first_is_fatal(self):
        _, diag = parse('qubit q;\nOPENQASM 3;')
        assert diag.has_fatal
        assert diag.errors[0].severity is Severity.FATAL

    def test_duplicate_version_is_fatal(self):
        _, diag = parse('OPENQASM 3;\nOPENQASM 3;')
        assert diag.has_fatal
