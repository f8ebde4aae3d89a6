"""
End-to-end tests for the compile entry point, the front-end object and the CLI.
"""

import math

import pytest

from qasmcc import (
    compile, QasmFrontend, CompilerOptions, MappingSourceProvider, GateApplication, Severity,
    SemanticError,
)
from qasmcc.__main__ import main
from qasmcc.semantic.checker import TypeChecker
from qasmcc.tree.transformer import QuantumDecl, GateDecl

from .helpers import HEADER, run, codes, error_codes, symbol, gate_calls, last_call


class TestCompileEntryPoint:
    """compile() always returns a result and never raises."""

    def test_clean_program(self):
        result = run('qubit[2] q; h q[0]; cx q[0], q[1];')
        assert result.success
        assert result.diagnostics == []
        assert result.ast is not None and result.symbol_table is not None

    def test_diagnostics_in_source_order(self):
        result = run('int c = d;\nint a = b;')
        assert [(d.code, d.line) for d in result.diagnostics] == [('E002', 3), ('E002', 4)]
        assert not result.success

    def test_diagnostic_text(self):
        result = run('int a = b;')
        text = str(result.diagnostics[0])
        assert text.startswith('main.qasm:3:')
        assert '[E002] error' in text

    def test_collects_errors_from_every_pass(self):
        result = run('qubit[1] q;\nx = ;\nint a = 1.5;\nh q[1];\nbreak;')
        assert set(codes(result)) == {'E001', 'E003', 'E004'}

    def test_fail_fast_stops_at_first_error(self):
        result = run('int c = d;\nint a = b;', fail_fast=True)
        assert codes(result) == ['E002']

    def test_fail_fast_ignores_warnings(self):
        result = run('OPENQASM 4.0;\nint d = e;', header=False, fail_fast=True)
        assert codes(result) == ['E001', 'E002']
        assert result.diagnostics[0].severity is Severity.WARNING

    def test_fatal_version_error_skips_semantics(self):
        result = compile('qubit q;\nOPENQASM 3.0;\nh q;', 'main.qasm')
        assert result.diags.has_fatal
        assert result.symbol_table is None
        assert result.ast is not None

    def test_lex_error_is_fatal(self):
        result = compile('qubit q;\nint a = b;\n/* unterminated', 'main.qasm')
        diag, = result.diagnostics
        assert diag.code == 'E001' and diag.severity is Severity.FATAL
        assert result.symbol_table is None

    def test_lex_error_in_fail_fast_mode(self):
        result = run('qubit q; ?', fail_fast=True)
        assert codes(result) == ['E001']
        assert result.symbol_table is None

    def test_internal_error_is_reported(self, monkeypatch):
        def boom(self, program):
            raise RuntimeError("boom")
        monkeypatch.setattr(TypeChecker, 'check', boom)
        result = run('qubit q;')
        diag, = result.diagnostics
        assert diag.code == 'E001' and diag.severity is Severity.FATAL
        assert 'RuntimeError' in diag.message

    def test_empty_source(self):
        result = compile('')
        assert result.success
        assert result.ast.statements == []

    def test_raise_if_errors(self):
        result = run('int a = b;')
        with pytest.raises(SemanticError) as excinfo:
            result.diags.raise_if_errors()
        assert excinfo.value.diagnostics[0].code == 'E002'

    def test_report(self):
        assert run('qubit q;').diags.report() == 'No diagnostics.'
        assert '1 error(s), 0 warning(s)' in run('int a = b;').diags.report()


class TestMetadataPassthrough:
    """Pragmas and annotations survive compilation without affecting checks."""

    def test_pragma_on_declaration(self):
        result = run('#pragma qasmcc keep\nqubit q;')
        decl = next(s for s in result.ast.statements if isinstance(s, QuantumDecl))
        assert [p.content for p in decl.pragmas] == ['qasmcc keep']

    def test_annotation_on_gate(self):
        result = run('@reversible\ngate g a { x a; }')
        assert error_codes(result) == []
        gate = next(s for s in result.ast.statements
                    if isinstance(s, GateDecl) and s.name == 'g')
        assert [a.keyword for a in gate.annotations] == ['reversible']


class TestPulseLevel:
    """OpenPulse primitives type-check against their extern signatures."""

    CAL = ('cal {{ port d0; frame f = newframe(d0, 5e9, 0.0); '
           'waveform w = constant(1.0, 100ns); {call} }}')

    def test_well_typed_calibration(self):
        result = run(self.CAL.format(call='play(f, w);'))
        assert error_codes(result) == []

    def test_bad_argument(self):
        result = run(self.CAL.format(call='play(f, 1.0);'))
        assert error_codes(result) == ['E003']

    def test_openpulse_can_be_disabled(self):
        result = run('cal { port d0; frame f = newframe(d0, 5e9, 0.0); }', load_openpulse=False)
        assert 'E002' in codes(result)

    def test_custom_externs(self):
        frontend = QasmFrontend(externs={'myfn': ('float', ['int'])})
        result = frontend.process_string('float x = myfn(1);')
        assert result.success


class TestFrontend:
    """QasmFrontend file handling and debugging helpers."""

    def test_process_file(self, tmp_path):
        path = tmp_path / 'bell.qasm'
        path.write_text(HEADER + 'qubit[2] q; bit[2] c; h q[0]; cx q[0], q[1]; c = measure q;',
                        encoding='utf-8')
        result = QasmFrontend().process_file(path)
        assert result.success

    def test_process_missing_file(self, tmp_path):
        result = QasmFrontend().process_file(tmp_path / 'nope.qasm')
        assert result.ast is None
        assert codes(result) == ['E001']

    def test_parse_only_does_not_expand_includes(self):
        program, diag = QasmFrontend().parse_only(HEADER + 'qubit q;')
        assert not diag.has_errors
        assert [type(s).__name__ for s in program.statements] == [
            'VersionDecl', 'Include', 'QuantumDecl']

    def test_tokenize_only(self):
        tokens = QasmFrontend().tokenize_only('qubit q;')
        assert [t.type for t in tokens] == ['QUBIT', 'IDENTIFIER', 'SEMICOLON']

    def test_options_from_mapping(self):
        opts = CompilerOptions.from_mapping({'fail_fast': 'yes', 'max_pow_repeat': '0x10'})
        assert opts.fail_fast is True
        assert opts.max_pow_repeat == 16
        with pytest.raises(ValueError):
            CompilerOptions.from_mapping({'colour': 'blue'})


class TestProperties:
    """Behaviour guaranteed for every conforming front-end."""

    def test_broadcast_in_index_order(self):
        for size in (1, 2, 5):
            result = run(f'qubit[{size}] q; x q;')
            expansion = last_call(result).expansion
            assert [a.qubits[0].label for a in expansion] == [f'q[{i}]' for i in range(size)]

    def test_ctrl_forms_match(self):
        result = run('qubit a; qubit b; qubit c; ctrl(2) @ x a, b, c; ctrl @ ctrl @ x a, b, c;')
        first, second = gate_calls(result)
        assert first.normalized == second.normalized
        assert first.expansion == second.expansion

    @pytest.mark.parametrize('call', ['h q', 'rz(0.3) q', 'U(0.1, 0.2, 0.3) q', 'gphase(0.5)'])
    def test_double_inverse_is_identity(self, call):
        result = run(f'qubit q; inv @ inv @ {call}; {call};')
        first, second = gate_calls(result)
        assert first.expansion == second.expansion
        assert not first.normalized.inverse

    def test_mismatched_broadcast(self):
        result = run('qubit[2] a; qubit[3] b; cx a, b;')
        assert codes(result) == ['E005']
        assert last_call(result).expansion == []

    def test_block_symbol_unresolved_after_block(self):
        result = run('if (true) { int inner = 1; }\ninner = 2;')
        assert codes(result) == ['E002']

    def test_register_size_message(self):
        result = run('qubit[3] q; qubit[4] q2; CX q, q2;')
        diag, = result.diagnostics
        assert diag.code == 'E005'
        assert '3' in diag.message and '4' in diag.message

    def test_bit_concatenation(self):
        result = run('bit[4] low = "0011"; bit[4] high = "1100"; '
                     'bit[8] combined = high ++ low;')
        sym = symbol(result, 'combined')
        assert repr(sym.qtype) == 'bit[8]'
        assert sym.value == '11000011'

    def test_angle_cast_reduced(self):
        result = run('angle[20] a = angle[20](7.0);')
        assert error_codes(result) == []
        assert symbol(result, 'a').value == pytest.approx(math.fmod(7.0, 2 * math.pi))

    def test_include_cycle_terminates(self):
        provider = MappingSourceProvider({'A.inc': 'include "B.inc";',
                                          'B.inc': 'include "A.inc";'})
        result = compile('include "A.inc";', 'main.qasm', provider)
        assert codes(result) == ['E009']

    def test_pow_zero_is_identity(self):
        result = run('gate Z a { U(0.1, 0.2, 0.3) a; } qubit q; pow(0) @ Z q;')
        q, = symbol(result, 'q').view.refs
        assert last_call(result).expansion == [GateApplication('id', (), (q,))]


class TestCommandLine:
    """python -m qasmcc"""

    def test_success(self, tmp_path, capsys):
        path = tmp_path / 'ok.qasm'
        path.write_text(HEADER + 'qubit q; h q;', encoding='utf-8')
        assert main([str(path)]) == 0

    def test_errors_reported(self, tmp_path, capsys):
        path = tmp_path / 'bad.qasm'
        path.write_text('int a = b;', encoding='utf-8')
        assert main([str(path)]) == 1
        assert '[E002]' in capsys.readouterr().err

    def test_dump_symbols(self, tmp_path, capsys):
        path = tmp_path / 'syms.qasm'
        path.write_text('qubit[2] q;', encoding='utf-8')
        assert main([str(path), '--dump-symbols']) == 0
        assert 'qubits: q[0], q[1]' in capsys.readouterr().out

    def test_dump_tokens(self, tmp_path, capsys):
        path = tmp_path / 'toks.qasm'
        path.write_text('qubit q;', encoding='utf-8')
        assert main([str(path), '--dump-tokens']) == 0
        out = capsys.readouterr().out
        assert '1:1\tQUBIT\tqubit' in out

    def test_include_dir(self, tmp_path):
        libdir = tmp_path / 'lib'
        libdir.mkdir()
        (libdir / 'mine.inc').write_text('gate g a { }', encoding='utf-8')
        path = tmp_path / 'main.qasm'
        path.write_text('include "mine.inc"; qubit q; g q;', encoding='utf-8')
        assert main([str(path), '-I', str(libdir)]) == 0

    def test_option_override(self, tmp_path):
        path = tmp_path / 'frac.qasm'
        path.write_text(HEADER + 'qubit q; pow(0.5) @ rz(0.2) q;', encoding='utf-8')
        assert main([str(path)]) == 1
        assert main([str(path), '--option', 'allow_fractional_pow=true']) == 0

    def test_unknown_option(self, tmp_path, capsys):
        path = tmp_path / 'x.qasm'
        path.write_text('qubit q;', encoding='utf-8')
        assert main([str(path), '--option', 'colour=blue']) == 2
