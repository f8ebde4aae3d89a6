"""
Tests for include expansion and the source providers.
"""

import pytest

from qasmcc import (
    compile, QasmFrontend, CompilerOptions, FileSourceProvider, MappingSourceProvider, Severity,
    STDGATES,
)
from qasmcc.includes import IncludeNotFound
from qasmcc.tree.transformer import Include, GateDecl, VersionDecl

from .helpers import codes, error_codes


def gate_names(result) -> list:
    return [s.name for s in result.ast.statements if isinstance(s, GateDecl)]


class TestMappingProvider:
    """Includes resolved from an in-memory mapping."""

    def test_statements_spliced_after_include(self, provider):
        provider.mapping['lib.inc'] = 'OPENQASM 3.0;\ngate mygate a { U(0, 0, 0) a; }'
        result = compile('OPENQASM 3.0;\ninclude "lib.inc";\nqubit q;\nmygate q;',
                         'main.qasm', provider)
        assert error_codes(result) == []
        kinds = [type(s).__name__ for s in result.ast.statements]
        assert kinds == ['VersionDecl', 'Include', 'GateDecl', 'QuantumDecl', 'GateCall']

    def test_included_version_dropped(self, provider):
        provider.mapping['lib.inc'] = 'OPENQASM 3.0;\n'
        result = compile('OPENQASM 3.0;\ninclude "lib.inc";', 'main.qasm', provider)
        versions = [s for s in result.ast.statements if isinstance(s, VersionDecl)]
        assert len(versions) == 1

    def test_resolved_source_recorded(self, provider):
        provider.mapping['lib.inc'] = 'gate g a { }'
        result = compile('include "lib.inc";', 'main.qasm', provider)
        include = result.ast.statements[0]
        assert isinstance(include, Include)
        assert include.resolved_source == 'lib.inc'
        assert result.ast.statements[1].source == 'lib.inc'

    def test_missing_include(self, provider):
        result = compile('include "nope.inc";', 'main.qasm', provider)
        assert error_codes(result) == ['E001']

    def test_provider_raises_for_unknown_path(self, provider):
        with pytest.raises(IncludeNotFound):
            provider.resolve_include('main.qasm', 'nope.inc')


class TestCycles:
    """Circular includes are reported instead of looping."""

    def test_two_file_cycle(self):
        provider = MappingSourceProvider({'a.inc': 'include "b.inc";',
                                          'b.inc': 'include "a.inc";'})
        result = compile('include "a.inc";', 'main.qasm', provider)
        diag, = result.diags.errors
        assert diag.code == 'E009'
        assert 'a.inc → b.inc → a.inc' in diag.message

    def test_self_include(self):
        provider = MappingSourceProvider({'main.qasm': 'include "main.qasm";'})
        result = compile('include "main.qasm";', 'main.qasm', provider)
        assert codes(result) == ['E009']

    def test_depth_limit(self):
        mapping = {f'{i}.inc': f'include "{i + 1}.inc";' for i in range(10)}
        mapping['10.inc'] = ''
        provider = MappingSourceProvider(mapping)
        result = compile('include "0.inc";', 'main.qasm', provider,
                         CompilerOptions(max_include_depth=4))
        assert codes(result) == ['E009']


class TestDiagnosticsInIncludedFiles:
    """Errors inside an included file point back at the include site."""

    def test_include_site_attached(self, provider):
        provider.mapping['bad.inc'] = 'int x = ;'
        result = compile('OPENQASM 3.0;\ninclude "bad.inc";', 'main.qasm', provider)
        diag, = result.diags.errors
        assert diag.code == 'E001'
        assert diag.span.source == 'bad.inc'
        assert diag.spans[-1].source == 'main.qasm'
        assert diag.spans[-1].line == 2

    def test_lex_error_in_included_file_is_fatal(self, provider):
        provider.mapping['bad.inc'] = 'int a = 1; ?'
        result = compile('OPENQASM 3.0;\ninclude "bad.inc";\nint c = d;', 'main.qasm', provider)
        diag, = result.diagnostics
        assert diag.code == 'E001' and diag.severity is Severity.FATAL
        assert result.symbol_table is None


class TestStandardGates:
    """stdgates.inc is always available."""

    def test_builtin_library_without_provider(self):
        result = compile('include "stdgates.inc";')
        assert error_codes(result) == []
        assert {'h', 'cx', 'rz', 'swap', 'ccx'} <= set(gate_names(result))

    def test_builtin_library_when_provider_lacks_it(self, provider):
        result = compile('include "stdgates.inc";', 'main.qasm', provider)
        assert error_codes(result) == []
        assert 'cx' in gate_names(result)

    def test_provider_overrides_library(self, provider):
        provider.mapping['stdgates.inc'] = 'gate only a { }'
        result = compile('include "stdgates.inc";', 'main.qasm', provider)
        assert gate_names(result) == ['only']

    def test_library_text_parses_cleanly(self):
        result = compile(STDGATES, 'stdgates.inc')
        assert error_codes(result) == []


class TestFileProvider:
    """Files are searched next to the including file, then on the search path."""

    def test_relative_to_including_file(self, tmp_path):
        (tmp_path / 'lib.inc').write_text('gate g a { }', encoding='utf-8')
        main = tmp_path / 'main.qasm'
        main.write_text('include "lib.inc";\nqubit q;\ng q;', encoding='utf-8')
        provider = FileSourceProvider()
        result = compile(main.read_text(encoding='utf-8'), str(main), provider)
        assert error_codes(result) == []

    def test_search_path(self, tmp_path):
        libdir = tmp_path / 'lib'
        libdir.mkdir()
        (libdir / 'extra.inc').write_text('const int n = 3;', encoding='utf-8')
        provider = FileSourceProvider([libdir])
        assert provider.resolve_include(str(tmp_path / 'main.qasm'), 'extra.inc') == \
            'const int n = 3;'
        assert provider.source_id('', 'extra.inc') == str((libdir / 'extra.inc').resolve())

    def test_cycle_back_to_relative_root(self, tmp_path, monkeypatch):
        (tmp_path / 'a.qasm').write_text('OPENQASM 3.0;\ninclude "b.inc";\nqubit q;',
                                         encoding='utf-8')
        (tmp_path / 'b.inc').write_text('include "a.qasm";', encoding='utf-8')
        monkeypatch.chdir(tmp_path)
        result = QasmFrontend().process_file('a.qasm')
        assert codes(result) == ['E009']

    def test_root_id_is_resolved(self, tmp_path, monkeypatch):
        (tmp_path / 'a.qasm').write_text('', encoding='utf-8')
        monkeypatch.chdir(tmp_path)
        provider = FileSourceProvider()
        assert provider.root_id('a.qasm') == provider.source_id(str(tmp_path / 'b.qasm'), 'a.qasm')
        assert provider.root_id('<input>') == '<input>'

    def test_not_found_lists_searched_paths(self, tmp_path):
        provider = FileSourceProvider([tmp_path])
        with pytest.raises(IncludeNotFound) as excinfo:
            provider.resolve_include('<input>', 'missing.inc')
        assert excinfo.value.searched == [str(tmp_path / 'missing.inc')]
