"""
include 展开
============
include "x.inc"; 的文本由注入的 SourceProvider 提供，核心本身不做文件系统访问。
被包含文件经过完整的 词法 → 语法 流程后，其顶层语句拼接在 include 语句之后。

用法：
    provider = FileSourceProvider(['./lib'])
    expander = IncludeExpander(diag, provider, parse=frontend.parse_text)
    program  = expander.expand(program)

循环包含（A → B → A）与超过 max_include_depth 的嵌套都报 E009；
展开用显式栈完成，不会因恶意输入导致无限递归。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional

from .config import CompilerOptions
from .error import DiagnosticBag, E_SYNTAX, E_INCLUDE_CYCLE
from .tree.transformer import Program, Include, VersionDecl

logger = logging.getLogger(__name__)


STDGATES_NAME = 'stdgates.inc'

STDGATES = """\
// OpenQASM 3 standard gate library
gate p(λ) a { ctrl @ gphase(λ) a; }
gate x a { U(π, 0, π) a; }
gate y a { U(π, π/2, π/2) a; }
gate z a { p(π) a; }
gate h a { U(π/2, 0, π) a; }
gate s a { pow(0.5) @ z a; }
gate sdg a { inv @ pow(0.5) @ z a; }
gate t a { pow(0.5) @ s a; }
gate tdg a { inv @ pow(0.5) @ s a; }
gate sx a { pow(0.5) @ x a; }
gate rx(θ) a { U(θ, -π/2, π/2) a; }
gate ry(θ) a { U(θ, 0, 0) a; }
gate rz(λ) a { gphase(-λ/2); U(0, 0, λ) a; }
gate cx a, b { ctrl @ x a, b; }
gate cy a, b { ctrl @ y a, b; }
gate cz a, b { ctrl @ z a, b; }
gate cp(λ) a, b { ctrl @ p(λ) a, b; }
gate crx(θ) a, b { ctrl @ rx(θ) a, b; }
gate cry(θ) a, b { ctrl @ ry(θ) a, b; }
gate crz(θ) a, b { ctrl @ rz(θ) a, b; }
gate ch a, b { ctrl @ h a, b; }
gate swap a, b { cx a, b; cx b, a; cx a, b; }
gate ccx a, b, c { ctrl @ ctrl @ x a, b, c; }
gate cswap a, b, c { ctrl @ swap a, b, c; }
gate cu(θ, φ, λ, γ) a, b { p(γ) a; ctrl @ U(θ, φ, λ) a, b; }
gate phase(λ) q { U(0, 0, λ) q; }
gate cphase(λ) a, b { ctrl @ phase(λ) a, b; }
gate id a { U(0, 0, 0) a; }
gate u1(λ) q { U(0, 0, λ) q; }
gate u2(φ, λ) q { gphase(-(φ + λ + π)/2); U(π/2, φ, λ) q; }
gate u3(θ, φ, λ) q { gphase(-(φ + λ + θ)/2); U(θ, φ, λ) q; }
"""


class IncludeNotFound(Exception):
    def __init__(self, include_path: str, searched: Iterable = ()):
        searched = [str(p) for p in searched]
        message = f"找不到被包含的文件 '{include_path}'"
        if searched:
            message += f"（已搜索：{', '.join(searched)}）"
        super().__init__(message)
        self.include_path = include_path
        self.searched = searched


# ──────────────────────────────────────────────────────────────────────────────
# 源码提供者
# ──────────────────────────────────────────────────────────────────────────────

class SourceProvider:
    """
    include 文本的来源。子类实现 resolve_include；
    source_id 决定被包含文件在诊断与循环检测中使用的名字。
    """

    def resolve_include(self, from_file: str, include_path: str) -> str:
        raise NotImplementedError

    def source_id(self, from_file: str, include_path: str) -> str:
        return include_path

    def root_id(self, source: str) -> str:
        """根文件在循环检测中的名字，须与 source_id 的命名方式一致"""
        return source


class FileSourceProvider(SourceProvider):
    """先在包含方文件所在目录查找，再依次查 search_paths"""

    def __init__(self, search_paths: Iterable = (), encoding: str = 'utf-8'):
        self.search_paths = [Path(p) for p in search_paths]
        self.encoding = encoding

    def _candidates(self, from_file: str, include_path: str) -> list[Path]:
        target = Path(include_path)
        if target.is_absolute():
            return [target]
        bases = []
        if from_file and not from_file.startswith('<'):
            bases.append(Path(from_file).parent)
        bases.extend(self.search_paths)
        return [base / target for base in bases] or [target]

    def _locate(self, from_file: str, include_path: str) -> Optional[Path]:
        for candidate in self._candidates(from_file, include_path):
            if candidate.is_file():
                return candidate
        return None

    def resolve_include(self, from_file: str, include_path: str) -> str:
        path = self._locate(from_file, include_path)
        if path is None:
            raise IncludeNotFound(include_path, self._candidates(from_file, include_path))
        logger.debug("include %r -> %s", include_path, path)
        return path.read_text(encoding=self.encoding)

    def source_id(self, from_file: str, include_path: str) -> str:
        path = self._locate(from_file, include_path)
        return str(path.resolve()) if path is not None else include_path

    def root_id(self, source: str) -> str:
        path = Path(source)
        if source.startswith('<') or not path.is_file():
            return source
        return str(path.resolve())


class MappingSourceProvider(SourceProvider):
    """内存中的 {路径: 文本}，测试和嵌入式调用使用"""

    def __init__(self, mapping: Optional[Mapping[str, str]] = None):
        self.mapping = dict(mapping or {})

    def resolve_include(self, from_file: str, include_path: str) -> str:
        try:
            return self.mapping[include_path]
        except KeyError:
            raise IncludeNotFound(include_path) from None


# ──────────────────────────────────────────────────────────────────────────────
# 展开
# ──────────────────────────────────────────────────────────────────────────────

class IncludeExpander:
    """
    把 Program 中的全局 include 语句替换为被包含文件的顶层语句。
    Include 节点本身保留在原位（resolved_source 记录实际来源），
    被包含文件中的版本声明被丢弃。
    """

    def __init__(self, diag: DiagnosticBag, provider: Optional[SourceProvider],
                 parse: Callable[[str, str], Program],
                 options: Optional[CompilerOptions] = None):
        self.diag     = diag
        self.provider = provider
        self.parse    = parse
        self.options  = options or CompilerOptions()

    def expand(self, program: Program) -> Program:
        statements = []
        # 栈元素：(语句迭代器, 来源 id, 是否压入了 include 位置)
        stack = [(iter(program.statements), program.source, False)]
        chain = [self.provider.root_id(program.source) if self.provider else program.source]
        while stack:
            it, source, pushed = stack[-1]
            stmt = next(it, None)
            if stmt is None:
                stack.pop()
                chain.pop()
                if pushed:
                    self.diag.pop_include_site()
                continue
            if isinstance(stmt, VersionDecl) and len(stack) > 1:
                continue
            statements.append(stmt)
            if not isinstance(stmt, Include):
                continue

            included = self._load(stmt, source, chain)
            if included is None:
                continue
            child_id, text = included
            stmt.resolved_source = child_id
            self.diag.push_include_site(stmt.span)
            child = self.parse(text, child_id)
            stack.append((iter(child.statements), child_id, True))
            chain.append(child_id)

        program.statements = statements
        return program

    def _load(self, stmt: Include, source: str, chain: list) -> Optional[tuple]:
        """返回 (来源 id, 文本)；出错时记录诊断并返回 None"""
        path = stmt.path
        child_id = self.provider.source_id(source, path) if self.provider else path
        if child_id in chain:
            cycle = ' → '.join(chain[chain.index(child_id):] + [child_id])
            self.diag.error(E_INCLUDE_CYCLE, f"循环包含：{cycle}", stmt)
            return None
        if len(chain) > self.options.max_include_depth:
            self.diag.error(E_INCLUDE_CYCLE,
                            f"include 嵌套超过 {self.options.max_include_depth} 层", stmt)
            return None

        if self.provider is not None:
            try:
                return child_id, self.provider.resolve_include(source, path)
            except IncludeNotFound as e:
                if Path(path).name != STDGATES_NAME:
                    self.diag.error(E_SYNTAX, str(e), stmt)
                    return None
            except OSError as e:
                self.diag.error(E_SYNTAX, f"无法读取被包含的文件 '{path}'：{e}", stmt)
                return None
        if Path(path).name == STDGATES_NAME:
            logger.debug("include %r served from built-in library", path)
            return STDGATES_NAME, STDGATES
        self.diag.error(E_SYNTAX, f"找不到被包含的文件 '{path}'（未配置 SourceProvider）", stmt)
        return None
