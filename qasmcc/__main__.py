"""
命令行入口
==========
    python -m qasmcc bell.qasm -I lib --dump-symbols
"""

from __future__ import annotations

import argparse
import logging
import sys

from .config import CompilerOptions
from .error import LexError
from .includes import FileSourceProvider
from .pipeline import QasmFrontend


def _parse_option(text: str) -> tuple[str, str]:
    key, sep, value = text.partition('=')
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"选项格式应为 key=value，得到 '{text}'")
    return key.strip(), value.strip()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='qasmcc', description='OpenQASM 3 编译器前端')
    parser.add_argument('file', help='要编译的 .qasm 文件')
    parser.add_argument('-I', '--include-dir', action='append', default=[], dest='include_dirs',
                        help='include 搜索目录（可重复）')
    parser.add_argument('--fail-fast', action='store_true', help='遇到第一个错误即停止')
    parser.add_argument('--dump-symbols', action='store_true', help='输出符号表')
    parser.add_argument('--dump-tokens', action='store_true', help='只做词法分析并输出 token')
    parser.add_argument('--option', action='append', default=[], type=_parse_option,
                        metavar='KEY=VALUE', help='设置 CompilerOptions 字段（可重复）')
    parser.add_argument('-v', '--verbose', action='store_true', help='输出调试日志')
    return parser


def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        options = CompilerOptions.from_mapping(dict(args.option))
    except ValueError as e:
        print(f"错误：{e}", file=sys.stderr)
        return 2
    if args.fail_fast:
        options.fail_fast = True

    frontend = QasmFrontend(options, FileSourceProvider(args.include_dirs))

    if args.dump_tokens:
        try:
            with open(args.file, encoding='utf-8') as f:
                tokens = frontend.tokenize_only(f.read(), args.file)
        except (OSError, LexError) as e:
            print(f"错误：{e}", file=sys.stderr)
            return 1
        for tok in tokens:
            print(f"{tok.line}:{tok.column}\t{tok.type}\t{tok!s}")
        return 0

    result = frontend.process_file(args.file)
    if len(result.diags):
        print(result.diags.report(), file=sys.stderr)
    if args.dump_symbols and result.symbol_table is not None:
        print(result.symbol_table.dump())
    return 1 if result.diags.has_errors else 0


if __name__ == '__main__':
    sys.exit(main())
