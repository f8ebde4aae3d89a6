"""
编译器配置
==========
OpenQASM 3 规范中"由实现定义"的参数在这里显式给出默认值，
不从规范的沉默中推断意图。
"""

from dataclasses import dataclass, fields


@dataclass
class CompilerOptions:
    # 无位宽声明时的默认宽度（int / uint / float / angle）
    default_int_width:   int = 32
    default_float_width: int = 64
    default_angle_width: int = 64
    max_width:           int = 128

    # 能力开关
    allow_fractional_pow: bool = False   # pow(0.5) @ rz(θ) 之类的解析分解
    allow_recursive_defs: bool = False   # gate 永远不允许递归
    load_openpulse:       bool = True

    fail_fast: bool = False

    # 深度 / 次数上限：嵌套结构一律显式计数，超限报诊断而不是崩溃
    max_include_depth:     int = 32
    max_comment_depth:     int = 64
    max_modifier_depth:    int = 64
    max_pow_repeat:        int = 1024
    max_recovery_attempts: int = 256

    @classmethod
    def from_mapping(cls, mapping: dict) -> 'CompilerOptions':
        """从普通字典构造（CLI 的 --option key=value）；字符串值按字段类型转换"""
        known = {f.name: f for f in fields(cls)}
        kwargs = {}
        for key, value in mapping.items():
            if key not in known:
                raise ValueError(f"未知的编译选项 '{key}'")
            default = known[key].default
            if isinstance(value, str):
                if isinstance(default, bool):
                    value = value.strip().lower() in ('1', 'true', 'yes', 'on')
                elif isinstance(default, int):
                    value = int(value, 0)
            kwargs[key] = value
        return cls(**kwargs)
