"""子进程错误响应的分类（语法错误 vs 运行时错误）。"""

from __future__ import annotations

import re
from typing import Optional, Tuple

from pcruntime.core.errors import ScriptError, ScriptRuntimeError, ScriptSyntaxError

_SYNTAX_ERROR_RE = re.compile(r"SyntaxError:")


def split_error_body(body: str) -> Tuple[str, str]:
    """
    把错误响应 body 切分为 `(message, stack)`。

    约定：
    - body 形如 `<message>\\0<stack>`；
    - 不含 NUL 时 stack 为空字符串。
    """

    message, _, stack = body.partition("\0")
    return message, stack


def classify_failure(message: str, stack: Optional[str] = None) -> ScriptError:
    """
    将子进程报告的错误映射为结构化异常（不抛出，由调用方决定）。

    参数：
    - message：错误消息（例如 `SyntaxError: Unexpected end of input`）
    - stack：stack trace（可为空）

    返回：
    - ScriptSyntaxError：消息匹配 `SyntaxError:`
    - ScriptRuntimeError：其它所有情况
    """

    if _SYNTAX_ERROR_RE.search(message or ""):
        return ScriptSyntaxError(message, stack=stack)
    return ScriptRuntimeError(message, stack=stack)
