from __future__ import annotations

from typing import Iterable


def _as_int(token: str) -> int | None:
    try:
        return int(token)
    except (TypeError, ValueError):
        return None


def cursor_less(a: str, b: str) -> bool:
    """
    cursor 比较：两侧都能解析为整数时按数值比较，否则退化为字典序。

    旧版本可能遗留非数字 token，这里保证不抛异常。
    """
    ai = _as_int(a)
    bi = _as_int(b)
    if ai is None or bi is None:
        return str(a) < str(b)
    return ai < bi


def cursor_greater(a: str, b: str) -> bool:
    return cursor_less(b, a)


def is_unset(token: str | None) -> bool:
    return token is None or token == "" or token == "0"


def min_cursor(tokens: Iterable[str | None]) -> str | None:
    result: str | None = None
    for t in tokens:
        if is_unset(t):
            continue
        if result is None or cursor_less(t, result):
            result = t
    return result
