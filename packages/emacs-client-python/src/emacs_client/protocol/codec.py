"""
Wire codec：参数文本的转义/反转义。

协议是“空格分隔 token + 换行结束一行”，因此动态值需要转义：
- 空格 → `&_`
- 换行 → `&n`
- `&` → `&&`
- 位于开头（仅 position 0）的 `-` → `&-`（避免被 host 当作指令关键字）

反转义遇到 `&` 时吞掉下一个字符：
- `&&`→`&`，`&_`→空格，`&n`→换行，`&-`→`-`；
- 其它后缀原样保留（例如 `&x` → `x`），为兼容更新版本 host 的未知转义而刻意宽松。
"""

from __future__ import annotations

_ESCAPES = {" ": "&_", "\n": "&n", "&": "&&"}
_UNESCAPES = {"&": "&", "_": " ", "n": "\n", "-": "-"}


def quote_argument(raw: str) -> str:
    """
    将任意文本编码为单个 wire token（结果不含空格与换行）。

    参数：
    - raw：原始文本

    返回：
    - 转义后的 token
    """

    out: list[str] = []
    for i, ch in enumerate(raw):
        esc = _ESCAPES.get(ch)
        if esc is not None:
            out.append(esc)
        elif ch == "-" and i == 0:
            out.append("&-")
        else:
            out.append(ch)
    return "".join(out)


def unquote_argument(text: str) -> str:
    """
    `quote_argument` 的逆运算。

    说明：
    - 不是自逆：对已解码文本再次 unquote 不保证得到原值；
    - 末尾孤立的 `&` 被丢弃（其后没有可消费的字符）。
    """

    if "&" not in text:
        return text
    out: list[str] = []
    it = iter(text)
    for ch in it:
        if ch != "&":
            out.append(ch)
            continue
        nxt = next(it, None)
        if nxt is None:
            break
        out.append(_UNESCAPES.get(nxt, nxt))
    return "".join(out)
