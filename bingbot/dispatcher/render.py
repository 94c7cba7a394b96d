"""
回复排版模块 - 把片段序列排成飞书 Markdown 文本。

- 状态片段（搜索中、生成中…）排成带表情的提示行
- 用户自己的问题排成 "Question" 提示行
- 机器人答案中的 [^n^] 引用标记换成指向第 n 个来源的链接，残留标记去掉
- 代码块围栏换成醒目的分隔线（飞书 Markdown 对代码块支持有限）
- 有引用来源时在末尾附上来源列表

交互式元素（来源下拉菜单、推荐追问按钮）不在这里生成。
"""

import re

from bingbot.providers.base import ChatMessage, FinalResult

DIVIDER = "━━━━━━━━━━━━"

_CITATION_RE = re.compile(r"\[\^([0-9]+)\^\]")
_LEFTOVER_CITATION_RE = re.compile(r"\[\^([0-9]+|)(\^|)")
_CODE_OPEN_RE = re.compile(r"```(\w+)\n")


def _status_line(text: str) -> str:
    if "Searching" in text:
        emoji = "🔍"
    elif "Generating" in text:
        emoji = "🤖️"
    else:
        emoji = "💡"
    return f"{emoji} **{text.replace('`', '*')}**"


def render_answer(text: str, references: list[dict]) -> str:
    """排版一条答案文本：引用标记、代码块、列表符号。"""

    def cite(match: re.Match) -> str:
        index = int(match.group(1))
        if 0 < index <= len(references) and references[index - 1].get("seeMoreUrl"):
            return f" [[{index}]]({references[index - 1]['seeMoreUrl']})"
        return f" [{index}]"

    text = _CITATION_RE.sub(cite, text)
    text = _LEFTOVER_CITATION_RE.sub("", text)
    text = _CODE_OPEN_RE.sub(lambda m: f"**💾  {m.group(1).upper()} CODE**\n{DIVIDER}\n", text)
    text = text.replace("\n```", f"\n{DIVIDER}")
    return text.replace("\n- ", "\n🔹 ")


def render_references(references: list[dict]) -> str:
    lines = ["**Learn more** / Reference 👉"]
    for index, ref in enumerate(references, start=1):
        name = ref.get("providerDisplayName") or ref.get("searchQuery") or ref.get("seeMoreUrl", "")
        url = ref.get("seeMoreUrl")
        lines.append(f"[{index}] [{name}]({url})" if url else f"[{index}] {name}")
    return "\n".join(lines)


def render_fragments(messages: list[ChatMessage]) -> str:
    """
    把片段序列排成一段 Markdown。

    参数:
        messages: 按显示顺序排列的片段

    返回:
        排好的文本；没有可显示内容时为空串
    """
    notes: list[str] = []
    answers: list[str] = []
    references: list[dict] = []

    for message in messages:
        if message.message_type == "RenderCardRequest" or not message.text:
            continue
        if message.is_status:
            notes.append(_status_line(message.text))
        elif message.author == "user":
            notes.append(f"🗣️ **Question: {message.text}**")
        else:
            references = message.source_attributions
            answers.append(render_answer(message.text, references))

    sections = ["\n".join(notes)] if notes else []
    sections.extend(answers)
    if references:
        sections.append(render_references(references))
    return "\n\n---\n\n".join(sections)


def render_result(result: FinalResult) -> str:
    """排版最终结果，没有片段可排时退回到答案纯文本。"""
    return render_fragments(result.messages) or result.text or "(Bing returned an empty reply)"
