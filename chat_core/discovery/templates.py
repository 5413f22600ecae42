"""会话路径模板配置。

由于历史数据的 schema 不一致，同一对参与者的消息可能存放在多种位置。
这里集中登记所有已知的布局，Path Candidate Generator 按顺序展开：

- 两级布局：{prefix}/{a}/{b}，本人在前与对方在前两种。
- 下划线布局：{prefix}/{a}_{b}，常见于直接私聊。
"""

from dataclasses import dataclass
from typing import List, Sequence


@dataclass(frozen=True)
class PathTemplate:
    """单个路径模板。pattern 中可使用 {self} 与 {other} 占位符。"""

    name: str
    pattern: str

    def render(self, self_id: str, counterparty_id: str) -> str:
        return self.pattern.format(self=self_id, other=counterparty_id)


RELATION_PREFIXES: Sequence[str] = ("chats", "messages", "conversations")


def _build_templates() -> List[PathTemplate]:
    templates: List[PathTemplate] = []
    for prefix in RELATION_PREFIXES:
        templates.append(PathTemplate(f"{prefix}-self-other", f"{prefix}/{{self}}/{{other}}"))
        templates.append(PathTemplate(f"{prefix}-other-self", f"{prefix}/{{other}}/{{self}}"))
    for prefix in RELATION_PREFIXES:
        templates.append(PathTemplate(f"{prefix}-dm-self-other", f"{prefix}/{{self}}_{{other}}"))
        templates.append(PathTemplate(f"{prefix}-dm-other-self", f"{prefix}/{{other}}_{{self}}"))
    return templates


PATH_TEMPLATES: Sequence[PathTemplate] = tuple(_build_templates())


def get_template(name: str) -> PathTemplate:
    """根据名称获取模板，名称不区分大小写。"""

    key = name.lower()
    for t in PATH_TEMPLATES:
        if t.name.lower() == key:
            return t
    raise KeyError(f"Unknown path template: {name!r}")
