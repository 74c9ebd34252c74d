"""
Declarative boot-script documents.

Builders assemble a ``Script`` out of the nodes below; ``render`` is the only
place where text is produced. Nested bodies are indented by four spaces.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

INDENT = "    "


@dataclass
class Comment:
    text: str


@dataclass
class Blank:
    pass


@dataclass
class Command:
    name: str
    args: Tuple[str, ...] = ()

    def __init__(self, name: str, *args: str):
        self.name = name
        self.args = tuple(a for a in args if a != "")


@dataclass
class Assign:
    name: str
    value: str
    export: bool = False


@dataclass
class Raw:
    """Verbatim text (operator supplied snippets, peer host files)."""

    text: str


@dataclass
class Block:
    children: List["Node"] = field(default_factory=list)


@dataclass
class If:
    branches: List[Tuple[str, List["Node"]]]
    orelse: Optional[List["Node"]] = None


@dataclass
class Function:
    name: str
    body: List["Node"] = field(default_factory=list)


@dataclass
class Submenu:
    title: str
    classes: Sequence[str] = ()
    entry_id: str = ""
    body: List["Node"] = field(default_factory=list)


@dataclass
class MenuEntry:
    title: str
    classes: Sequence[str] = ()
    entry_id: str = ""
    body: List["Node"] = field(default_factory=list)


Node = Union[Comment, Blank, Command, Assign, Raw, Block, If, Function, Submenu, MenuEntry]


@dataclass
class Script:
    children: List[Node] = field(default_factory=list)

    def add(self, *nodes: Node) -> "Script":
        self.children.extend(nodes)
        return self

    def render(self) -> str:
        return render(self)


def quote(text: str) -> str:
    """Single quote for the boot-script dialect."""
    return "'" + text.replace("'", "'\\''") + "'"


def bracket(*words: str) -> str:
    return "[ " + " ".join(words) + " ]"


def split_classes(text: Optional[str]) -> List[str]:
    """``"linux, os,kernel"`` -> ``["linux", "os", "kernel"]``."""
    return [c.strip() for c in (text or "").split(",") if c.strip()]


def _entry_head(keyword: str, title: str, classes: Sequence[str], entry_id: str) -> str:
    parts = [keyword, quote(title)]
    for c in classes:
        parts += ["--class", c]
    if entry_id:
        parts += ["--id", quote(entry_id)]
    return " ".join(parts) + " {"


def _lines(node: Node, depth: int) -> List[str]:
    pad = INDENT * depth

    if isinstance(node, Blank):
        return [""]
    if isinstance(node, Comment):
        return [f"{pad}# {node.text}" if node.text else f"{pad}#"]
    if isinstance(node, Command):
        return [pad + " ".join((node.name,) + node.args)]
    if isinstance(node, Assign):
        out = [f"{pad}set {node.name}={node.value}"]
        if node.export:
            out.append(f"{pad}export {node.name}")
        return out
    if isinstance(node, Raw):
        return [(pad + line) if line.strip() else "" for line in node.text.splitlines()]
    if isinstance(node, Block):
        return _body(node.children, depth)
    if isinstance(node, If):
        out: List[str] = []
        for i, (cond, body) in enumerate(node.branches):
            out.append(f"{pad}{'if' if i == 0 else 'elif'} {cond}; then")
            out += _body(body, depth + 1)
        if node.orelse:
            out.append(f"{pad}else")
            out += _body(node.orelse, depth + 1)
        out.append(f"{pad}fi")
        return out
    if isinstance(node, Function):
        return [f"{pad}function {node.name} {{"] + _body(node.body, depth + 1) + [f"{pad}}}"]
    if isinstance(node, Submenu):
        head = _entry_head("submenu", node.title, node.classes, node.entry_id)
        return [pad + head] + _body(node.body, depth + 1) + [f"{pad}}}"]
    if isinstance(node, MenuEntry):
        head = _entry_head("menuentry", node.title, node.classes, node.entry_id)
        return [pad + head] + _body(node.body, depth + 1) + [f"{pad}}}"]
    raise TypeError(f"Unsupported script node: {type(node).__name__}")


def _body(children: Sequence[Node], depth: int) -> List[str]:
    out: List[str] = []
    for child in children:
        out += _lines(child, depth)
    return out


def render(script: Script) -> str:
    lines = _body(script.children, 0)
    # collapse blank runs, no leading blank
    out: List[str] = []
    for line in lines:
        if not line and (not out or not out[-1]):
            continue
        out.append(line)
    while out and not out[-1]:
        out.pop()
    return "\n".join(out) + "\n" if out else ""
