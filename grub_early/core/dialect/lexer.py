"""
Lexer for the GRUB boot-script dialect.

Only the subset needed to find invocations is understood:

    - words separated by blanks, ``;`` separating statements
    - single quotes (no expansion), double quotes (expansion, backslash escapes)
    - ``$NAME`` / ``${NAME}`` dereferences
    - ``#`` comments starting a word
    - ``{`` / ``}`` block delimiters as standalone words
    - trailing ``\\`` joining a line with the next one

Lexing is line oriented: an unterminated quote ends at the end of its line
and never raises.
"""
from __future__ import annotations

import string
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Tuple

_NAME_START = string.ascii_letters + "_"
_NAME_CHARS = _NAME_START + string.digits
_SPECIAL_VARS = "?#@*"
_BLANKS = " \t\r"


@dataclass(frozen=True)
class Word:
    text: str
    # ``text`` minus everything that was single quoted (never expanded)
    expandable: str = ""
    variables: Tuple[str, ...] = ()
    quoted: bool = False

    @property
    def is_brace(self) -> bool:
        return not self.quoted and self.text in ("{", "}")


@dataclass(frozen=True)
class Statement:
    line: int
    words: Tuple[Word, ...]

    @property
    def head(self) -> Optional[Word]:
        return self.words[0] if self.words else None


@dataclass
class _WordBuilder:
    text: List[str] = field(default_factory=list)
    expandable: List[str] = field(default_factory=list)
    variables: List[str] = field(default_factory=list)
    quoted: bool = False
    started: bool = False

    def add(self, ch: str, *, expandable: bool = True) -> None:
        self.started = True
        self.text.append(ch)
        if expandable:
            self.expandable.append(ch)

    def build(self) -> Word:
        return Word(
            text="".join(self.text),
            expandable="".join(self.expandable),
            variables=tuple(self.variables),
            quoted=self.quoted,
        )


def _read_variable(line: str, pos: int) -> Tuple[str, str, int]:
    """Read a dereference starting at ``line[pos] == '$'``.

    Returns (raw_text, variable_name, next_pos). ``variable_name`` is empty
    when the ``$`` is not followed by a name.
    """
    nxt = pos + 1
    if nxt < len(line) and line[nxt] == "{":
        end = line.find("}", nxt + 1)
        if end == -1:
            return line[pos:], line[nxt + 1:], len(line)
        return line[pos:end + 1], line[nxt + 1:end], end + 1

    if nxt < len(line) and (line[nxt] in _SPECIAL_VARS or line[nxt].isdigit()):
        return line[pos:nxt + 1], line[nxt], nxt + 1

    end = nxt
    if end < len(line) and line[end] in _NAME_START:
        while end < len(line) and line[end] in _NAME_CHARS:
            end += 1
    return line[pos:end], line[nxt:end], end


def lex_line(line: str, lineno: int = 1) -> List[Statement]:
    statements: List[Statement] = []
    words: List[Word] = []
    cur = _WordBuilder()

    def flush_word() -> None:
        nonlocal cur
        if cur.started:
            words.append(cur.build())
        cur = _WordBuilder()

    def flush_statement() -> None:
        nonlocal words
        flush_word()
        if words:
            statements.append(Statement(line=lineno, words=tuple(words)))
        words = []

    i = 0
    n = len(line)
    while i < n:
        ch = line[i]

        if ch in _BLANKS:
            flush_word()
            i += 1
            continue

        if ch == ";":
            flush_statement()
            i += 1
            continue

        if ch == "#" and not cur.started:
            break

        if ch == "\\":
            if i + 1 < n:
                cur.add(line[i + 1])
            i += 2
            continue

        if ch == "'":
            cur.quoted = True
            cur.started = True
            end = line.find("'", i + 1)
            end = n if end == -1 else end
            for c in line[i + 1:end]:
                cur.add(c, expandable=False)
            i = end + 1
            continue

        if ch == '"':
            cur.quoted = True
            cur.started = True
            i += 1
            while i < n and line[i] != '"':
                if line[i] == "\\" and i + 1 < n:
                    cur.add(line[i + 1])
                    i += 2
                    continue
                if line[i] == "$":
                    raw, name, i = _read_variable(line, i)
                    for c in raw:
                        cur.add(c)
                    if name:
                        cur.variables.append(name)
                    continue
                cur.add(line[i])
                i += 1
            i += 1
            continue

        if ch == "$":
            raw, name, i = _read_variable(line, i)
            for c in raw:
                cur.add(c)
            if name:
                cur.variables.append(name)
            continue

        cur.add(ch)
        i += 1

    flush_statement()
    return statements


def logical_lines(lines: Iterable[str]) -> Iterator[Tuple[int, str]]:
    """Join backslash-continued lines; yields (first_lineno, text)."""
    pending: List[str] = []
    start = 0
    for lineno, raw in enumerate(lines, start=1):
        line = raw.rstrip("\n")
        if not pending:
            start = lineno
        if line.endswith("\\") and not line.endswith("\\\\"):
            pending.append(line[:-1])
            continue
        pending.append(line)
        yield start, "".join(pending)
        pending = []
    if pending:
        yield start, "".join(pending)


def lex(lines: Iterable[str]) -> List[Statement]:
    out: List[Statement] = []
    for lineno, line in logical_lines(lines):
        out.extend(lex_line(line, lineno))
    return out
