"""
Command extraction: boot-script text -> deduplicated set of CommandToken.

Every statement contributes its plain invocation (if it has one) plus the
synthetic tokens of the special forms found anywhere in its words: variable
assignments, terminal roles, device literals, date/time fields and manual
module loads.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import FrozenSet, Iterable, List, Set, Union

from .lexer import Statement, Word, lex
from .tokens import CommandToken, ScriptText, to_script_text

_log = logging.getLogger("grub_early.extractor")

CONDITIONAL_HEADS = ("if", "elif", "while", "until")
CONTROL_WORDS = ("fi", "else")
# keywords introducing the body of a construct; the rest of the statement is
# an ordinary invocation
BODY_KEYWORDS = ("then", "do")
SILENT_KEYWORDS = ("done", "function", "for", "in")
BRACKET_TEST = "["
NEGATION = "!"

TERMINAL_COMMANDS = ("terminal_input", "terminal_output", "terminal")
MODULE_LOAD_COMMANDS = ("insmod",)
ASSIGNMENT_COMMAND = "set"

DATETIME_FIELDS = ("SECOND", "MINUTE", "HOUR", "DAY", "MONTH", "YEAR")

_VAR_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_BARE_ASSIGN_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=")
_DEVICE_RE = re.compile(r"\(([^()\s]+)\)")
_COMMAND_RE = re.compile(r"^[A-Za-z0-9_.+\-]+$")

Source = Union[str, ScriptText, Iterable[str]]


def _lines(source: Source) -> ScriptText:
    if isinstance(source, str):
        return to_script_text(source)
    return tuple(source)


def _special_forms(words: Iterable[Word]) -> Set[CommandToken]:
    found: Set[CommandToken] = set()
    for w in words:
        for var in w.variables:
            if var in DATETIME_FIELDS:
                found.add(CommandToken.datetime_field(var))
        # quoted or not, a device literal names a disk the image must reach
        for m in _DEVICE_RE.finditer(w.text):
            found.add(CommandToken.disk_descriptor(m.group(1)))
    return found


def _positional(args: Iterable[Word]) -> List[str]:
    return [a.text for a in args if a.text and not a.text.startswith("-")]


def _invocation(words: List[Word]) -> Set[CommandToken]:
    """Tokens of a plain invocation (head word + arguments)."""
    out: Set[CommandToken] = set()
    if not words:
        return out

    head, args = words[0], words[1:]
    name = head.text

    if name == NEGATION and args:
        return _invocation(args)
    if name.startswith(NEGATION) and len(name) > 1 and not head.quoted:
        name = name[1:]

    if name == BRACKET_TEST:
        out.add(CommandToken.control(BRACKET_TEST))
        return out

    m = _BARE_ASSIGN_RE.match(name)
    if m and not head.quoted:
        out.add(CommandToken.command(ASSIGNMENT_COMMAND))
        out.add(CommandToken.assignment(m.group(1)))
        return out
    if args and args[0].text.startswith("=") and _VAR_NAME_RE.match(name):
        out.add(CommandToken.command(ASSIGNMENT_COMMAND))
        out.add(CommandToken.assignment(name))
        return out

    if not _COMMAND_RE.match(name):
        # dynamic ($cmd) or garbage: nothing we can name statically
        return out

    out.add(CommandToken.command(name))

    if name == ASSIGNMENT_COMMAND:
        for a in args:
            var, sep, _ = a.text.partition("=")
            if sep and _VAR_NAME_RE.match(var):
                out.add(CommandToken.assignment(var))
    elif name in TERMINAL_COMMANDS:
        for value in _positional(args):
            out.add(CommandToken.terminal_role(name, value))
    elif name in MODULE_LOAD_COMMANDS:
        for value in _positional(args):
            module = value.rsplit("/", 1)[-1]
            if module.endswith(".mod"):
                module = module[: -len(".mod")]
            if module and _COMMAND_RE.match(module):
                out.add(CommandToken.module_load(module))
    return out


def tokens_for_statement(stmt: Statement) -> Set[CommandToken]:
    words = [w for w in stmt.words if not w.is_brace]
    out = _special_forms(words)
    if not words:
        return out

    head = words[0].text if not words[0].quoted else None

    if head in CONDITIONAL_HEADS:
        out.add(CommandToken.control(head))
        rest = words[1:]
        if rest and rest[0].text == NEGATION:
            rest = rest[1:]
        if rest and rest[0].text == BRACKET_TEST:
            # the bracket test lives in the same module as the construct
            return out
        out |= _invocation(rest)
        return out

    if head in CONTROL_WORDS:
        out.add(CommandToken.control(head))
        out |= _invocation(words[1:])
        return out

    if head in BODY_KEYWORDS:
        out |= _invocation(words[1:])
        return out

    if head in SILENT_KEYWORDS:
        return out

    out |= _invocation(words)
    return out


def extract_tokens(source: Source) -> FrozenSet[CommandToken]:
    found: Set[CommandToken] = set()
    for stmt in lex(_lines(source)):
        found |= tokens_for_statement(stmt)
    return frozenset(found)


def extract_file(path: Path) -> FrozenSet[CommandToken]:
    """Extract tokens from a script file; unreadable files yield nothing."""
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        _log.debug("extract skip path=%s err=%s", path, exc)
        return frozenset()
    return extract_tokens(text)
