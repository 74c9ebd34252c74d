from .tokens import CommandToken, ScriptText, to_script_text
from .lexer import Statement, Word, lex, lex_line
from .extractor import extract_file, extract_tokens

__all__ = [
    "CommandToken",
    "ScriptText",
    "Statement",
    "Word",
    "extract_file",
    "extract_tokens",
    "lex",
    "lex_line",
    "to_script_text",
]
