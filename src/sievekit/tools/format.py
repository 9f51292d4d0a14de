"""
Sieve Script Formatter

Serializes a Script tree into canonical Sieve text:
- One command per line, nested blocks indented one level deeper
- Strings quoted, or written as text: ... . when they hold a line break
  or run past the length threshold
- The require list in declaration order
- Comments re-emitted as # lines above the command they preceded

Formatting is deterministic and idempotent: formatting the parse of the
output again yields the same text.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..parser import parse_file, parse_source
from ..parser.lexer import read_script
from ..parser.parser import (
    Argument,
    Block,
    Command,
    Comment,
    NumberArgument,
    Script,
    StringArgument,
    StringListArgument,
    TagArgument,
    Test,
)
from ..capabilities import CommandKind

logger = logging.getLogger(__name__)


@dataclass
class FormatOptions:
    """Configuration for the formatter."""
    indent: str = "    "                # One nesting level
    newline: str = "\n"                 # "\n" or "\r\n"
    multiline_threshold: int = 1024     # Longer strings use text: form
    include_comments: bool = True       # Re-emit comments
    blank_line_after_require: bool = True
    split_test_lists: bool = True       # One test per line in anyof/allof (...)

    def __post_init__(self):
        if self.newline not in ("\n", "\r\n"):
            raise ValueError(f"newline must be '\\n' or '\\r\\n', got {self.newline!r}")
        if self.multiline_threshold < 1:
            raise ValueError("multiline_threshold must be positive")


def quote_string(value: str) -> str:
    """Quote a string, escaping '"', '\\' and CR."""
    escaped = value.replace('\\', '\\\\').replace('"', '\\"')
    return '"' + escaped.replace('\r', '\\\r') + '"'


def multiline_string(value: str) -> str:
    """Write a string in text: form, dot-stuffing lines that start with '.'."""
    lines = []
    for line in value.split('\n'):
        if line.startswith('.'):
            line = '.' + line
        lines.append(line)
    return "text:\n" + "\n".join(lines) + "\n.\n"


class SieveFormatter:
    """
    Formats Script trees as canonical Sieve text.

    The formatter walks the tree and builds the text with "\\n" line breaks,
    switching to the configured line ending at the very end.
    """

    def __init__(self, options: FormatOptions = None):
        self.options = options or FormatOptions()

    def format_file(self, file_path: Path, charset: str = "utf-8") -> str:
        """Format a file and return the formatted content."""
        return self.format_script(parse_file(str(file_path), charset))

    def format_string(self, content: str, filename: str = "<string>") -> str:
        """Format a string of Sieve content."""
        return self.format_script(parse_source(content, filename))

    def format_script(self, script: Script) -> str:
        """Format a Script to string."""
        lines: List[str] = []
        require = script.require_command

        for command in script.commands:
            if command is require:
                self._emit_comments(command.comments, 0, lines)
                lines.append(f"require {self._format_list(script.capabilities)};")
                if self.options.blank_line_after_require and len(script.commands) > 1:
                    lines.append("")
            else:
                self._format_command(command, 0, lines)
        self._emit_comments(script.block.trailing_comments, 0, lines)

        text = "".join(line + "\n" for line in lines)
        if self.options.newline != "\n":
            text = text.replace("\n", self.options.newline)
        logger.debug("Formatted %s: %d commands, %d characters",
                     script.filename, len(script.commands), len(text))
        return text

    def _indent(self, level: int) -> str:
        return self.options.indent * level

    def _emit_comments(self, comments: List[Comment], level: int, lines: List[str]) -> None:
        if not self.options.include_comments:
            return
        ind = self._indent(level)
        for comment in comments:
            for text in comment.text.split("\n"):
                lines.append(f"{ind}#{text.rstrip()}")

    def _format_command(self, command: Command, level: int, lines: List[str]) -> None:
        """Format a command and, for control commands, its block."""
        ind = self._indent(level)
        self._emit_comments(command.comments, level, lines)

        parts = [command.name] + [self._format_argument(arg, level) for arg in command.arguments]
        head = self._join(parts)

        if command.block is None:
            lines.append(f"{ind}{head};")
            return

        opener = "{" if head.endswith("\n") else " {"
        lines.append(f"{ind}{head}{opener}")
        self._format_block(command.block, level + 1, lines)
        lines.append(f"{ind}}}")

    def _format_block(self, block: Block, level: int, lines: List[str]) -> None:
        for child in block.commands:
            self._format_command(child, level, lines)
        self._emit_comments(block.trailing_comments, level, lines)

    def _join(self, parts: List[str]) -> str:
        """Join argument texts with spaces, except right after a text: block."""
        result = ""
        for part in parts:
            if result and not result.endswith("\n"):
                result += " "
            result += part
        return result

    def _format_argument(self, arg: Argument, level: int) -> str:
        if isinstance(arg, StringArgument):
            return self._format_string(arg.value)
        if isinstance(arg, StringListArgument):
            return self._format_list(arg.values)
        if isinstance(arg, NumberArgument):
            return f"{arg.value}{arg.unit}"
        if isinstance(arg, TagArgument):
            return arg.name
        if isinstance(arg, Test):
            return self._format_test(arg, level)
        raise TypeError(f"Cannot format argument {arg!r}")

    def _format_string(self, value: str) -> str:
        """Pick the literal form for a string value."""
        if "\r" in value:
            return quote_string(value)
        if "\n" in value or len(value) > self.options.multiline_threshold:
            return multiline_string(value)
        return quote_string(value)

    def _format_list(self, values: List[str]) -> str:
        items = [self._format_string(v) for v in values]
        return "[" + self._join_list(items) + "]"

    def _join_list(self, items: List[str]) -> str:
        result = ""
        for i, item in enumerate(items):
            if i:
                result += "," if result.endswith("\n") else ", "
            result += item
        return result

    def _format_test(self, test: Test, level: int) -> str:
        parts = [test.name] + [self._format_argument(arg, level) for arg in test.arguments]
        head = self._join(parts)

        if not test.tests:
            return head
        if test.kind is CommandKind.NOT and len(test.tests) == 1:
            return self._join([head, self._format_test(test.tests[0], level)])

        inner = [self._format_test(t, level + 1) for t in test.tests]
        sep = "" if head.endswith("\n") else " "
        if len(inner) == 1 or not self.options.split_test_lists:
            return f"{head}{sep}(" + self._join_list(inner) + ")"

        ind = self._indent(level + 1)
        body = ",\n".join(f"{ind}{text}" for text in inner)
        return f"{head}{sep}(\n{body}\n{self._indent(level)})"


def format_script(script: Script, options: Optional[FormatOptions] = None) -> str:
    """Convenience function to serialize a Script."""
    return SieveFormatter(options).format_script(script)


def encode_script(script: Script, options: Optional[FormatOptions] = None,
                  charset: str = "utf-8") -> bytes:
    """Serialize a Script to bytes in the given charset."""
    return format_script(script, options).encode(charset)


def format_file(file_path: Path, options: FormatOptions = None, charset: str = "utf-8") -> str:
    """Convenience function to format a file."""
    return SieveFormatter(options).format_file(file_path, charset)


def check_formatted(file_path: Path, options: FormatOptions = None, charset: str = "utf-8") -> bool:
    """Check if a file is already in canonical form. Returns True if formatted."""
    formatter = SieveFormatter(options)
    formatted = formatter.format_file(file_path, charset)
    original = read_script(str(file_path), charset)

    return formatted == original
