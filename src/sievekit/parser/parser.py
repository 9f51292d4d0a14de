"""
Sieve Script Parser

Converts a token stream from the lexer into a Script tree.
Handles nested control blocks, tests with test lists, tagged arguments
and the leading require command that declares capabilities.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator, List, Optional, Union

from sievekit.capabilities import CapabilityRegistry, CommandKind
from sievekit.errors import LimitExceeded, SieveSyntaxError
from sievekit.parser.lexer import Lexer, Token, TokenType, read_script

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 64

RULE_NAME_RE = re.compile(r'^\s*rule:\s*\[(.*)\]\s*$')


class NodeType(Enum):
    """Types of tree nodes."""
    SCRIPT = auto()         # Root
    BLOCK = auto()          # { commands }
    COMMAND = auto()        # name args ; / name args { ... }
    TEST = auto()           # boolean sub-expression
    STRING = auto()         # "quoted" or text: ... .
    STRING_LIST = auto()    # ["a", "b"]
    NUMBER = auto()         # 10K
    TAG = auto()            # :contains
    COMMENT = auto()        # # text


class StringForm(Enum):
    """Literal form a string was written in. Not part of its value."""
    QUOTED = "quoted"
    MULTILINE = "multiline"


@dataclass
class ASTNode:
    """Base class for tree nodes. Source positions never take part in equality."""
    node_type: NodeType = None  # Set by subclasses in __post_init__
    line: int = field(default=0, compare=False)
    column: int = field(default=0, compare=False)
    offset: int = field(default=0, compare=False)


@dataclass
class Comment(ASTNode):
    """Free text kept next to the command it preceded."""
    text: str = ""

    def __post_init__(self):
        self.node_type = NodeType.COMMENT

    def __repr__(self):
        return f"Comment({self.text!r})"


@dataclass
class StringArgument(ASTNode):
    """A single string, written quoted or as text: ... ."""
    value: str = ""
    form: StringForm = field(default=StringForm.QUOTED, compare=False)

    def __post_init__(self):
        self.node_type = NodeType.STRING

    def __repr__(self):
        return f"String({self.value!r})"


@dataclass
class StringListArgument(ASTNode):
    """A bracketed list of strings. May be empty, may hold duplicates."""
    values: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.node_type = NodeType.STRING_LIST

    def __repr__(self):
        return f"StringList({self.values!r})"


@dataclass
class NumberArgument(ASTNode):
    """A number with an optional K/M/G quantifier."""
    value: int = 0
    unit: str = ""

    MULTIPLIERS = {"": 1, "K": 1024, "M": 1024 ** 2, "G": 1024 ** 3}

    def __post_init__(self):
        self.node_type = NodeType.NUMBER

    def __repr__(self):
        return f"Number({self.value}{self.unit})"

    @property
    def octets(self) -> int:
        """Value with the quantifier applied."""
        return self.value * self.MULTIPLIERS[self.unit]


@dataclass
class TagArgument(ASTNode):
    """A tagged argument such as :contains, stored lower-case."""
    name: str = ""

    def __post_init__(self):
        self.node_type = NodeType.TAG

    def __repr__(self):
        return f"Tag({self.name})"


@dataclass
class Test(ASTNode):
    """A boolean-valued expression: name, arguments and nested tests."""
    name: str = ""
    arguments: List["Argument"] = field(default_factory=list)
    tests: List["Test"] = field(default_factory=list)

    def __post_init__(self):
        self.node_type = NodeType.TEST

    def __repr__(self):
        return f"Test({self.name}, {len(self.arguments)} args, {len(self.tests)} tests)"

    @property
    def kind(self) -> CommandKind:
        return CommandKind.lookup(self.name)

    def walk(self) -> Iterator["Test"]:
        """Yield this test and every nested test, depth first."""
        yield self
        for test in self.tests:
            yield from test.walk()


Argument = Union[StringArgument, StringListArgument, NumberArgument, TagArgument, Test]


@dataclass
class Command(ASTNode):
    """A named action or control construct."""
    name: str = ""
    arguments: List[Argument] = field(default_factory=list)
    block: Optional["Block"] = None
    comments: List[Comment] = field(default_factory=list, compare=False)
    parent: Optional["Block"] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        self.node_type = NodeType.COMMAND
        if self.block is not None:
            self.block.parent = self

    def __repr__(self):
        nested = f", {len(self.block.commands)} nested" if self.block is not None else ""
        return f"Command({self.name}, {len(self.arguments)} args{nested})"

    @property
    def kind(self) -> CommandKind:
        return CommandKind.lookup(self.name)

    @property
    def test(self) -> Optional[Test]:
        """The test argument of a conditional, if any."""
        for arg in self.arguments:
            if isinstance(arg, Test):
                return arg
        return None

    @property
    def rule_name(self) -> Optional[str]:
        """Name from a '# rule:[Name]' comment directly above the command."""
        for comment in reversed(self.comments):
            match = RULE_NAME_RE.match(comment.text)
            if match:
                return match.group(1)
        return None

    def walk(self) -> Iterator["Command"]:
        """Yield this command and all commands nested below it."""
        yield self
        if self.block is not None:
            yield from self.block.walk()


@dataclass
class Block(ASTNode):
    """An ordered sequence of commands owned by one Command or the Script."""
    commands: List[Command] = field(default_factory=list)
    trailing_comments: List[Comment] = field(default_factory=list, compare=False)
    parent: Optional[Union[Command, "Script"]] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        self.node_type = NodeType.BLOCK
        for command in self.commands:
            command.parent = self

    def __repr__(self):
        return f"Block({len(self.commands)} commands)"

    def __len__(self):
        return len(self.commands)

    def __iter__(self):
        return iter(self.commands)

    def index(self, command: Command) -> int:
        """Position of a command by identity."""
        for i, candidate in enumerate(self.commands):
            if candidate is command:
                return i
        raise ValueError(f"{command!r} is not in this block")

    def walk(self) -> Iterator[Command]:
        for command in self.commands:
            yield from command.walk()


@dataclass
class Script(ASTNode):
    """
    Root of the tree.

    The capability list declared by the leading require command lives here
    rather than on that command's argument list; the command itself stays
    in the tree with no arguments.
    """
    block: Block = field(default_factory=Block)
    capabilities: List[str] = field(default_factory=list)
    filename: str = field(default="<unknown>", compare=False)

    def __post_init__(self):
        self.node_type = NodeType.SCRIPT
        self.block.parent = self

    def __repr__(self):
        return f"Script({self.filename}, {len(self.block.commands)} commands)"

    @property
    def commands(self) -> List[Command]:
        return self.block.commands

    @property
    def require_command(self) -> Optional[Command]:
        """The require command holding the capability list, if present."""
        if self.commands:
            first = self.commands[0]
            if first.kind is CommandKind.REQUIRE and not first.arguments:
                return first
        return None

    def walk(self) -> Iterator[Command]:
        """Every command in the script, depth first, in source order."""
        return self.block.walk()

    def get_commands(self, name: str) -> List[Command]:
        """All commands (at any depth) with the given name."""
        name = name.lower()
        return [c for c in self.walk() if c.name.lower() == name]


class Parser:
    """
    Parser for Sieve scripts.

    Usage:
        parser = Parser(tokens)
        script = parser.parse()
    """

    def __init__(self, tokens: List[Token], filename: str = "<unknown>",
                 registry: Optional[CapabilityRegistry] = None,
                 max_depth: int = DEFAULT_MAX_DEPTH):
        self.tokens = tokens
        self.filename = filename
        self.registry = registry or CapabilityRegistry()
        self.max_depth = max_depth
        self.pos = 0
        self.length = len(tokens)
        self._pending_comments: List[Comment] = []

    def _current(self) -> Optional[Token]:
        """Get current token, moving comments aside as they are passed."""
        while self.pos < self.length and self.tokens[self.pos].type == TokenType.COMMENT:
            token = self.tokens[self.pos]
            self._pending_comments.append(Comment(
                text=token.value, line=token.line, column=token.column, offset=token.offset))
            self.pos += 1
        if self.pos >= self.length:
            return None
        return self.tokens[self.pos]

    def _advance(self) -> Optional[Token]:
        """Advance one token and return it."""
        token = self._current()
        if token is not None:
            self.pos += 1
        return token

    def _take_comments(self) -> List[Comment]:
        comments, self._pending_comments = self._pending_comments, []
        return comments

    def _error(self, message: str, token: Optional[Token]) -> SieveSyntaxError:
        if token is None:
            return SieveSyntaxError(message)
        return SieveSyntaxError(message, token.offset, token.line, token.column)

    def _check_depth(self, depth: int, token: Token) -> None:
        if depth > self.max_depth:
            raise LimitExceeded(self.max_depth, token.line, token.column)

    def parse(self) -> Script:
        """Parse the token stream into a Script."""
        script = Script(filename=self.filename, line=1, column=1)
        self._parse_block_body(script.block, depth=0, opening=None)

        require = script.commands[0] if script.commands else None
        if require is not None and require.kind is CommandKind.REQUIRE:
            capabilities = self._take_capabilities(require)
            if capabilities is not None:
                script.capabilities = capabilities
                require.arguments = []

        logger.debug("Parsed %s: %d top-level commands, capabilities %s",
                     self.filename, len(script.commands), script.capabilities)
        return script

    def _take_capabilities(self, require: Command) -> Optional[List[str]]:
        """Capability names of a well-shaped require command, else None."""
        if len(require.arguments) != 1:
            return None
        arg = require.arguments[0]
        if isinstance(arg, StringListArgument):
            names = arg.values
        elif isinstance(arg, StringArgument):
            names = [arg.value]
        else:
            return None

        capabilities: List[str] = []
        for name in names:
            if name not in capabilities:
                capabilities.append(name)
        return capabilities

    def _parse_block_body(self, block: Block, depth: int, opening: Optional[Token]) -> None:
        """Parse commands until the closing brace (or end of input at top level)."""
        while True:
            token = self._current()

            if token is None or token.type == TokenType.EOF:
                if opening is not None:
                    raise self._error("Unterminated block: missing '}'", opening)
                block.trailing_comments = self._take_comments()
                return

            if token.type == TokenType.RBRACE:
                if opening is None:
                    raise self._error("Unexpected '}' (unbalanced braces?)", token)
                block.trailing_comments = self._take_comments()
                self._advance()
                return

            command = self._parse_command(depth)
            command.parent = block
            block.commands.append(command)

    def _parse_command(self, depth: int) -> Command:
        """Parse one statement: identifier arguments (';' | block)."""
        token = self._current()
        if token.type != TokenType.IDENTIFIER:
            raise self._error(f"Expected command name, got {token.type.name}", token)

        comments = self._take_comments()
        self._advance()
        name = self._normalize_name(token.value)

        arguments = self._parse_arguments()
        next_token = self._current()
        if next_token is not None and next_token.type == TokenType.IDENTIFIER:
            arguments.append(self._parse_test(depth + 1))
        elif next_token is not None and next_token.type == TokenType.LPAREN:
            raise self._error(f"Test list not allowed directly after command '{name}'", next_token)

        command = Command(name=name, arguments=arguments, comments=comments,
                          line=token.line, column=token.column, offset=token.offset)

        end = self._current()
        if end is None or end.type == TokenType.EOF:
            raise self._error(f"Expected ';' or '{{' after '{name}', got end of script", end or token)

        control = self.registry.is_control(name)
        if end.type == TokenType.SEMICOLON:
            if control:
                raise self._error(f"'{name}' requires a block, got ';'", end)
            self._advance()
        elif end.type == TokenType.LBRACE:
            if control is False:
                raise self._error(f"'{name}' must be terminated by ';', got a block", end)
            self._check_depth(depth + 1, end)
            self._advance()
            block = Block(line=end.line, column=end.column, offset=end.offset)
            self._parse_block_body(block, depth + 1, opening=end)
            command.block = block
            block.parent = command
        else:
            raise self._error(f"Expected ';' or '{{' after '{name}', got {end.type.name}", end)

        return command

    def _parse_arguments(self) -> List[Argument]:
        """Parse plain arguments left to right until something else shows up."""
        arguments: List[Argument] = []
        while True:
            token = self._current()
            if token is None:
                return arguments
            pos = dict(line=token.line, column=token.column, offset=token.offset)

            if token.type == TokenType.STRING:
                arguments.append(StringArgument(value=token.value, form=StringForm.QUOTED, **pos))
            elif token.type == TokenType.MULTILINE:
                arguments.append(StringArgument(value=token.value, form=StringForm.MULTILINE, **pos))
            elif token.type == TokenType.STRING_LIST:
                arguments.append(StringListArgument(values=list(token.value), **pos))
            elif token.type == TokenType.NUMBER:
                arguments.append(self._parse_number(token))
            elif token.type == TokenType.TAG:
                arguments.append(TagArgument(name=token.value.lower(), **pos))
            else:
                return arguments
            self._advance()

    def _parse_number(self, token: Token) -> NumberArgument:
        text = token.value
        unit = ""
        if text[-1].upper() in "KMG":
            unit = text[-1].upper()
            text = text[:-1]
        return NumberArgument(value=int(text), unit=unit,
                              line=token.line, column=token.column, offset=token.offset)

    def _parse_test(self, depth: int) -> Test:
        """Parse a test: identifier arguments [test / test-list]."""
        token = self._current()
        if token is None or token.type != TokenType.IDENTIFIER:
            raise self._error("Expected test name", token)
        self._check_depth(depth, token)
        self._advance()

        test = Test(name=self._normalize_name(token.value), arguments=self._parse_arguments(),
                    line=token.line, column=token.column, offset=token.offset)

        next_token = self._current()
        if next_token is None:
            return test
        if next_token.type == TokenType.IDENTIFIER:
            test.tests.append(self._parse_test(depth + 1))
        elif next_token.type == TokenType.LPAREN:
            self._advance()
            test.tests.extend(self._parse_test_list(depth + 1, next_token))
        return test

    def _parse_test_list(self, depth: int, opening: Token) -> List[Test]:
        tests: List[Test] = []
        token = self._current()
        if token is not None and token.type == TokenType.RPAREN:
            raise self._error("Empty test list", opening)

        while True:
            tests.append(self._parse_test(depth))
            token = self._current()
            if token is None or token.type == TokenType.EOF:
                raise self._error("Unterminated test list: missing ')'", opening)
            if token.type == TokenType.COMMA:
                self._advance()
                continue
            if token.type == TokenType.RPAREN:
                self._advance()
                return tests
            raise self._error(f"Expected ',' or ')' in test list, got {token.type.name}", token)

    def _normalize_name(self, name: str) -> str:
        """Known identifiers are case-insensitive; store them lower-case."""
        if CommandKind.lookup(name) is not CommandKind.UNKNOWN:
            return name.lower()
        return name


def parse_source(source: str, filename: str = "<unknown>",
                 registry: Optional[CapabilityRegistry] = None,
                 max_depth: int = DEFAULT_MAX_DEPTH) -> Script:
    """Parse script text into a Script. Raises SieveSyntaxError or LimitExceeded."""
    lexer = Lexer(source, filename)
    tokens = lexer.tokenize_all(include_comments=True)
    parser = Parser(tokens, filename, registry=registry, max_depth=max_depth)
    return parser.parse()


def parse_bytes(data: bytes, charset: str = "utf-8", filename: str = "<unknown>",
                registry: Optional[CapabilityRegistry] = None,
                max_depth: int = DEFAULT_MAX_DEPTH) -> Script:
    """Parse raw script bytes in the given charset."""
    try:
        source = data.decode(charset)
    except UnicodeDecodeError as e:
        raise SieveSyntaxError(f"Invalid {charset} data: {e.reason}", e.start) from e
    lexer = Lexer(source, filename, charset=charset)
    tokens = lexer.tokenize_all(include_comments=True)
    return Parser(tokens, filename, registry=registry, max_depth=max_depth).parse()


def parse_file(filepath: str, charset: str = "utf-8",
               registry: Optional[CapabilityRegistry] = None,
               max_depth: int = DEFAULT_MAX_DEPTH) -> Script:
    """Parse a script file into a Script."""
    source = read_script(filepath, charset)
    lexer = Lexer(source, filepath, charset=charset)
    tokens = lexer.tokenize_all(include_comments=True)
    return Parser(tokens, filepath, registry=registry, max_depth=max_depth).parse()
