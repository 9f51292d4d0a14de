"""
sievekit.parser - Sieve Script Parser

Lexer and parser for Sieve mail filtering scripts.
Converts script text into a Script tree.
"""

from sievekit.errors import LimitExceeded, SieveSyntaxError
from sievekit.parser.lexer import Lexer, Token, TokenType, tokenize, tokenize_file
from sievekit.parser.parser import (
    DEFAULT_MAX_DEPTH,
    Parser,
    parse_bytes,
    parse_file,
    parse_source,
    # Tree node types
    ASTNode,
    NodeType,
    StringForm,
    Script,
    Block,
    Command,
    Test,
    Comment,
    StringArgument,
    StringListArgument,
    NumberArgument,
    TagArgument,
)

__all__ = [
    # Lexer
    "Lexer",
    "Token",
    "TokenType",
    "tokenize",
    "tokenize_file",
    # Parser
    "DEFAULT_MAX_DEPTH",
    "Parser",
    "SieveSyntaxError",
    "LimitExceeded",
    "parse_bytes",
    "parse_file",
    "parse_source",
    # Tree nodes
    "ASTNode",
    "NodeType",
    "StringForm",
    "Script",
    "Block",
    "Command",
    "Test",
    "Comment",
    "StringArgument",
    "StringListArgument",
    "NumberArgument",
    "TagArgument",
]
