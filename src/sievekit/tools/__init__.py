"""
sievekit.tools - Working with parsed scripts

- format: canonical serializer
- lint: capability and argument validation
- edit: tree mutation operations
"""

# Formatter
from .format import SieveFormatter, FormatOptions, format_script, encode_script

# Validator
from .lint import SieveValidator, ValidationError, ValidationKind, validate_script

# Editing
from .edit import (
    Invariant,
    insert_command,
    append_command,
    remove_command,
    replace_arguments,
    move_command,
    declare_capability,
    require_capabilities,
    set_rule_name,
    check_tree,
)

__all__ = [
    "SieveFormatter",
    "FormatOptions",
    "format_script",
    "encode_script",
    "SieveValidator",
    "ValidationError",
    "ValidationKind",
    "validate_script",
    "Invariant",
    "insert_command",
    "append_command",
    "remove_command",
    "replace_arguments",
    "move_command",
    "declare_capability",
    "require_capabilities",
    "set_rule_name",
    "check_tree",
]
