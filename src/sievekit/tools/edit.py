"""
Script Editing

The operations an editor uses to change a Script tree:
- insert_command / append_command: place a new command in a block
- remove_command: detach a command from its block
- replace_arguments: swap a command's argument list
- move_command: re-parent a command, never duplicating the reference
- declare_capability / require_capabilities: maintain the require list
- set_rule_name: the '# rule:[Name]' comment mail clients use to label rules
- check_tree: full ownership and reachability audit

Every operation checks first and mutates second: it either succeeds with the
tree intact or raises MutationError (or LimitExceeded) without touching
anything. Commands are tracked by identity, never by equality.
"""

import logging
from enum import Enum
from typing import Iterable, List, Optional, Set, Union

from ..capabilities import CapabilityRegistry, CommandKind, comparator_capability
from ..errors import LimitExceeded, MutationError
from ..parser.parser import (
    DEFAULT_MAX_DEPTH,
    RULE_NAME_RE,
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

logger = logging.getLogger(__name__)

ARGUMENT_TYPES = (StringArgument, StringListArgument, NumberArgument, TagArgument, Test)


class Invariant(Enum):
    """Tree invariants a rejected edit can name."""
    SINGLE_OWNER = "single-owner"     # a command or block has exactly one parent
    ACYCLIC = "acyclic"               # a command never ends up inside itself
    MEMBERSHIP = "membership"         # the command really is where it claims to be
    POSITION = "position"             # index within the target block
    REQUIRE_FIRST = "require-first"   # require leads the script and owns the capability list
    ARGUMENTS = "arguments"           # argument list shape


def _fail(invariant: Invariant, message: str, command: Optional[Command] = None) -> MutationError:
    return MutationError(invariant.value, message, command)


# =========================================================================
# TREE HELPERS
# =========================================================================

def _owning_script(block: Block) -> Optional[Script]:
    """Walk parent pointers up to the Script, if the block is attached to one."""
    node: Union[Block, Command, Script, None] = block
    seen: Set[int] = set()
    while node is not None and id(node) not in seen:
        seen.add(id(node))
        if isinstance(node, Script):
            return node
        node = node.parent
    return None


def _level(block: Block) -> int:
    """Number of commands enclosing a block (0 for the top level)."""
    level = 0
    node = block.parent
    seen: Set[int] = set()
    while isinstance(node, Command) and id(node) not in seen:
        seen.add(id(node))
        level += 1
        node = node.parent.parent if node.parent is not None else None
    return level


def _test_height(test: Test) -> int:
    return 1 + max((_test_height(t) for t in test.tests), default=0)


def _arguments_height(arguments: Iterable[Argument]) -> int:
    return max((_test_height(a) for a in arguments if isinstance(a, Test)), default=0)


def _height(command: Command) -> int:
    """Nesting levels a command occupies, counting blocks and tests."""
    height = _arguments_height(command.arguments)
    if command.block is not None:
        children = max((_height(c) for c in command.block.commands), default=0)
        height = max(height, 1 + children)
    return height


def _check_depth(level: int, command: Command, max_depth: int) -> None:
    if level + _height(command) > max_depth:
        raise LimitExceeded(max_depth, command.line, command.column)


def _subtree_blocks(command: Command) -> List[Block]:
    blocks = []
    for node in command.walk():
        if node.block is not None:
            blocks.append(node.block)
    return blocks


def _contains_block(command: Command, block: Block) -> bool:
    return any(candidate is block for candidate in _subtree_blocks(command))


def _is_attached(command: Command) -> bool:
    return command.parent is not None and any(c is command for c in command.parent.commands)


def _check_require_slot(block: Block, index: int, command: Command) -> None:
    """Nothing may be placed in front of the script's require command."""
    script = _owning_script(block)
    if script is None or block is not script.block:
        return
    require = script.require_command
    if require is not None and require is not command and index == 0:
        raise _fail(Invariant.REQUIRE_FIRST, "require must stay the first command", command)


def _check_arguments(arguments: List[Argument], command: Command) -> None:
    seen: Set[int] = set()
    for i, arg in enumerate(arguments):
        if not isinstance(arg, ARGUMENT_TYPES):
            raise _fail(Invariant.ARGUMENTS, f"Not an argument: {arg!r}", command)
        if id(arg) in seen:
            raise _fail(Invariant.SINGLE_OWNER, f"Argument {arg!r} appears twice", command)
        seen.add(id(arg))
        if isinstance(arg, Test) and i != len(arguments) - 1:
            raise _fail(Invariant.ARGUMENTS, "A test must be the last argument", command)


def _tests_in_use(script: Optional[Script], skip: Optional[Command]) -> Set[int]:
    """Identities of every test reachable from the script, except under `skip`."""
    in_use: Set[int] = set()
    if script is None:
        return in_use
    for command in script.walk():
        if command is skip:
            continue
        for arg in command.arguments:
            if isinstance(arg, Test):
                in_use.update(id(t) for t in arg.walk())
    return in_use


def _check_detached(script: Optional[Script], command: Command) -> None:
    """Nothing in the subtree of an incoming command may already have an owner."""
    commands: Set[int] = set()
    blocks: Set[int] = set()
    if script is not None:
        commands = {id(c) for c in script.walk()}
        blocks = {id(script.block)} | {id(c.block) for c in script.walk() if c.block is not None}
    tests = _tests_in_use(script, None)
    seen: Set[int] = set()
    for node in command.walk():
        if id(node) in commands:
            raise _fail(Invariant.SINGLE_OWNER, f"{node!r} is already in the script", command)
        if node.block is not None and id(node.block) in blocks:
            raise _fail(Invariant.SINGLE_OWNER, f"The block of {node!r} is already in the script", command)
        for arg in node.arguments:
            if not isinstance(arg, Test):
                continue
            ids = [id(t) for t in arg.walk()]
            if any(i in tests or i in seen for i in ids):
                raise _fail(Invariant.SINGLE_OWNER, f"{arg!r} already belongs to another command", command)
            seen.update(ids)


# =========================================================================
# COMMAND OPERATIONS
# =========================================================================

def insert_command(block: Block, index: int, command: Command,
                   max_depth: int = DEFAULT_MAX_DEPTH) -> Command:
    """Insert a detached command into `block` at `index`."""
    if command.parent is not None:
        raise _fail(Invariant.SINGLE_OWNER,
                    f"{command!r} already belongs to a block; use move_command", command)
    if _contains_block(command, block):
        raise _fail(Invariant.ACYCLIC, f"Cannot insert {command!r} inside itself", command)
    _check_detached(_owning_script(block), command)
    if not 0 <= index <= len(block.commands):
        raise _fail(Invariant.POSITION, f"Index {index} out of range 0..{len(block.commands)}", command)
    if command.kind is CommandKind.REQUIRE:
        raise _fail(Invariant.REQUIRE_FIRST,
                    "require is managed through declare_capability", command)
    _check_arguments(command.arguments, command)
    _check_require_slot(block, index, command)
    _check_depth(_level(block), command, max_depth)

    block.commands.insert(index, command)
    command.parent = block
    if command.block is not None:
        command.block.parent = command
    logger.debug("Inserted %r at %d", command, index)
    return command


def append_command(block: Block, command: Command, max_depth: int = DEFAULT_MAX_DEPTH) -> Command:
    """Insert a detached command at the end of `block`."""
    return insert_command(block, len(block.commands), command, max_depth)


def remove_command(command: Command) -> Command:
    """
    Detach a command from its block and return it.

    Removing the script's require command also clears the declared
    capability list, since that list belongs to it.
    """
    if not _is_attached(command):
        raise _fail(Invariant.MEMBERSHIP, f"{command!r} is not in any block", command)

    block = command.parent
    script = _owning_script(block)
    if script is not None and command is script.require_command:
        script.capabilities = []

    del block.commands[block.index(command)]
    command.parent = None
    logger.debug("Removed %r", command)
    return command


def replace_arguments(command: Command, arguments: List[Argument],
                      max_depth: int = DEFAULT_MAX_DEPTH) -> Command:
    """Replace a command's argument list, keeping the new order exactly."""
    arguments = list(arguments)
    script = _owning_script(command.parent) if command.parent is not None else None
    if script is not None and command is script.require_command:
        raise _fail(Invariant.REQUIRE_FIRST,
                    "The require list is edited through declare_capability", command)
    _check_arguments(arguments, command)

    in_use = _tests_in_use(script, command)
    for arg in arguments:
        if isinstance(arg, Test) and any(id(t) in in_use for t in arg.walk()):
            raise _fail(Invariant.SINGLE_OWNER, f"{arg!r} already belongs to another command", command)

    level = _level(command.parent) if command.parent is not None else 0
    if level + _arguments_height(arguments) > max_depth:
        raise LimitExceeded(max_depth, command.line, command.column)

    command.arguments = arguments
    logger.debug("Replaced arguments of %r", command)
    return command


def move_command(command: Command, block: Block, index: int,
                 max_depth: int = DEFAULT_MAX_DEPTH) -> Command:
    """
    Move an attached command into `block` at `index`.

    `index` is the position in the target block after the command has been
    taken out of its current place, so moving within one block works the
    same way as list.pop() followed by list.insert().
    """
    if not _is_attached(command):
        raise _fail(Invariant.MEMBERSHIP, f"{command!r} is not in any block", command)
    if _contains_block(command, block):
        raise _fail(Invariant.ACYCLIC, f"Cannot move {command!r} inside itself", command)

    source = command.parent
    source_script = _owning_script(source)
    if source_script is not None and command is source_script.require_command:
        raise _fail(Invariant.REQUIRE_FIRST, "require cannot be moved", command)

    size = len(block.commands) - (1 if block is source else 0)
    if not 0 <= index <= size:
        raise _fail(Invariant.POSITION, f"Index {index} out of range 0..{size}", command)
    _check_require_slot(block, index, command)
    _check_depth(_level(block), command, max_depth)

    del source.commands[source.index(command)]
    block.commands.insert(index, command)
    command.parent = block
    logger.debug("Moved %r to index %d", command, index)
    return command


# =========================================================================
# CAPABILITIES AND RULE NAMES
# =========================================================================

def declare_capability(script: Script, name: str) -> bool:
    """
    Add a capability to the script's require list.

    Creates the require command when the script has none. Returns False if
    the capability was already declared.
    """
    name = name.strip()
    if not name:
        raise _fail(Invariant.ARGUMENTS, "Capability name must not be empty")

    require = script.require_command
    if require is None and script.commands and script.commands[0].kind is CommandKind.REQUIRE:
        raise _fail(Invariant.REQUIRE_FIRST,
                    "The leading require command does not hold a plain capability list",
                    script.commands[0])

    if name.lower() in (c.lower() for c in script.capabilities):
        return False

    if require is None:
        require = Command(name="require")
        script.block.commands.insert(0, require)
        require.parent = script.block
    script.capabilities.append(name)
    logger.debug("Declared capability %s", name)
    return True


def used_capabilities(script: Script, registry: Optional[CapabilityRegistry] = None) -> List[str]:
    """Capabilities the commands, tests, tags and comparators of a script depend on."""
    registry = registry or CapabilityRegistry()
    used: List[str] = []

    def add(name: Optional[str]) -> None:
        if name and name not in used:
            used.append(name)

    def visit(name: str, arguments: List[Argument]) -> None:
        spec = registry.lookup(name)
        if spec is None:
            return
        add(spec.capability)
        for i, arg in enumerate(arguments):
            if not isinstance(arg, TagArgument):
                continue
            tag = spec.tags.get(arg.name)
            if tag is not None:
                add(tag.capability)
            if arg.name == ":comparator" and i + 1 < len(arguments):
                value = arguments[i + 1]
                if isinstance(value, StringArgument):
                    add(comparator_capability(value.value))

    for command in script.walk():
        visit(command.name, command.arguments)
        test = command.test
        if test is not None:
            for nested in test.walk():
                visit(nested.name, nested.arguments)
    return used


def require_capabilities(script: Script, registry: Optional[CapabilityRegistry] = None) -> List[str]:
    """Declare every capability the script uses. Returns the newly added names."""
    added = []
    for name in used_capabilities(script, registry):
        if declare_capability(script, name):
            added.append(name)
    return added


def set_rule_name(command: Command, name: Optional[str]) -> Command:
    """Label a command with a '# rule:[Name]' comment, or drop the label with None."""
    if name is not None and ("]" in name or "\n" in name or "\r" in name):
        raise _fail(Invariant.ARGUMENTS, f"Invalid rule name {name!r}", command)

    comments = [c for c in command.comments if not RULE_NAME_RE.match(c.text)]
    if name is not None:
        comments.append(Comment(text=f" rule:[{name}]"))
    command.comments = comments
    return command


# =========================================================================
# AUDIT
# =========================================================================

def check_tree(script: Script) -> int:
    """
    Audit the whole tree. Returns the number of reachable commands.

    Raises MutationError naming the first broken invariant: a block or
    command reachable twice or through a cycle, a stale parent pointer, a
    shared test, or a require command away from the top.
    """
    if script.block.parent is not script:
        raise _fail(Invariant.SINGLE_OWNER, "Top-level block does not point back to the script")

    seen_blocks: Set[int] = set()
    seen_commands: Set[int] = set()
    seen_tests: Set[int] = set()
    stack = [script.block]

    while stack:
        block = stack.pop()
        if id(block) in seen_blocks:
            raise _fail(Invariant.ACYCLIC, f"{block!r} is reachable twice")
        seen_blocks.add(id(block))

        for position, command in enumerate(block.commands):
            if id(command) in seen_commands:
                raise _fail(Invariant.SINGLE_OWNER, f"{command!r} is reachable twice", command)
            seen_commands.add(id(command))
            if command.parent is not block:
                raise _fail(Invariant.SINGLE_OWNER, f"{command!r} has a stale parent", command)
            if command.kind is CommandKind.REQUIRE and not command.arguments and (
                    block is not script.block or position != 0):
                raise _fail(Invariant.REQUIRE_FIRST, "Capability require is not the first command", command)

            for arg in command.arguments:
                if not isinstance(arg, Test):
                    continue
                for test in arg.walk():
                    if id(test) in seen_tests:
                        raise _fail(Invariant.SINGLE_OWNER, f"{test!r} is shared", command)
                    seen_tests.add(id(test))

            if command.block is not None:
                if command.block.parent is not command:
                    raise _fail(Invariant.SINGLE_OWNER, f"Block of {command!r} has a stale parent", command)
                stack.append(command.block)

    lowered = [c.lower() for c in script.capabilities]
    if len(set(lowered)) != len(lowered):
        raise _fail(Invariant.REQUIRE_FIRST, "Duplicate capability in the require list")
    if script.capabilities and script.require_command is None:
        raise _fail(Invariant.REQUIRE_FIRST, "Capabilities declared without a require command")

    return len(seen_commands)
