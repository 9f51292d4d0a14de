"""
Sieve Script Validator

Checks a parsed Script against the capability registry:
- Unknown commands, tests and tagged arguments
- Commands, tests, tags and comparators used without their capability
  having been declared by require
- Missing or mistyped arguments
- require / elsif / else in the wrong place
- Declared capabilities the target server does not offer

Validation never mutates the tree and never raises for a bad script: it
returns the list of problems found, in tree order. An empty list means the
script is valid.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set, Union

from ..capabilities import (
    ArgType,
    CapabilityRegistry,
    CommandKind,
    CommandSpec,
    comparator_capability,
)
from ..parser.parser import (
    Argument,
    Block,
    Command,
    NumberArgument,
    Script,
    StringArgument,
    StringListArgument,
    TagArgument,
    Test,
)

logger = logging.getLogger(__name__)


class ValidationKind(Enum):
    """What kind of problem a ValidationError reports."""
    UNKNOWN_COMMAND = "unknown-command"
    UNKNOWN_TEST = "unknown-test"
    UNKNOWN_TAG = "unknown-tag"
    MISSING_CAPABILITY = "missing-capability"
    UNSUPPORTED_CAPABILITY = "unsupported-capability"
    MISSING_ARGUMENT = "missing-argument"
    WRONG_ARGUMENT = "wrong-argument"
    MISPLACED_COMMAND = "misplaced-command"


@dataclass
class ValidationError:
    """A single problem found in a script."""
    kind: ValidationKind
    detail: str
    line: int = 0
    column: int = 0
    command: str = ""                 # name of the offending command or test
    capability: Optional[str] = None  # for capability related problems
    node: Optional[object] = field(default=None, compare=False, repr=False)

    @property
    def location(self) -> str:
        return f"{self.line}:{self.column}"

    def __str__(self):
        msg = f"[{self.kind.value}] {self.location}: {self.detail}"
        if self.capability:
            msg += f" (capability '{self.capability}')"
        return msg


Node = Union[Command, Test]


class SieveValidator:
    """
    Walks a Script and reports problems.

    Usage:
        validator = SieveValidator(CapabilityRegistry(server_capabilities=caps))
        errors = validator.validate(script)
    """

    def __init__(self, registry: Optional[CapabilityRegistry] = None):
        self.registry = registry or CapabilityRegistry()

    def validate(self, script: Script) -> List[ValidationError]:
        """Validate a Script and return all problems found."""
        errors: List[ValidationError] = []
        declared = self._declared_capabilities(script)

        self._check_server_support(script, errors)
        self._check_block(script, script.block, declared, errors, top_level=True)

        logger.debug("Validated %s: %d problems", script.filename, len(errors))
        return errors

    def _declared_capabilities(self, script: Script) -> Set[str]:
        """Capabilities of the leading run of require commands."""
        declared = {name.lower() for name in script.capabilities}
        for command in script.commands:
            if command.kind is not CommandKind.REQUIRE:
                break
            declared.update(name.lower() for name in self._string_values(command.arguments))
        return declared

    def _string_values(self, arguments: List[Argument]) -> List[str]:
        values: List[str] = []
        for arg in arguments:
            if isinstance(arg, StringArgument):
                values.append(arg.value)
            elif isinstance(arg, StringListArgument):
                values.extend(arg.values)
        return values

    def _check_server_support(self, script: Script, errors: List[ValidationError]) -> None:
        if self.registry.server_capabilities is None:
            return
        require = script.require_command
        line, column = (require.line, require.column) if require else (0, 0)
        for name in script.capabilities:
            if not self.registry.is_supported(name):
                errors.append(ValidationError(
                    kind=ValidationKind.UNSUPPORTED_CAPABILITY,
                    detail=f"Capability '{name}' is not supported by the server",
                    line=line, column=column, command="require",
                    capability=name, node=require,
                ))

    def _check_block(self, script: Script, block: Block, declared: Set[str],
                     errors: List[ValidationError], top_level: bool = False) -> None:
        previous: Optional[Command] = None
        seen_other = False

        for command in block.commands:
            kind = command.kind

            if kind is CommandKind.REQUIRE:
                if not top_level or seen_other:
                    errors.append(self._error(
                        ValidationKind.MISPLACED_COMMAND, command,
                        "require must come before any other command"))
            else:
                seen_other = True

            if kind in (CommandKind.ELSIF, CommandKind.ELSE):
                if previous is None or previous.kind not in (CommandKind.IF, CommandKind.ELSIF):
                    errors.append(self._error(
                        ValidationKind.MISPLACED_COMMAND, command,
                        f"'{command.name}' must follow 'if' or 'elsif'"))

            # The capability list of the leading require lives on the Script
            if command is not script.require_command:
                if kind is CommandKind.REQUIRE:
                    self._check_capability_names(self._string_values(command.arguments), command, errors)
                self._check_node(command, declared, errors, is_test=False)

            if command.block is not None:
                self._check_block(script, command.block, declared, errors)
            previous = command

    def _check_capability_names(self, names: List[str], command: Command,
                                errors: List[ValidationError]) -> None:
        if self.registry.server_capabilities is None:
            return
        for name in names:
            if not self.registry.is_supported(name):
                errors.append(self._error(
                    ValidationKind.UNSUPPORTED_CAPABILITY, command,
                    f"Capability '{name}' is not supported by the server", capability=name))

    def _check_node(self, node: Node, declared: Set[str],
                    errors: List[ValidationError], is_test: bool) -> None:
        """Check one command or test, then recurse into its tests."""
        spec = self.registry.lookup(node.name)
        nested = list(node.tests) if is_test else [a for a in node.arguments if isinstance(a, Test)]

        if spec is None:
            kind = ValidationKind.UNKNOWN_TEST if is_test else ValidationKind.UNKNOWN_COMMAND
            what = "test" if is_test else "command"
            errors.append(self._error(kind, node, f"Unknown {what} '{node.name}'"))
        else:
            if spec.is_test != is_test:
                if spec.is_test:
                    detail = f"'{node.name}' is a test and cannot be used as a command"
                else:
                    detail = f"'{node.name}' is a command and cannot be used as a test"
                errors.append(self._error(ValidationKind.MISPLACED_COMMAND, node, detail))
            if spec.capability and spec.capability not in declared:
                errors.append(self._error(
                    ValidationKind.MISSING_CAPABILITY, node,
                    f"'{node.name}' requires capability '{spec.capability}'",
                    capability=spec.capability))
            self._check_arguments(node, spec, declared, errors, is_test)

        for test in nested:
            self._check_node(test, declared, errors, is_test=True)

    def _check_arguments(self, node: Node, spec: CommandSpec, declared: Set[str],
                         errors: List[ValidationError], is_test: bool) -> None:
        positional: List[Argument] = []
        tags_seen: Set[str] = set()
        args = node.arguments
        i = 0

        while i < len(args):
            arg = args[i]
            i += 1
            if not isinstance(arg, TagArgument):
                positional.append(arg)
                continue

            tag = spec.tags.get(arg.name)
            if tag is None:
                errors.append(self._error(
                    ValidationKind.UNKNOWN_TAG, arg,
                    f"'{node.name}' does not accept tag '{arg.name}'", command=node.name))
                continue

            tags_seen.add(tag.name)
            if tag.capability and tag.capability not in declared:
                errors.append(self._error(
                    ValidationKind.MISSING_CAPABILITY, arg,
                    f"Tag '{arg.name}' requires capability '{tag.capability}'",
                    command=node.name, capability=tag.capability))

            if tag.value is None:
                continue
            value = args[i] if i < len(args) else None
            if value is None or isinstance(value, TagArgument) or not self._matches(value, tag.value):
                errors.append(self._error(
                    ValidationKind.MISSING_ARGUMENT, arg,
                    f"Tag '{arg.name}' expects a {tag.value.value} value", command=node.name))
                continue
            i += 1
            if tag.name == ":comparator":
                self._check_comparator(value, node, declared, errors)

        for group in spec.required_tags:
            if not group & tags_seen:
                options = " or ".join(sorted(group))
                errors.append(self._error(
                    ValidationKind.MISSING_ARGUMENT, node, f"'{node.name}' requires {options}"))

        if is_test:
            self._check_nested_tests(node, spec, errors)
            expected = [t for t in spec.positional if t not in (ArgType.TEST, ArgType.TEST_LIST)]
            required = spec.required_positional - (len(spec.positional) - len(expected))
        else:
            expected = list(spec.positional)
            required = spec.required_positional
        self._check_positional(node, positional, expected, max(required, 0), errors)

    def _check_positional(self, node: Node, positional: List[Argument], expected: List[ArgType],
                          required: int, errors: List[ValidationError]) -> None:
        if len(positional) < required:
            errors.append(self._error(
                ValidationKind.MISSING_ARGUMENT, node,
                f"'{node.name}' expects {required} argument(s), got {len(positional)}"))
            return
        if len(positional) > len(expected):
            errors.append(self._error(
                ValidationKind.WRONG_ARGUMENT, positional[len(expected)],
                f"Unexpected extra argument to '{node.name}'", command=node.name))
            return

        # Optional positionals come first, so fewer arguments align to the end
        aligned = expected[len(expected) - len(positional):]
        for arg, arg_type in zip(positional, aligned):
            if not self._matches(arg, arg_type):
                errors.append(self._error(
                    ValidationKind.WRONG_ARGUMENT, arg,
                    f"'{node.name}' expects a {arg_type.value} here", command=node.name))

    def _check_nested_tests(self, test: Test, spec: CommandSpec,
                            errors: List[ValidationError]) -> None:
        if ArgType.TEST_LIST in spec.positional:
            if not test.tests:
                errors.append(self._error(
                    ValidationKind.MISSING_ARGUMENT, test, f"'{test.name}' expects a test list"))
        elif ArgType.TEST in spec.positional:
            if len(test.tests) != 1:
                errors.append(self._error(
                    ValidationKind.WRONG_ARGUMENT if test.tests else ValidationKind.MISSING_ARGUMENT,
                    test, f"'{test.name}' expects exactly one test, got {len(test.tests)}"))
        elif test.tests:
            errors.append(self._error(
                ValidationKind.WRONG_ARGUMENT, test, f"'{test.name}' does not take nested tests"))

    def _check_comparator(self, value: Argument, node: Node, declared: Set[str],
                          errors: List[ValidationError]) -> None:
        if not isinstance(value, StringArgument):
            return
        capability = comparator_capability(value.value)
        if capability and capability not in declared:
            errors.append(self._error(
                ValidationKind.MISSING_CAPABILITY, value,
                f"Comparator '{value.value}' requires capability '{capability}'",
                command=node.name, capability=capability))

    @staticmethod
    def _matches(arg: Argument, arg_type: ArgType) -> bool:
        if arg_type is ArgType.STRING:
            return isinstance(arg, StringArgument)
        if arg_type is ArgType.STRING_LIST:
            return isinstance(arg, (StringArgument, StringListArgument))
        if arg_type is ArgType.NUMBER:
            return isinstance(arg, NumberArgument)
        if arg_type is ArgType.TEST:
            return isinstance(arg, Test)
        return False

    @staticmethod
    def _error(kind: ValidationKind, node, detail: str, command: Optional[str] = None,
               capability: Optional[str] = None) -> ValidationError:
        return ValidationError(
            kind=kind,
            detail=detail,
            line=getattr(node, "line", 0),
            column=getattr(node, "column", 0),
            command=command if command is not None else getattr(node, "name", ""),
            capability=capability,
            node=node,
        )


def validate_script(script: Script, registry: Optional[CapabilityRegistry] = None) -> List[ValidationError]:
    """Convenience function to validate a Script."""
    return SieveValidator(registry).validate(script)


def is_valid(script: Script, registry: Optional[CapabilityRegistry] = None) -> bool:
    return not validate_script(script, registry)
