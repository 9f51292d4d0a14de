"""
Tests for the sievekit parser module.
"""

import pytest

from sievekit.capabilities import CommandKind
from sievekit.errors import LimitExceeded, SieveSyntaxError
from sievekit.parser import (
    Block,
    Command,
    NumberArgument,
    Script,
    StringArgument,
    StringForm,
    StringListArgument,
    TagArgument,
    Test,
    parse_bytes,
    parse_source,
)

from conftest import block_names, find_command, find_rule


class TestBasicParsing:
    """Test basic parsing functionality."""

    def test_empty_source(self):
        """Parse empty source."""
        script = parse_source("")
        assert isinstance(script, Script)
        assert script.commands == []
        assert script.capabilities == []

    def test_simple_action(self):
        script = parse_source('keep;')
        assert len(script.commands) == 1
        assert script.commands[0].name == "keep"
        assert script.commands[0].kind is CommandKind.KEEP
        assert script.commands[0].block is None

    def test_argument_variants(self):
        """Every argument form is kept in order."""
        script = parse_source('foo "a" ["b", "c"] 10M :tag text:\nd\n.\n;')
        args = script.commands[0].arguments
        assert args == [
            StringArgument(value="a"),
            StringListArgument(values=["b", "c"]),
            NumberArgument(value=10, unit="M"),
            TagArgument(name=":tag"),
            StringArgument(value="d"),
        ]
        assert args[4].form is StringForm.MULTILINE
        assert args[2].octets == 10 * 1024 * 1024

    def test_string_form_not_part_of_equality(self):
        quoted = parse_source('fileinto "x";')
        multiline = parse_source('fileinto text:\nx\n.\n;')
        assert quoted == multiline

    def test_case_insensitive_names(self):
        script = parse_source('IF TRUE { KEEP; }')
        command = script.commands[0]
        assert command.name == "if"
        assert command.test.name == "true"
        assert command.block.commands[0].name == "keep"

    def test_unknown_command_accepts_either_terminator(self):
        script = parse_source('Foo "x"; bar { keep; }')
        assert [c.name for c in script.commands] == ["Foo", "bar"]
        assert script.commands[0].kind is CommandKind.UNKNOWN
        assert script.commands[1].block is not None

    def test_positions(self):
        script = parse_source('keep;\nif true {\n    stop;\n}\n')
        stop = find_command(script, "stop")
        assert (stop.line, stop.column) == (3, 5)
        assert stop.offset == 20


class TestRequire:
    """The leading require command and the capability list."""

    def test_require_list(self):
        script = parse_source('require ["fileinto", "vacation"];\nkeep;')
        assert script.capabilities == ["fileinto", "vacation"]
        require = script.commands[0]
        assert require.kind is CommandKind.REQUIRE
        assert require.arguments == []
        assert script.require_command is require

    def test_require_single_string(self):
        script = parse_source('require "fileinto";')
        assert script.capabilities == ["fileinto"]

    def test_duplicates_removed_in_declaration_order(self):
        script = parse_source('require ["b", "a", "b"];')
        assert script.capabilities == ["b", "a"]

    def test_later_require_is_ordinary_command(self):
        script = parse_source('keep;\nrequire "fileinto";')
        assert script.capabilities == []
        assert script.require_command is None
        assert script.commands[1].arguments == [StringArgument(value="fileinto")]


class TestControlStructure:
    """Blocks, tests and test lists."""

    def test_if_elsif_else(self):
        script = parse_source('''
            if header :is "from" "a" { discard; }
            elsif exists "x" { keep; stop; }
            else { fileinto "b"; }
        ''')
        assert [c.name for c in script.commands] == ["if", "elsif", "else"]
        assert block_names(script.commands[1].block) == ["keep", "stop"]
        assert script.commands[2].test is None

    def test_parent_pointers(self):
        script = parse_source('if true { if false { keep; } }')
        outer = script.commands[0]
        inner = outer.block.commands[0]
        keep = inner.block.commands[0]
        assert script.block.parent is script
        assert outer.parent is script.block
        assert outer.block.parent is outer
        assert inner.parent is outer.block
        assert keep.parent is inner.block

    def test_test_arguments(self):
        script = parse_source('if header :contains ["subject"] "x" { keep; }')
        test = script.commands[0].test
        assert test.name == "header"
        assert test.arguments == [
            TagArgument(name=":contains"),
            StringListArgument(values=["subject"]),
            StringArgument(value="x"),
        ]

    def test_test_list(self):
        script = parse_source('if anyof (true, not false, size :over 1K) { keep; }')
        test = script.commands[0].test
        assert test.kind is CommandKind.ANYOF
        assert [t.name for t in test.tests] == ["true", "not", "size"]
        assert test.tests[1].tests == [Test(name="false")]

    def test_nested_not(self):
        script = parse_source('if not not exists "x" { keep; }')
        test = script.commands[0].test
        assert [t.name for t in test.walk()] == ["not", "not", "exists"]

    def test_walk_and_get_commands(self, filters_script):
        names = [c.name for c in filters_script.walk()]
        assert names[:4] == ["require", "if", "fileinto", "stop"]
        assert len(filters_script.get_commands("fileinto")) == 2


class TestComments:
    """Comments are kept next to commands."""

    def test_leading_comments(self):
        script = parse_source('# first\n# second\nkeep;')
        assert [c.text for c in script.commands[0].comments] == [" first", " second"]

    def test_trailing_comments(self):
        script = parse_source('if true {\n    keep;\n    # done\n}\n# end\n')
        assert [c.text for c in script.commands[0].block.trailing_comments] == [" done"]
        assert [c.text for c in script.block.trailing_comments] == [" end"]

    def test_comments_not_part_of_equality(self):
        assert parse_source('# a\nkeep;') == parse_source('keep;')

    def test_rule_names(self, filters_script):
        assert find_rule(filters_script, "spam") is filters_script.commands[1]
        assert find_rule(filters_script, "away").name == "if"
        assert filters_script.commands[0].rule_name is None


class TestSyntaxErrors:
    """Grammar violations carry the offending position."""

    def test_control_command_needs_block(self):
        with pytest.raises(SieveSyntaxError) as exc:
            parse_source('if true;')
        assert exc.value.offset == 7

    def test_action_rejects_block(self):
        with pytest.raises(SieveSyntaxError):
            parse_source('keep { stop; }')

    def test_missing_terminator(self):
        with pytest.raises(SieveSyntaxError):
            parse_source('keep')

    def test_unbalanced_close(self):
        with pytest.raises(SieveSyntaxError) as exc:
            parse_source('keep;\n}')
        assert exc.value.line == 2

    def test_unterminated_block_reported_at_brace(self):
        with pytest.raises(SieveSyntaxError) as exc:
            parse_source('if true { keep;')
        assert exc.value.offset == 8

    def test_command_name_expected(self):
        with pytest.raises(SieveSyntaxError):
            parse_source('"keep";')

    def test_test_list_after_command(self):
        with pytest.raises(SieveSyntaxError):
            parse_source('keep (true);')

    def test_empty_test_list(self):
        with pytest.raises(SieveSyntaxError):
            parse_source('if anyof () { keep; }')

    def test_unterminated_test_list(self):
        with pytest.raises(SieveSyntaxError):
            parse_source('if anyof (true, false { keep; }')

    def test_invalid_bytes(self):
        with pytest.raises(SieveSyntaxError) as exc:
            parse_bytes(b'keep; "\xff";')
        assert exc.value.offset == 7


class TestDepthLimit:
    """Nesting beyond the bound raises LimitExceeded."""

    def test_deep_blocks(self):
        source = "if true {" * 70 + "keep;" + "}" * 70
        with pytest.raises(LimitExceeded) as exc:
            parse_source(source)
        assert exc.value.limit == 64

    def test_deep_tests(self):
        source = "if " + "not " * 100 + "true { keep; }"
        with pytest.raises(LimitExceeded):
            parse_source(source)

    def test_configured_bound(self):
        source = "if true { keep; }"
        assert parse_source(source, max_depth=1).commands[0].name == "if"
        with pytest.raises(LimitExceeded):
            parse_source(source, max_depth=0)

    def test_deep_but_allowed(self):
        source = "if true {" * 30 + "keep;" + "}" * 30
        script = parse_source(source, max_depth=40)
        assert len(list(script.walk())) == 31


class TestFixtures:
    """All fixture scripts parse."""

    def test_parse_all(self, parsed_fixtures):
        assert set(parsed_fixtures) == {"filters.sieve", "nested.sieve", "crlf.sieve"}
        for script in parsed_fixtures.values():
            assert script.commands

    def test_crlf_fixture(self, parsed_fixtures):
        script = parsed_fixtures["crlf.sieve"]
        assert script.capabilities == ["fileinto"]
        test = script.commands[1].test
        assert test.arguments[2] == StringListArgument(values=['a "quoted" word', "back\\slash"])

    def test_multiline_in_fixture(self, filters_script):
        vacation = find_command(filters_script, "vacation")
        reason = vacation.arguments[-1]
        assert reason.value == "I am away.\n.and back soon."
        assert reason.form is StringForm.MULTILINE

    def test_block_types(self, parsed_fixtures):
        script = parsed_fixtures["nested.sieve"]
        outer = script.commands[1]
        assert isinstance(outer.block, Block)
        assert isinstance(outer.block.commands[0], Command)
        assert [c.name for c in outer.block.commands] == ["if", "else"]
