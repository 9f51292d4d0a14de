"""
Tests for the canonical formatter.
"""

import pytest

from sievekit.parser import Block, Command, Script, StringArgument, parse_file, parse_source
from sievekit.tools.format import (
    FormatOptions,
    SieveFormatter,
    check_formatted,
    encode_script,
    format_file,
    format_script,
    multiline_string,
    quote_string,
)

from conftest import roundtrip


class TestCanonicalLayout:
    """Exact output for small scripts."""

    def test_require_and_block(self):
        source = 'require ["fileinto"]; if header :contains "subject" "x" { fileinto "INBOX.x"; stop; }'
        assert roundtrip(source) == (
            'require ["fileinto"];\n'
            '\n'
            'if header :contains "subject" "x" {\n'
            '    fileinto "INBOX.x";\n'
            '    stop;\n'
            '}\n'
        )

    def test_require_alone(self):
        assert roundtrip('require "vacation";') == 'require ["vacation"];\n'

    def test_empty_require(self):
        assert roundtrip('require [];') == 'require [];\n'

    def test_capabilities_keep_declaration_order(self):
        assert roundtrip('require ["variables", "body", "fileinto"];') == \
            'require ["variables", "body", "fileinto"];\n'

    def test_elsif_else_on_own_lines(self):
        source = 'if true { keep; } elsif false { stop; } else { discard; }'
        assert roundtrip(source) == (
            'if true {\n'
            '    keep;\n'
            '}\n'
            'elsif false {\n'
            '    stop;\n'
            '}\n'
            'else {\n'
            '    discard;\n'
            '}\n'
        )

    def test_test_list_split(self):
        source = 'if anyof (header :is "a" "b", true) { keep; }'
        assert roundtrip(source) == (
            'if anyof (\n'
            '    header :is "a" "b",\n'
            '    true\n'
            ') {\n'
            '    keep;\n'
            '}\n'
        )

    def test_single_test_list_inline(self):
        assert roundtrip('if anyof (true) { keep; }') == 'if anyof (true) {\n    keep;\n}\n'

    def test_test_list_on_one_line(self):
        options = FormatOptions(split_test_lists=False)
        script = parse_source('if allof (true, false) { keep; }')
        assert format_script(script, options) == 'if allof (true, false) {\n    keep;\n}\n'

    def test_not_is_inline(self):
        assert roundtrip('if not exists "x" { keep; }') == 'if not exists "x" {\n    keep;\n}\n'

    def test_nested_indentation(self):
        source = 'if true { if false { keep; } }'
        assert roundtrip(source) == (
            'if true {\n'
            '    if false {\n'
            '        keep;\n'
            '    }\n'
            '}\n'
        )

    def test_custom_indent(self):
        script = parse_source('if true { keep; }')
        assert format_script(script, FormatOptions(indent="\t")) == 'if true {\n\tkeep;\n}\n'

    def test_numbers_and_tags(self):
        assert roundtrip('if size :OVER 100k { discard; }') == 'if size :over 100K {\n    discard;\n}\n'

    def test_empty_script(self):
        assert roundtrip('') == ''


class TestStrings:
    """Quoting and the text: form."""

    def test_quote_string_escapes(self):
        assert quote_string('a"b\\c') == '"a\\"b\\\\c"'

    def test_multiline_string_dot_stuffing(self):
        assert multiline_string("a\n.b\n.") == "text:\na\n..b\n..\n.\n"

    def test_newline_uses_multiline(self):
        assert roundtrip('reject "a\nb";') == 'reject text:\na\nb\n.\n;\n'

    def test_multiline_roundtrip(self):
        source = 'reject text:\nline1\n..line2\n.\n;\n'
        assert roundtrip(source) == source

    def test_threshold(self):
        options = FormatOptions(multiline_threshold=5)
        assert format_script(parse_source('reject "abcdefgh";'), options) == 'reject text:\nabcdefgh\n.\n;\n'
        assert format_script(parse_source('reject "abc";'), options) == 'reject "abc";\n'

    def test_carriage_return_stays_quoted(self):
        script = parse_source('reject "a\rb";')
        text = format_script(script)
        assert text == 'reject "a\\\rb";\n'
        assert parse_source(text) == script

    def test_quote_string_escapes_carriage_return(self):
        assert quote_string("a\r\nb") == '"a\\\r\nb"'

    @pytest.mark.parametrize("newline", ["\n", "\r\n"])
    def test_crlf_value_survives(self, newline):
        command = Command(name="reject", arguments=[StringArgument(value="line1\r\nline2")])
        script = Script(block=Block(commands=[command]))
        text = format_script(script, FormatOptions(newline=newline))
        assert parse_source(text).commands[0].arguments[0].value == "line1\r\nline2"

    def test_escaped_crlf_roundtrip(self):
        script = parse_source('keep "a\\\r\nb";')
        assert script.commands[0].arguments[0].value == "a\r\nb"
        assert parse_source(format_script(script)) == script

    def test_multiline_inside_list(self):
        script = parse_source('if header :is "x" ["a\nb", "c"] { keep; }')
        text = format_script(script)
        assert 'text:\na\nb\n.\n,"c"]' in text
        assert parse_source(text) == script

    def test_multiline_inside_test_list(self):
        script = parse_source('if anyof (header :is "x" "a\nb", true) { keep; }')
        text = format_script(script)
        assert parse_source(text) == script
        assert format_script(parse_source(text)) == text


class TestComments:
    """Comments are re-emitted as # lines."""

    def test_rule_comment(self):
        assert roundtrip('# rule:[x]\nkeep;') == '# rule:[x]\nkeep;\n'

    def test_comments_dropped_on_request(self):
        script = parse_source('# rule:[x]\nkeep;')
        assert format_script(script, FormatOptions(include_comments=False)) == 'keep;\n'

    def test_bracket_comment_becomes_hash_lines(self):
        assert roundtrip('/* one\ntwo */\nkeep;') == '# one\n#two\nkeep;\n'

    def test_trailing_block_comment(self):
        assert roundtrip('if true { keep; # why\n}') == 'if true {\n    keep;\n    # why\n}\n'


class TestLineEndings:
    """CRLF output."""

    def test_crlf(self):
        script = parse_source('if true { reject "a\nb"; }')
        text = format_script(script, FormatOptions(newline="\r\n"))
        assert text == 'if true {\r\n    reject text:\r\na\r\nb\r\n.\r\n;\r\n}\r\n'
        assert parse_source(text) == script

    def test_invalid_newline(self):
        with pytest.raises(ValueError):
            FormatOptions(newline="\r")

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            FormatOptions(multiline_threshold=0)

    def test_encode_charset(self):
        script = parse_source('reject "é";')
        assert encode_script(script, charset="latin-1") == b'reject "\xe9";\n'
        assert encode_script(script) == 'reject "é";\n'.encode("utf-8")


class TestRoundTrip:
    """serialize(parse(s)) reparses to the same tree and is a fixed point."""

    @pytest.mark.parametrize("newline", ["\n", "\r\n"])
    def test_fixtures(self, fixture_scripts, newline):
        options = FormatOptions(newline=newline)
        for path in fixture_scripts:
            original = parse_file(str(path))
            text = format_script(original, options)
            reparsed = parse_source(text)
            assert reparsed == original, path.name
            assert reparsed.capabilities == original.capabilities
            assert format_script(reparsed, options) == text, path.name

    def test_comments_survive(self, filters_script):
        text = format_script(filters_script)
        assert "# rule:[spam]\nif anyof (\n" in text
        assert parse_source(text).commands[1].rule_name == "spam"

    def test_format_string(self):
        formatter = SieveFormatter()
        assert formatter.format_string('keep ;stop;') == 'keep;\nstop;\n'

    def test_check_formatted(self, tmp_path):
        canonical = tmp_path / "canonical.sieve"
        canonical.write_text('require ["fileinto"];\n\nfileinto "x";\n', encoding="utf-8")
        messy = tmp_path / "messy.sieve"
        messy.write_text('require "fileinto"; fileinto "x";', encoding="utf-8")
        assert check_formatted(canonical)
        assert not check_formatted(messy)

    def test_check_formatted_charset(self, tmp_path):
        path = tmp_path / "latin.sieve"
        path.write_bytes(b'reject "\xe9";\n')
        assert check_formatted(path, charset="latin-1")
        assert format_file(path, charset="latin-1") == 'reject "\xe9";\n'
