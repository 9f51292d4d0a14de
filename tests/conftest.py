"""
Pytest configuration and shared fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Import sievekit modules
from sievekit.parser import parse_file, parse_source
from sievekit.parser.parser import Block, Command, Script
from sievekit.tools.format import format_script


# =============================================================================
# PATH FIXTURES
# =============================================================================

@pytest.fixture
def fixtures_dir():
    """Path to test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def fixture_scripts(fixtures_dir):
    """All .sieve fixture files."""
    return sorted(fixtures_dir.glob("*.sieve"))


# =============================================================================
# PARSED SCRIPT FIXTURES
# =============================================================================

@pytest.fixture
def parsed_fixtures(fixture_scripts):
    """Parse all fixture files, return dict of {filename: Script}."""
    return {path.name: parse_file(str(path)) for path in fixture_scripts}


@pytest.fixture
def filters_script(fixtures_dir):
    """The mail client style rule set with named rules."""
    return parse_file(str(fixtures_dir / "filters.sieve"))


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def roundtrip(source: str) -> str:
    """Parse and format a script."""
    return format_script(parse_source(source))


def all_blocks(script: Script) -> list:
    """Every block in a script, top level first."""
    blocks = [script.block]
    for command in script.walk():
        if command.block is not None:
            blocks.append(command.block)
    return blocks


def find_command(script: Script, name: str) -> Command:
    """First command (any depth) with the given name."""
    for command in script.walk():
        if command.name == name:
            return command
    return None


def find_rule(script: Script, rule_name: str) -> Command:
    """Command labelled with a '# rule:[...]' comment."""
    for command in script.walk():
        if command.rule_name == rule_name:
            return command
    return None


def block_names(block: Block) -> list:
    return [c.name for c in block.commands]
