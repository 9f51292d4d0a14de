"""
sievekit - Sieve Script Toolkit

Parse, validate, edit and canonically re-serialize Sieve (RFC 5228) mail
filtering scripts.
"""

__version__ = "0.1.0"
__author__ = "sievekit contributors"

from sievekit.capabilities import CapabilityRegistry
from sievekit.errors import LimitExceeded, MutationError, SieveError, SieveSyntaxError
from sievekit.parser import parse_bytes, parse_file, parse_source, tokenize
from sievekit.tools.format import FormatOptions, encode_script, format_script
from sievekit.tools.lint import validate_script
