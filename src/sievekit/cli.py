"""
CLI entry point for sievekit.

Usage:
    sievekit parse <file>              Parse a script and show a summary
    sievekit tokens <file>             Show the decoded tokens of the first statement
    sievekit format <file>             Print a script in canonical form
    sievekit lint <file>               Validate a script against its capabilities
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import get_config
from .errors import SieveError


def _load(args):
    """Parse the file named on the command line with the configured limits."""
    from .parser import parse_bytes

    config = get_config(args.config)
    data = Path(args.file).read_bytes()
    return parse_bytes(data, charset=config.charset, filename=args.file, max_depth=config.max_depth)


def cmd_parse(args):
    """Parse a script and show a summary."""
    from .parser.ast_serde import script_to_dict

    try:
        script = _load(args)
    except (SieveError, OSError) as e:
        print(f"Parse error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(script_to_dict(script), indent=2))
        return 0

    print(f"Parsed: {args.file}")
    print(f"Capabilities: {', '.join(script.capabilities) or '(none)'}")
    print(f"Top-level commands: {len(script.commands)}")
    if args.verbose:
        for command in script.commands[:20]:
            label = f" [{command.rule_name}]" if command.rule_name else ""
            print(f"  - {command.name}{label}")
        if len(script.commands) > 20:
            print(f"  ... and {len(script.commands) - 20} more")
    return 0


def cmd_tokens(args):
    """Show the decoded values of the first statement."""
    from .parser import tokenize

    config = get_config(args.config)
    try:
        values = tokenize(Path(args.file).read_bytes(), mode=args.mode, charset=config.charset)
    except (SieveError, OSError, UnicodeDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(values, indent=2))
    return 0


def cmd_format(args):
    """Print a script in canonical form."""
    from .tools.format import SieveFormatter

    config = get_config(args.config)
    formatter = SieveFormatter(config.format_options())

    try:
        result = formatter.format_script(_load(args))
    except (SieveError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.check:
        original = Path(args.file).read_bytes().decode(config.charset)
        if original != result:
            print(f"Would reformat: {args.file}")
            return 1
        return 0

    if args.inplace:
        with open(args.file, 'w', encoding=config.charset, newline='') as f:
            f.write(result)
        print(f"Formatted: {args.file}")
    else:
        sys.stdout.write(result)
    return 0


def cmd_lint(args):
    """Validate a script against its declared capabilities."""
    from .capabilities import CapabilityRegistry
    from .tools.lint import SieveValidator

    config = get_config(args.config)
    try:
        script = _load(args)
    except (SieveError, OSError) as e:
        print(f"Parse error: {e}", file=sys.stderr)
        return 1

    server = config.server_capabilities
    if args.server_capabilities is not None:
        server = [name for name in args.server_capabilities.replace(",", " ").split() if name]
    issues = SieveValidator(CapabilityRegistry(server_capabilities=server)).validate(script)

    if issues:
        for issue in issues:
            print(issue)
        print(f"\n{len(issues)} issues found")
        return 1
    else:
        print("No issues found")
        return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Sieve script toolkit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    sievekit parse filters.sieve -v
    sievekit format filters.sieve --inplace
    sievekit lint filters.sieve --server-capabilities fileinto,vacation
    sievekit tokens snippet.sieve --mode 1
"""
    )
    parser.add_argument('--version', action='version', version='sievekit 0.1.0')
    parser.add_argument('--config', type=Path, help='Configuration file (YAML)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # parse
    parse_p = subparsers.add_parser('parse', help='Parse a Sieve script')
    parse_p.add_argument('file', help='File to parse')
    parse_p.add_argument('-v', '--verbose', action='store_true')
    parse_p.add_argument('--json', action='store_true', help='Dump the tree as JSON')
    parse_p.set_defaults(func=cmd_parse)

    # tokens
    tokens_p = subparsers.add_parser('tokens', help='Show decoded token values')
    tokens_p.add_argument('file', help='File to tokenize')
    tokens_p.add_argument('-m', '--mode', type=int, choices=[0, 1], default=0,
                          help='1 = first value only, 0 = all values of the statement')
    tokens_p.set_defaults(func=cmd_tokens)

    # format
    format_p = subparsers.add_parser('format', help='Format a Sieve script')
    format_p.add_argument('file', help='File to format')
    format_p.add_argument('-i', '--inplace', action='store_true', help='Modify in place')
    format_p.add_argument('--check', action='store_true', help='Exit 1 if the file is not canonical')
    format_p.set_defaults(func=cmd_format)

    # lint
    lint_p = subparsers.add_parser('lint', help='Validate a Sieve script')
    lint_p.add_argument('file', help='File to lint')
    lint_p.add_argument('--server-capabilities', help='Comma separated capabilities the server offers')
    lint_p.set_defaults(func=cmd_lint)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
