"""
Tree Serialization - JSON conversion for Script trees.

Editors and other collaborators that cannot hold Python objects exchange
scripts as plain dicts / JSON. This module has strictly limited
dependencies: json, typing and the node classes.

Usage:
    from sievekit.parser.ast_serde import script_to_dict, script_from_dict, serialize_script
"""

import json
from typing import Any, Dict, List, Union

from sievekit.parser.parser import (
    Argument,
    Block,
    Command,
    Comment,
    NumberArgument,
    Script,
    StringArgument,
    StringForm,
    StringListArgument,
    TagArgument,
    Test,
)


def _position(node) -> Dict[str, int]:
    return {'line': node.line, 'column': node.column}


def _comments_to_list(comments: List[Comment]) -> List[str]:
    return [c.text for c in comments]


def argument_to_dict(arg: Argument) -> Dict[str, Any]:
    """Convert an argument node to a serializable dict."""
    if isinstance(arg, StringArgument):
        return {'_type': 'string', 'value': arg.value, 'form': arg.form.value, **_position(arg)}
    elif isinstance(arg, StringListArgument):
        return {'_type': 'string_list', 'values': list(arg.values), **_position(arg)}
    elif isinstance(arg, NumberArgument):
        return {'_type': 'number', 'value': arg.value, 'unit': arg.unit, **_position(arg)}
    elif isinstance(arg, TagArgument):
        return {'_type': 'tag', 'name': arg.name, **_position(arg)}
    elif isinstance(arg, Test):
        return {
            '_type': 'test',
            'name': arg.name,
            'arguments': [argument_to_dict(a) for a in arg.arguments],
            'tests': [argument_to_dict(t) for t in arg.tests],
            **_position(arg),
        }
    raise TypeError(f"Cannot serialize argument {arg!r}")


def command_to_dict(command: Command) -> Dict[str, Any]:
    data = {
        '_type': 'command',
        'name': command.name,
        'arguments': [argument_to_dict(a) for a in command.arguments],
        'comments': _comments_to_list(command.comments),
        **_position(command),
    }
    if command.block is not None:
        data['block'] = block_to_dict(command.block)
    return data


def block_to_dict(block: Block) -> Dict[str, Any]:
    return {
        '_type': 'block',
        'commands': [command_to_dict(c) for c in block.commands],
        'trailing_comments': _comments_to_list(block.trailing_comments),
    }


def script_to_dict(script: Script) -> Dict[str, Any]:
    """Convert a Script to nested dicts and lists of JSON-compatible values."""
    return {
        '_type': 'script',
        'filename': str(script.filename),
        'capabilities': list(script.capabilities),
        'block': block_to_dict(script.block),
    }


def _expect(data: Dict[str, Any], type_name: str) -> None:
    if not isinstance(data, dict) or data.get('_type') != type_name:
        found = data.get('_type') if isinstance(data, dict) else type(data).__name__
        raise ValueError(f"Expected a '{type_name}' node, got {found!r}")


def argument_from_dict(data: Dict[str, Any]) -> Argument:
    """Rebuild an argument node from its dict form."""
    if not isinstance(data, dict):
        raise ValueError(f"Expected an argument dict, got {type(data).__name__}")
    kind = data.get('_type')
    pos = {'line': data.get('line', 0), 'column': data.get('column', 0)}

    if kind == 'string':
        return StringArgument(value=data['value'], form=StringForm(data.get('form', 'quoted')), **pos)
    if kind == 'string_list':
        return StringListArgument(values=list(data['values']), **pos)
    if kind == 'number':
        unit = data.get('unit', '')
        if unit not in NumberArgument.MULTIPLIERS:
            raise ValueError(f"Unknown number unit {unit!r}")
        return NumberArgument(value=int(data['value']), unit=unit, **pos)
    if kind == 'tag':
        return TagArgument(name=data['name'], **pos)
    if kind == 'test':
        return Test(
            name=data['name'],
            arguments=[argument_from_dict(a) for a in data.get('arguments', [])],
            tests=[argument_from_dict(t) for t in data.get('tests', [])],
            **pos,
        )
    raise ValueError(f"Unknown argument type {kind!r}")


def command_from_dict(data: Dict[str, Any]) -> Command:
    _expect(data, 'command')
    block = block_from_dict(data['block']) if data.get('block') is not None else None
    return Command(
        name=data['name'],
        arguments=[argument_from_dict(a) for a in data.get('arguments', [])],
        block=block,
        comments=[Comment(text=text) for text in data.get('comments', [])],
        line=data.get('line', 0),
        column=data.get('column', 0),
    )


def block_from_dict(data: Dict[str, Any]) -> Block:
    _expect(data, 'block')
    return Block(
        commands=[command_from_dict(c) for c in data.get('commands', [])],
        trailing_comments=[Comment(text=text) for text in data.get('trailing_comments', [])],
    )


def script_from_dict(data: Dict[str, Any]) -> Script:
    """Rebuild a Script (with consistent parent pointers) from its dict form."""
    _expect(data, 'script')
    return Script(
        block=block_from_dict(data['block']),
        capabilities=list(data.get('capabilities', [])),
        filename=data.get('filename', '<unknown>'),
    )


def serialize_script(script: Script) -> bytes:
    """
    Serialize a Script to JSON bytes.

    Args:
        script: Parsed Script

    Returns:
        UTF-8 encoded JSON bytes
    """
    return json.dumps(script_to_dict(script), separators=(',', ':')).encode('utf-8')


def deserialize_script(data: Union[bytes, str]) -> Script:
    """
    Deserialize a Script from JSON bytes or string.

    Args:
        data: JSON bytes or string

    Returns:
        Script with parent pointers restored
    """
    if isinstance(data, bytes):
        data = data.decode('utf-8')
    return script_from_dict(json.loads(data))


def count_nodes(data: Dict[str, Any]) -> int:
    """
    Count nodes in a serialized Script.

    Args:
        data: Dict form of a Script

    Returns:
        Total node count
    """
    count = 1
    for key in ('block', 'commands', 'arguments', 'tests'):
        if key in data:
            val = data[key]
            if isinstance(val, list):
                for item in val:
                    if isinstance(item, dict):
                        count += count_nodes(item)
            elif isinstance(val, dict):
                count += count_nodes(val)
    return count
