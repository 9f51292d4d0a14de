"""
Sieve Capability Registry

Authoritative table of the commands, tests and tagged arguments sievekit
knows about, which extension (capability) each of them belongs to, and the
shape of their arguments. The parser uses it to tell control commands from
actions; the validator uses it for everything else.

Based on RFC 5228 and the extension RFCs commonly offered by ManageSieve
servers (fileinto, reject, envelope, body, regex, relational, vacation,
imap4flags, variables, date, index, editheader, include, enotify, ...).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple


class CommandKind(Enum):
    """Every command and test name the registry knows, plus UNKNOWN."""

    # Control commands
    REQUIRE = "require"
    IF = "if"
    ELSIF = "elsif"
    ELSE = "else"
    STOP = "stop"

    # Actions
    KEEP = "keep"
    DISCARD = "discard"
    REDIRECT = "redirect"
    FILEINTO = "fileinto"
    REJECT = "reject"
    EREJECT = "ereject"
    VACATION = "vacation"
    SETFLAG = "setflag"
    ADDFLAG = "addflag"
    REMOVEFLAG = "removeflag"
    SET = "set"
    NOTIFY = "notify"
    INCLUDE = "include"
    RETURN = "return"
    GLOBAL = "global"
    ADDHEADER = "addheader"
    DELETEHEADER = "deleteheader"

    # Tests
    ADDRESS = "address"
    ALLOF = "allof"
    ANYOF = "anyof"
    ENVELOPE = "envelope"
    EXISTS = "exists"
    FALSE = "false"
    HEADER = "header"
    NOT = "not"
    SIZE = "size"
    TRUE = "true"
    BODY = "body"
    DATE = "date"
    CURRENTDATE = "currentdate"
    STRING = "string"
    HASFLAG = "hasflag"
    MAILBOXEXISTS = "mailboxexists"
    DUPLICATE = "duplicate"
    SPAMTEST = "spamtest"
    VIRUSTEST = "virustest"
    ENVIRONMENT = "environment"
    VALID_NOTIFY_METHOD = "valid_notify_method"
    NOTIFY_METHOD_CAPABILITY = "notify_method_capability"

    UNKNOWN = ""

    @classmethod
    def lookup(cls, name: str) -> "CommandKind":
        """Resolve a (case-insensitive) identifier, falling back to UNKNOWN."""
        if not name:
            return cls.UNKNOWN
        try:
            return cls(name.lower())
        except ValueError:
            return cls.UNKNOWN


class ArgType(Enum):
    """Argument shapes a signature can ask for."""
    STRING = "string"
    STRING_LIST = "string-list"   # a single string is accepted too
    NUMBER = "number"
    TEST = "test"
    TEST_LIST = "test-list"


@dataclass(frozen=True)
class TagSpec:
    """A tagged argument accepted by one command or test."""
    name: str
    capability: Optional[str] = None   # extra capability needed for this tag
    value: Optional[ArgType] = None    # type of the argument that follows the tag


@dataclass(frozen=True)
class CommandSpec:
    """Signature of a command or test."""
    kind: CommandKind
    capability: Optional[str] = None
    positional: Tuple[ArgType, ...] = ()
    min_positional: Optional[int] = None     # None = all positionals required
    tags: Dict[str, TagSpec] = field(default_factory=dict)
    required_tags: Tuple[FrozenSet[str], ...] = ()  # one tag of each group is mandatory
    is_test: bool = False
    has_block: bool = False

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def required_positional(self) -> int:
        if self.min_positional is None:
            return len(self.positional)
        return self.min_positional


# Comparators available without declaring a comparator-* capability
BASE_COMPARATORS = frozenset({"i;octet", "i;ascii-casemap"})


def comparator_capability(comparator: str) -> Optional[str]:
    """Capability a comparator name needs, or None for the built-in ones."""
    if comparator.lower() in BASE_COMPARATORS:
        return None
    return f"comparator-{comparator.lower()}"


# =========================================================================
# TAG GROUPS
# =========================================================================

def _tags(*specs: TagSpec) -> Dict[str, TagSpec]:
    return {spec.name: spec for spec in specs}


COMPARATOR_TAGS = _tags(TagSpec(":comparator", value=ArgType.STRING))

MATCH_TAGS = _tags(
    TagSpec(":is"),
    TagSpec(":contains"),
    TagSpec(":matches"),
    TagSpec(":regex", capability="regex"),
    TagSpec(":value", capability="relational", value=ArgType.STRING),
    TagSpec(":count", capability="relational", value=ArgType.STRING),
)

ADDRESS_PART_TAGS = _tags(
    TagSpec(":all"),
    TagSpec(":localpart"),
    TagSpec(":domain"),
    TagSpec(":user", capability="subaddress"),
    TagSpec(":detail", capability="subaddress"),
)

INDEX_TAGS = _tags(
    TagSpec(":index", capability="index", value=ArgType.NUMBER),
    TagSpec(":last", capability="index"),
)

BODY_TRANSFORM_TAGS = _tags(
    TagSpec(":raw"),
    TagSpec(":content", value=ArgType.STRING_LIST),
    TagSpec(":text"),
)

ZONE_TAGS = _tags(
    TagSpec(":zone", value=ArgType.STRING),
    TagSpec(":originalzone"),
)

VACATION_TAGS = _tags(
    TagSpec(":days", value=ArgType.NUMBER),
    TagSpec(":seconds", capability="vacation-seconds", value=ArgType.NUMBER),
    TagSpec(":subject", value=ArgType.STRING),
    TagSpec(":from", value=ArgType.STRING),
    TagSpec(":addresses", value=ArgType.STRING_LIST),
    TagSpec(":mime"),
    TagSpec(":handle", value=ArgType.STRING),
)

FILEINTO_TAGS = _tags(
    TagSpec(":copy", capability="copy"),
    TagSpec(":create", capability="mailbox"),
    TagSpec(":flags", capability="imap4flags", value=ArgType.STRING_LIST),
    TagSpec(":specialuse", capability="special-use", value=ArgType.STRING),
)

SET_MODIFIER_TAGS = _tags(
    TagSpec(":lower"),
    TagSpec(":upper"),
    TagSpec(":lowerfirst"),
    TagSpec(":upperfirst"),
    TagSpec(":quotewildcard"),
    TagSpec(":length"),
    TagSpec(":encodeurl", capability="enotify"),
)

NOTIFY_TAGS = _tags(
    TagSpec(":from", value=ArgType.STRING),
    TagSpec(":importance", value=ArgType.STRING),
    TagSpec(":options", value=ArgType.STRING_LIST),
    TagSpec(":message", value=ArgType.STRING),
)

INCLUDE_TAGS = _tags(
    TagSpec(":personal"),
    TagSpec(":global"),
    TagSpec(":once"),
    TagSpec(":optional"),
)

DUPLICATE_TAGS = _tags(
    TagSpec(":handle", value=ArgType.STRING),
    TagSpec(":header", value=ArgType.STRING),
    TagSpec(":uniqueid", value=ArgType.STRING),
    TagSpec(":seconds", value=ArgType.NUMBER),
    TagSpec(":last"),
)


def _merge(*groups: Dict[str, TagSpec]) -> Dict[str, TagSpec]:
    merged: Dict[str, TagSpec] = {}
    for group in groups:
        merged.update(group)
    return merged


MATCHING = _merge(COMPARATOR_TAGS, MATCH_TAGS)

S = ArgType.STRING
SL = ArgType.STRING_LIST


# =========================================================================
# COMMAND AND TEST SIGNATURES
# =========================================================================

COMMAND_SPECS: Dict[CommandKind, CommandSpec] = {spec.kind: spec for spec in [
    # RFC 5228 control commands
    CommandSpec(CommandKind.REQUIRE, positional=(SL,)),
    CommandSpec(CommandKind.IF, positional=(ArgType.TEST,), has_block=True),
    CommandSpec(CommandKind.ELSIF, positional=(ArgType.TEST,), has_block=True),
    CommandSpec(CommandKind.ELSE, has_block=True),
    CommandSpec(CommandKind.STOP),

    # RFC 5228 actions
    CommandSpec(CommandKind.KEEP, tags=_tags(TagSpec(":flags", capability="imap4flags", value=SL))),
    CommandSpec(CommandKind.DISCARD),
    CommandSpec(CommandKind.REDIRECT, positional=(S,), tags=_tags(TagSpec(":copy", capability="copy"))),
    CommandSpec(CommandKind.FILEINTO, capability="fileinto", positional=(S,), tags=FILEINTO_TAGS),

    # Extension actions
    CommandSpec(CommandKind.REJECT, capability="reject", positional=(S,)),
    CommandSpec(CommandKind.EREJECT, capability="ereject", positional=(S,)),
    CommandSpec(CommandKind.VACATION, capability="vacation", positional=(S,), tags=VACATION_TAGS),
    CommandSpec(CommandKind.SETFLAG, capability="imap4flags", positional=(S, SL), min_positional=1),
    CommandSpec(CommandKind.ADDFLAG, capability="imap4flags", positional=(S, SL), min_positional=1),
    CommandSpec(CommandKind.REMOVEFLAG, capability="imap4flags", positional=(S, SL), min_positional=1),
    CommandSpec(CommandKind.SET, capability="variables", positional=(S, S), tags=SET_MODIFIER_TAGS),
    CommandSpec(CommandKind.NOTIFY, capability="enotify", positional=(S,), tags=NOTIFY_TAGS),
    CommandSpec(CommandKind.INCLUDE, capability="include", positional=(S,), tags=INCLUDE_TAGS),
    CommandSpec(CommandKind.RETURN, capability="include"),
    CommandSpec(CommandKind.GLOBAL, capability="include", positional=(SL,)),
    CommandSpec(CommandKind.ADDHEADER, capability="editheader", positional=(S, S),
                tags=_tags(TagSpec(":last"))),
    CommandSpec(CommandKind.DELETEHEADER, capability="editheader", positional=(S, SL), min_positional=1,
                tags=_merge(MATCHING, _tags(TagSpec(":index", value=ArgType.NUMBER), TagSpec(":last")))),

    # RFC 5228 tests
    CommandSpec(CommandKind.ADDRESS, positional=(SL, SL), is_test=True,
                tags=_merge(MATCHING, ADDRESS_PART_TAGS, INDEX_TAGS)),
    CommandSpec(CommandKind.ALLOF, positional=(ArgType.TEST_LIST,), is_test=True),
    CommandSpec(CommandKind.ANYOF, positional=(ArgType.TEST_LIST,), is_test=True),
    CommandSpec(CommandKind.ENVELOPE, capability="envelope", positional=(SL, SL), is_test=True,
                tags=_merge(MATCHING, ADDRESS_PART_TAGS)),
    CommandSpec(CommandKind.EXISTS, positional=(SL,), is_test=True),
    CommandSpec(CommandKind.FALSE, is_test=True),
    CommandSpec(CommandKind.HEADER, positional=(SL, SL), is_test=True, tags=_merge(MATCHING, INDEX_TAGS)),
    CommandSpec(CommandKind.NOT, positional=(ArgType.TEST,), is_test=True),
    CommandSpec(CommandKind.SIZE, positional=(ArgType.NUMBER,), is_test=True,
                tags=_tags(TagSpec(":over"), TagSpec(":under")),
                required_tags=(frozenset({":over", ":under"}),)),
    CommandSpec(CommandKind.TRUE, is_test=True),

    # Extension tests
    CommandSpec(CommandKind.BODY, capability="body", positional=(SL,), is_test=True,
                tags=_merge(MATCHING, BODY_TRANSFORM_TAGS)),
    CommandSpec(CommandKind.DATE, capability="date", positional=(S, S, SL), is_test=True,
                tags=_merge(MATCHING, ZONE_TAGS, INDEX_TAGS)),
    CommandSpec(CommandKind.CURRENTDATE, capability="date", positional=(S, SL), is_test=True,
                tags=_merge(MATCHING, _tags(TagSpec(":zone", value=S)))),
    CommandSpec(CommandKind.STRING, capability="variables", positional=(SL, SL), is_test=True, tags=MATCHING),
    CommandSpec(CommandKind.HASFLAG, capability="imap4flags", positional=(SL, SL), min_positional=1,
                is_test=True, tags=MATCHING),
    CommandSpec(CommandKind.MAILBOXEXISTS, capability="mailbox", positional=(SL,), is_test=True),
    CommandSpec(CommandKind.DUPLICATE, capability="duplicate", is_test=True, tags=DUPLICATE_TAGS),
    CommandSpec(CommandKind.SPAMTEST, capability="spamtest", positional=(S,), is_test=True,
                tags=_merge(MATCHING, _tags(TagSpec(":percent", capability="spamtestplus")))),
    CommandSpec(CommandKind.VIRUSTEST, capability="virustest", positional=(S,), is_test=True, tags=MATCHING),
    CommandSpec(CommandKind.ENVIRONMENT, capability="environment", positional=(S, SL), is_test=True,
                tags=MATCHING),
    CommandSpec(CommandKind.VALID_NOTIFY_METHOD, capability="enotify", positional=(SL,), is_test=True),
    CommandSpec(CommandKind.NOTIFY_METHOD_CAPABILITY, capability="enotify", positional=(S, S, SL),
                is_test=True, tags=MATCHING),
]}

# Capabilities that only unlock comparators or are implied by others
EXTRA_CAPABILITIES = frozenset({
    "comparator-i;ascii-numeric",
    "spamtestplus",
    "vacation-seconds",
    "subaddress",
    "copy",
    "regex",
    "relational",
    "index",
    "special-use",
})


@dataclass
class Extension:
    """What one capability unlocks."""
    name: str
    commands: Set[CommandKind] = field(default_factory=set)
    tags: Set[Tuple[CommandKind, str]] = field(default_factory=set)


def build_extension_map(specs: Dict[CommandKind, CommandSpec]) -> Dict[str, Extension]:
    """Invert the signature table into capability -> unlocked commands/tags."""
    extensions: Dict[str, Extension] = {}
    for name in EXTRA_CAPABILITIES:
        extensions[name] = Extension(name)
    for spec in specs.values():
        if spec.capability:
            extensions.setdefault(spec.capability, Extension(spec.capability)).commands.add(spec.kind)
        for tag in spec.tags.values():
            if tag.capability:
                extensions.setdefault(tag.capability, Extension(tag.capability)).tags.add((spec.kind, tag.name))
    return extensions


class CapabilityRegistry:
    """
    Grammar knowledge plus the capabilities a target server offers.

    A registry is a plain value: pass it to the validator explicitly. When
    `server_capabilities` is None every known capability is assumed to be
    available.

    Usage:
        registry = CapabilityRegistry(server_capabilities=["fileinto", "vacation"])
        spec = registry.lookup("fileinto")
    """

    def __init__(self, server_capabilities: Optional[Iterable[str]] = None,
                 specs: Optional[Dict[CommandKind, CommandSpec]] = None):
        self.specs: Dict[CommandKind, CommandSpec] = dict(specs or COMMAND_SPECS)
        self.extensions: Dict[str, Extension] = build_extension_map(self.specs)
        self.server_capabilities: Optional[List[str]] = None
        if server_capabilities is not None:
            self.server_capabilities = []
            for name in server_capabilities:
                name = name.strip().lower()
                if name and name not in self.server_capabilities:
                    self.server_capabilities.append(name)

    def __repr__(self):
        caps = "all" if self.server_capabilities is None else len(self.server_capabilities)
        return f"CapabilityRegistry({len(self.specs)} commands, server={caps})"

    def lookup(self, name: str) -> Optional[CommandSpec]:
        """Signature for a command/test name, or None if unknown."""
        kind = CommandKind.lookup(name)
        if kind is CommandKind.UNKNOWN:
            return None
        return self.specs.get(kind)

    def is_control(self, name: str) -> Optional[bool]:
        """True for block-bearing commands, False for actions, None if unknown."""
        spec = self.lookup(name)
        if spec is None or spec.is_test:
            return None
        return spec.has_block

    def is_known_capability(self, name: str) -> bool:
        name = name.lower()
        return name in self.extensions or name.startswith("comparator-")

    def is_supported(self, name: str) -> bool:
        """Whether the target server offers a capability."""
        if self.server_capabilities is None:
            return True
        return name.lower() in self.server_capabilities

    def unlocked_by(self, capability: str) -> Extension:
        """Commands and tags a capability unlocks (empty if unknown)."""
        return self.extensions.get(capability.lower(), Extension(capability.lower()))
