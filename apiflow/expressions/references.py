"""
Runtime expression references.

A reference has the form ``$root.path.to[0].value#/json/pointer``. The root
must be one of the execution context roots; anything below the root is
looked up leniently, so a missing key resolves to ``UNDEFINED`` instead of
raising.
"""

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple, Union

from ..context import ROOTS, ExecutionContext
from ..exceptions import ExpressionSyntaxError, UnknownRootError


class _Undefined:
    """Marker for a path that does not exist in the context."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return 'undefined'

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


UNDEFINED = _Undefined()

# A reference embedded in free text. Hyphens are allowed inside a segment
# (header names) but not at its end, so "$inputs.a-$inputs.b" splits in two.
REFERENCE_PATTERN = re.compile(
    r"\$[A-Za-z][A-Za-z0-9_]*"
    r"(?:\.[A-Za-z0-9_]+(?:-[A-Za-z0-9_]+)*"
    r"|\[\d+\]"
    r"|\[(?:'[^']*'|\"[^\"]*\")\])*"
    r"(?:#[^\s()=!<>&|{},]*)?"
)

ROOT_PATTERN = re.compile(r'\$([A-Za-z][A-Za-z0-9_]*)')
SEGMENT_PATTERN = re.compile(r"\.([^.\[\]]+)|\[(\d+)\]|\[(['\"])(.*?)\3\]")

HEADER_SEGMENTS = {'header', 'headers'}

PathSegment = Union[str, int]


@dataclass(frozen=True)
class RuntimeExpression:
    """A parsed reference: root name, object path and optional JSON Pointer."""
    root: str
    path: Tuple[PathSegment, ...] = ()
    pointer: Optional[str] = None
    source: str = ""
    malformed: bool = False

    @classmethod
    def parse(cls, expression: str) -> "RuntimeExpression":
        """
        Parse a reference string.

        Raises:
            ExpressionSyntaxError: If the text does not start with a $root reference
            UnknownRootError: If the root is not a context root
        """
        text = expression.strip()
        pointer = None
        if '#' in text:
            text, pointer = text.split('#', 1)

        match = ROOT_PATTERN.match(text)
        if not match:
            raise ExpressionSyntaxError(
                f"Invalid runtime expression: {expression}",
                {'expression': expression},
            )

        root = match.group(1)
        if root not in ROOTS:
            raise UnknownRootError(root, expression)

        path = []
        position = match.end()
        while position < len(text):
            segment = SEGMENT_PATTERN.match(text, position)
            if not segment:
                # A bad path after a known root resolves to nothing
                return cls(root=root, path=tuple(path), pointer=pointer,
                           source=expression, malformed=True)
            if segment.group(1) is not None:
                path.append(segment.group(1))
            elif segment.group(2) is not None:
                path.append(int(segment.group(2)))
            else:
                path.append(segment.group(4))
            position = segment.end()

        return cls(root=root, path=tuple(path), pointer=pointer, source=expression)


def unescape_pointer_token(token: str) -> str:
    """Decode a JSON Pointer reference token (``~1`` is ``/``, ``~0`` is ``~``)."""
    return token.replace('~1', '/').replace('~0', '~')


def descend(value: Any, key: PathSegment) -> Any:
    """Step one level into a mapping or sequence, or return UNDEFINED."""
    if isinstance(value, Mapping):
        if key in value:
            return value[key]
        if isinstance(key, int) and str(key) in value:
            return value[str(key)]
        return UNDEFINED

    if isinstance(value, (list, tuple)):
        if isinstance(key, str):
            if not key.isdigit():
                return UNDEFINED
            key = int(key)
        if 0 <= key < len(value):
            return value[key]
        return UNDEFINED

    return UNDEFINED


def resolve_pointer(value: Any, pointer: str) -> Any:
    """Resolve a JSON Pointer fragment against a value."""
    if pointer == "":
        return value
    if not pointer.startswith('/'):
        return UNDEFINED

    for token in pointer[1:].split('/'):
        value = descend(value, unescape_pointer_token(token))
        if value is UNDEFINED:
            return UNDEFINED
    return value


def root_value(context: Any, root: str) -> Any:
    """Return the value of a context root, or UNDEFINED when it is unset."""
    if root not in ROOTS:
        raise UnknownRootError(root)

    if isinstance(context, ExecutionContext):
        value = context.get_root(root)
        return UNDEFINED if value is None else value

    if isinstance(context, Mapping):
        return context.get(root, UNDEFINED)

    return UNDEFINED


def _is_header_name(ref: RuntimeExpression, index: int) -> bool:
    return (
        index == 1
        and ref.root in ('request', 'response')
        and ref.path[0] in HEADER_SEGMENTS
        and isinstance(ref.path[1], str)
    )


def resolve_reference(
    expression: Union[str, RuntimeExpression],
    context: Any
) -> Any:
    """
    Resolve a single reference against the context.

    Args:
        expression: Reference text or an already parsed RuntimeExpression
        context: ExecutionContext or a plain mapping keyed by root name

    Returns:
        The value found, with its native type, or UNDEFINED for a missing
        or malformed path

    Raises:
        UnknownRootError: If the root is not a context root
    """
    if isinstance(expression, RuntimeExpression):
        ref = expression
    else:
        ref = RuntimeExpression.parse(expression)

    value = root_value(context, ref.root)
    if ref.malformed:
        return UNDEFINED
    for index, segment in enumerate(ref.path):
        if value is UNDEFINED:
            return UNDEFINED
        if _is_header_name(ref, index):
            found = descend(value, segment.lower())
            value = found if found is not UNDEFINED else descend(value, segment)
        else:
            value = descend(value, segment)

    if value is UNDEFINED:
        return UNDEFINED

    if ref.pointer is not None:
        return resolve_pointer(value, ref.pointer)
    return value
