"""Line unfolding, content-line parsing and component tree building for ICS text."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from ..exceptions import CalendarNotFoundError
from .models import Component, ComponentKind, ParsedIcs, Property

logger = logging.getLogger(__name__)

# VCALENDAR > VEVENT > VALARM is the deepest real-world nesting
MAX_NESTING_DEPTH = 32


def unfold_lines(raw_lines: Iterable[str]) -> list[str]:
    """Join RFC 5545 folded continuation lines into logical lines.

    A line starting with a single space or tab continues the previous line;
    that first character is dropped and the rest appended verbatim. Empty
    logical lines are not returned.

    Args:
        raw_lines: Physical lines with line terminators already removed

    Returns:
        Logical lines in input order
    """
    unfolded: list[str] = []
    current = ""
    for line in raw_lines:
        if line.startswith((" ", "\t")):
            current += line[1:]
            continue
        if current:
            unfolded.append(current)
        current = line
    if current:
        unfolded.append(current)
    return unfolded


def _split_outside_quotes(text: str, separator: str, maxsplit: int = -1) -> list[str]:
    """Split ``text`` on ``separator`` ignoring separators inside double quotes."""
    parts: list[str] = []
    start = 0
    in_quotes = False
    for index, char in enumerate(text):
        if char == '"':
            in_quotes = not in_quotes
        elif char == separator and not in_quotes:
            if maxsplit >= 0 and len(parts) >= maxsplit:
                break
            parts.append(text[start:index])
            start = index + 1
    parts.append(text[start:])
    return parts


def parse_property(line: str) -> Optional[Property]:
    """Parse one logical line into a Property.

    The line is split at the first ``:`` outside a quoted parameter value.
    The value is returned raw; unescaping is left to the consumers of
    individual text fields.

    Args:
        line: One unfolded content line

    Returns:
        Parsed property, or None when the line has no ``:``
    """
    head_and_value = _split_outside_quotes(line, ":", maxsplit=1)
    if len(head_and_value) < 2:
        return None
    head, value = head_and_value

    segments = _split_outside_quotes(head, ";")
    name = segments[0].strip().upper()
    if not name:
        return None

    params: dict[str, str] = {}
    for segment in segments[1:]:
        key, sep, param_value = segment.partition("=")
        key = key.strip().upper()
        if not sep or not key:
            continue
        if len(param_value) >= 2 and param_value.startswith('"') and param_value.endswith('"'):
            param_value = param_value[1:-1]
        params[key] = param_value

    return Property(name=name, value=value, params=params)


class BuilderState(Enum):
    """States of the component tree builder."""

    OUTSIDE_COMPONENT = "outside-component"
    INSIDE_COMPONENT = "inside-component"


@dataclass
class _ArenaNode:
    kind: str
    parent: Optional[int]
    properties: list[Property] = field(default_factory=list)
    children: list[int] = field(default_factory=list)


class ComponentTreeBuilder:
    """BEGIN/END state machine building components in an index-addressed arena.

    Nodes refer to their parent and children by arena index. ``finish()``
    turns the closed top-level nodes into immutable :class:`Component` trees.
    Problems with the nesting (stray or mismatched END lines, components
    still open at end of input, components nested deeper than
    ``MAX_NESTING_DEPTH``) are collected in ``warnings``.
    """

    def __init__(self) -> None:
        self._nodes: list[_ArenaNode] = []
        self._stack: list[int] = []
        self._roots: list[int] = []
        # BEGIN lines still open inside a component skipped for being too deep
        self._skipped_depth = 0
        self.warnings: list[str] = []

    @property
    def state(self) -> BuilderState:
        if self._stack:
            return BuilderState.INSIDE_COMPONENT
        return BuilderState.OUTSIDE_COMPONENT

    def feed(self, line: str) -> None:
        """Advance the state machine by one logical line."""
        upper = line[:6].upper()
        if self._skipped_depth:
            if upper == "BEGIN:":
                self._skipped_depth += 1
            elif upper.startswith("END:"):
                self._skipped_depth -= 1
            return
        if upper == "BEGIN:":
            self._begin(line[6:].strip().upper())
        elif upper.startswith("END:"):
            self._end(line[4:].strip().upper())
        elif self._stack:
            prop = parse_property(line)
            if prop is not None:
                self._nodes[self._stack[-1]].properties.append(prop)

    def _begin(self, kind: str) -> None:
        if len(self._stack) >= MAX_NESTING_DEPTH:
            self.warnings.append(
                f"BEGIN:{kind} nested deeper than {MAX_NESTING_DEPTH} levels; skipped"
            )
            self._skipped_depth = 1
            return
        parent = self._stack[-1] if self._stack else None
        index = len(self._nodes)
        self._nodes.append(_ArenaNode(kind=kind, parent=parent))
        if parent is not None:
            self._nodes[parent].children.append(index)
        self._stack.append(index)

    def _end(self, kind: str) -> None:
        if not self._stack:
            self.warnings.append(f"END:{kind} without matching BEGIN ignored")
            return
        index = self._stack.pop()
        node = self._nodes[index]
        if node.kind != kind:
            self.warnings.append(f"END:{kind} closed BEGIN:{node.kind}")
        if not self._stack:
            self._roots.append(index)

    def finish(self) -> list[Component]:
        """Close the input and return the top-level components.

        Components that were never closed are dropped, one warning each.
        """
        for index in reversed(self._stack):
            self.warnings.append(f"BEGIN:{self._nodes[index].kind} was never closed; dropped")
        self._stack.clear()
        return [self._freeze(index) for index in self._roots]

    def _freeze(self, root: int) -> Component:
        # Post-order walk with an explicit stack; children are frozen first
        frozen: dict[int, Component] = {}
        pending = [(root, False)]
        while pending:
            index, children_done = pending.pop()
            node = self._nodes[index]
            if children_done:
                frozen[index] = Component(
                    kind=node.kind,
                    properties=tuple(node.properties),
                    children=tuple(frozen.pop(child) for child in node.children),
                )
            else:
                pending.append((index, True))
                pending.extend((child, False) for child in node.children)
        return frozen[root]


def build_component_tree(lines: Iterable[str]) -> tuple[list[Component], list[str]]:
    """Build the component forest for a sequence of logical lines.

    Returns:
        (top-level components, non-fatal warnings)
    """
    builder = ComponentTreeBuilder()
    for line in lines:
        builder.feed(line)
    components = builder.finish()
    return components, builder.warnings


def split_raw_lines(text: str) -> list[str]:
    """Normalize line endings and split ICS text into physical lines."""
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def parse_ics(text: str) -> ParsedIcs:
    """Parse ICS text into its top-level VEVENT and VTIMEZONE components.

    Args:
        text: Raw ICS document

    Returns:
        Direct VEVENT and VTIMEZONE children of the first VCALENDAR, plus
        the builder warnings

    Raises:
        CalendarNotFoundError: If there is no top-level VCALENDAR
    """
    components, warnings = build_component_tree(unfold_lines(split_raw_lines(text)))
    for warning in warnings:
        logger.warning("ICS structure problem: %s", warning)

    calendar = next((c for c in components if c.kind == ComponentKind.VCALENDAR.value), None)
    if calendar is None:
        raise CalendarNotFoundError()

    return ParsedIcs(
        events=calendar.children_of_kind(ComponentKind.VEVENT.value),
        timezones=calendar.children_of_kind(ComponentKind.VTIMEZONE.value),
        warnings=warnings,
    )
