"""Wireframe section trees and the [WIREFRAME] block parser.

Participants propose page structure inline::

    [WIREFRAME]
    navbar: Logo | Nav Links | CTA Button
    hero: Headline + CTA (60%) | Hero Image (40%)
    social-proof: Testimonials
    footer: Company | Links | Newsletter
    [/WIREFRAME]

Each line is a section; ``|`` splits it into columns and ``(N%)`` sets a
column's relative width. ``navbar``, ``footer``, ``sidebar``/``sidebar-left``
and ``sidebar-right`` prefixes are placed around the main body.
"""

import re
from dataclasses import dataclass, field

_BLOCK_RE = re.compile(r"\[WIREFRAME\](.*?)\[/WIREFRAME\]", re.IGNORECASE | re.DOTALL)
_WIDTH_RE = re.compile(r"\((\d+)%?\)")


@dataclass
class WireframeNode:
    id: str
    type: str              # page, navbar, sidebar, main, section, grid, column, footer, component
    label: str
    direction: str = "column"  # "row" or "column"
    children: list["WireframeNode"] = field(default_factory=list)
    width_percent: int | None = None


def section_key(label: str) -> str:
    """Normalize a section label to a lowercase hyphenated key."""
    return re.sub(r"[^a-z0-9]+", "-", label.lower()).strip("-")


def _node(type: str, label: str, **kwargs) -> WireframeNode:
    direction = kwargs.pop("direction", "row" if type in ("navbar", "grid", "footer") else "column")
    return WireframeNode(id=f"{type}-{section_key(label)}", type=type, label=label, direction=direction, **kwargs)


def _column_spec(spec: str) -> tuple[str, int | None]:
    width = _WIDTH_RE.search(spec)
    label = _WIDTH_RE.sub("", spec, count=1).strip()
    return label, int(width.group(1)) if width else None


def parse_structure(text: str) -> WireframeNode | None:
    """Parse the first [WIREFRAME] block in text. None when absent or empty."""
    match = _BLOCK_RE.search(text)
    if not match:
        return None
    lines = [line.strip() for line in match.group(1).strip().splitlines() if line.strip()]
    if not lines:
        return None

    page = _node("page", "Page")
    main_children: list[WireframeNode] = []
    sidebar_left: WireframeNode | None = None
    sidebar_right: WireframeNode | None = None

    for line in lines:
        if ":" not in line:
            main_children.append(_node("section", line))
            continue

        prefix, body = (part.strip() for part in line.split(":", 1))
        prefix = prefix.lower()
        columns = [c.strip() for c in body.split("|") if c.strip()]

        if prefix == "navbar":
            items = [_node("component", lbl, width_percent=w) for lbl, w in map(_column_spec, columns)]
            page.children.append(_node("navbar", "Navbar", children=items))
        elif prefix == "footer":
            items = [_node("column", lbl, width_percent=w) for lbl, w in map(_column_spec, columns)]
            page.children.append(_node("footer", "Footer", children=items))
        elif prefix in ("sidebar", "sidebar-left", "sidebar-right"):
            label, width = _column_spec(columns[0] if columns else "Sidebar")
            sidebar = _node("sidebar", label, width_percent=width or 25)
            if prefix == "sidebar-right":
                sidebar_right = sidebar
            else:
                sidebar_left = sidebar
        elif len(columns) == 1:
            main_children.append(_node("section", columns[0]))
        elif columns:
            items = [_node("column", lbl, width_percent=w) for lbl, w in map(_column_spec, columns)]
            title = prefix.replace("-", " ").capitalize()
            main_children.append(_node("section", title, direction="row", children=items))

    body_row = _node("main", "Body", direction="row")
    if sidebar_left:
        body_row.children.append(sidebar_left)
    body_row.children.append(_node("main", "Main", children=main_children))
    if sidebar_right:
        body_row.children.append(sidebar_right)

    # Body goes before the footer when there is one
    footer_idx = next((i for i, c in enumerate(page.children) if c.type == "footer"), len(page.children))
    page.children.insert(footer_idx, body_row)
    return page


def leaf_sections(root: WireframeNode) -> list[WireframeNode]:
    """Leaf sections of a tree; grid sections contribute their columns."""
    if not root.children and root.type != "page":
        return [root]
    leaves: list[WireframeNode] = []
    for child in root.children:
        if child.type == "section" and not child.children:
            leaves.append(child)
        elif child.type == "section" and child.direction == "row":
            leaves.extend(child.children)
        else:
            leaves.extend(leaf_sections(child))
    return leaves
