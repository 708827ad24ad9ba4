"""HTML to Atlassian Document Format (ADF).

One-way: rich-text editor markup is converted to the ADF tree Jira stores
for descriptions. Nothing here parses ADF back.

The destination schema rejects empty content arrays, so empty paragraphs,
headings and list items carry a single empty text node.
"""

import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Any

Node = dict[str, Any]

VOID_TAGS = frozenset({"br", "hr", "img", "input", "meta", "link", "wbr", "col"})
# content of these is never document text
IGNORED_TAGS = frozenset({"script", "style"})
HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
LIST_TAGS = frozenset({"ul", "ol"})
BLOCK_TAGS = frozenset(
    {"p", "div", "li", "blockquote", "pre", "hr"} | HEADING_TAGS | LIST_TAGS
)
MARK_TAGS = {
    "strong": "strong",
    "b": "strong",
    "em": "em",
    "i": "em",
    "s": "strike",
    "strike": "strike",
    "del": "strike",
    "u": "underline",
    "code": "code",
}

_WS_RE = re.compile(r"\s+")


@dataclass
class _Element:
    tag: str
    attrs: dict[str, str | None] = field(default_factory=dict)
    children: list["_Element | str"] = field(default_factory=list)


class _TreeBuilder(HTMLParser):
    """Builds a minimal element tree; stray end tags are ignored."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = _Element("root")
        self._stack = [self.root]
        self._ignored: str | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in IGNORED_TAGS:
            self._ignored = tag
            return
        element = _Element(tag, dict(attrs))
        self._stack[-1].children.append(element)
        if tag not in VOID_TAGS:
            self._stack.append(element)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._stack[-1].children.append(_Element(tag, dict(attrs)))

    def handle_endtag(self, tag: str) -> None:
        if tag == self._ignored:
            self._ignored = None
            return
        for index in range(len(self._stack) - 1, 0, -1):
            if self._stack[index].tag == tag:
                del self._stack[index:]
                return

    def handle_data(self, data: str) -> None:
        if self._ignored:
            return
        self._stack[-1].children.append(data)


def _parse(html: str) -> _Element:
    builder = _TreeBuilder()
    builder.feed(html or "")
    builder.close()
    return builder.root


# --- Node constructors ---


def _placeholder() -> Node:
    return {"type": "text", "text": ""}


def _text(text: str, marks: tuple[Node, ...]) -> Node:
    node: Node = {"type": "text", "text": text}
    if marks:
        node["marks"] = [dict(m) for m in marks]
    return node


def _paragraph(content: list[Node]) -> Node:
    return {"type": "paragraph", "content": content or [_placeholder()]}


def _with_mark(marks: tuple[Node, ...], mark: Node) -> tuple[Node, ...]:
    """Add ``mark``, replacing an outer mark of the same type."""
    return tuple(m for m in marks if m["type"] != mark["type"]) + (mark,)


# --- Inline content ---


def _inline(node: "_Element | str", marks: tuple[Node, ...]) -> list[Node]:
    if isinstance(node, str):
        text = _WS_RE.sub(" ", node)
        return [_text(text, marks)] if text else []

    tag = node.tag
    if tag == "br":
        return [{"type": "hardBreak"}]
    if tag in VOID_TAGS:
        return []
    if tag in MARK_TAGS:
        marks = _with_mark(marks, {"type": MARK_TAGS[tag]})
    elif tag == "a" and node.attrs.get("href"):
        marks = _with_mark(marks, {"type": "link", "attrs": {"href": node.attrs["href"]}})

    result: list[Node] = []
    for child in node.children:
        result.extend(_inline(child, marks))
    return result


def _strip_trailing_space(out: list[Node]) -> None:
    if out and out[-1]["type"] == "text":
        text = out[-1]["text"].rstrip(" ")
        if text:
            out[-1] = {**out[-1], "text": text}
        else:
            out.pop()


def _normalize(nodes: list[Node]) -> list[Node]:
    """Collapse whitespace across node boundaries and merge equal-mark runs."""
    out: list[Node] = []
    for node in nodes:
        if node["type"] == "hardBreak":
            _strip_trailing_space(out)
            out.append(node)
            continue

        text = node["text"]
        prev = out[-1] if out else None
        if prev is None or prev["type"] == "hardBreak":
            text = text.lstrip(" ")
        elif prev["type"] == "text" and prev["text"].endswith(" "):
            text = text.lstrip(" ")
        if not text:
            continue

        if prev is not None and prev["type"] == "text" and prev.get("marks") == node.get("marks"):
            out[-1] = {**prev, "text": prev["text"] + text}
        else:
            out.append({**node, "text": text})

    _strip_trailing_space(out)
    if all(n["type"] == "hardBreak" for n in out):
        return []
    return out


def _inline_children(element: _Element) -> list[Node]:
    result: list[Node] = []
    for child in element.children:
        result.extend(_inline(child, ()))
    return _normalize(result)


# --- Block content ---


def _has_block_child(element: _Element) -> bool:
    return any(isinstance(c, _Element) and c.tag in BLOCK_TAGS for c in element.children)


def _blocks(nodes: list["_Element | str"]) -> list[Node]:
    """Convert a mixed node list; loose inline runs become paragraphs."""
    blocks: list[Node] = []
    run: list[Node] = []

    def flush() -> None:
        content = _normalize(run)
        if content:
            blocks.append(_paragraph(content))
        run.clear()

    for node in nodes:
        if isinstance(node, _Element) and node.tag in BLOCK_TAGS:
            flush()
            blocks.extend(_block(node))
        else:
            run.extend(_inline(node, ()))
    flush()
    return blocks


def _text_content(node: "_Element | str") -> str:
    if isinstance(node, str):
        return node
    if node.tag == "br":
        return "\n"
    return "".join(_text_content(c) for c in node.children)


def _code_block(element: _Element) -> Node:
    text = _text_content(element)
    if text.startswith("\n"):
        text = text[1:]
    node: Node = {"type": "codeBlock", "content": [{"type": "text", "text": text}] if text else []}
    for child in element.children:
        if isinstance(child, _Element) and child.tag == "code":
            classes = (child.attrs.get("class") or "").split()
            language = next(
                (c.split("-", 1)[1] for c in classes if c.startswith("language-")), None
            )
            if language:
                node["attrs"] = {"language": language}
            break
    return node


def _list_item(element: _Element) -> Node:
    """A list item: its inline text as a paragraph, nested lists after it."""
    content: list[Node] = []
    run: list[Node] = []

    def flush() -> None:
        inline = _normalize(run)
        if inline:
            content.append(_paragraph(inline))
        run.clear()

    for child in element.children:
        if isinstance(child, _Element) and child.tag in BLOCK_TAGS:
            flush()
            content.extend(_block(child))
        else:
            run.extend(_inline(child, ()))
    flush()

    if not content or content[0]["type"] != "paragraph":
        content.insert(0, _paragraph([]))
    return {"type": "listItem", "content": content}


def _list(element: _Element) -> list[Node]:
    items = []
    for child in element.children:
        if isinstance(child, _Element):
            if child.tag == "li":
                items.append(_list_item(child))
            else:
                items.append(_list_item(_Element("li", children=[child])))
        elif child.strip():
            items.append(_list_item(_Element("li", children=[child])))
    if not items:
        return []

    node: Node = {
        "type": "orderedList" if element.tag == "ol" else "bulletList",
        "content": items,
    }
    start = element.attrs.get("start")
    if element.tag == "ol" and start and start.isdigit():
        node["attrs"] = {"order": int(start)}
    return [node]


def _block(element: _Element) -> list[Node]:
    tag = element.tag
    if tag == "hr":
        return [{"type": "rule"}]
    if tag == "pre":
        return [_code_block(element)]
    if tag in LIST_TAGS:
        return _list(element)
    if tag == "li":
        return [{"type": "bulletList", "content": [_list_item(element)]}]
    if tag in HEADING_TAGS:
        return [
            {
                "type": "heading",
                "attrs": {"level": int(tag[1])},
                "content": _inline_children(element) or [_placeholder()],
            }
        ]
    if tag == "blockquote":
        return [{"type": "blockquote", "content": _blocks(element.children) or [_paragraph([])]}]
    if tag == "p" and not _has_block_child(element):
        return [_paragraph(_inline_children(element))]
    # div, or a paragraph wrapping blocks
    inner = _blocks(element.children)
    if tag == "p" and not inner:
        return [_paragraph([])]
    return inner


def html_to_adf(html: str) -> Node:
    """Convert an HTML fragment into an ADF document."""
    root = _parse(html)
    content = _blocks(root.children)
    return {"type": "doc", "version": 1, "content": content or [_paragraph([])]}
