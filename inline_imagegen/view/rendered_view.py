"""Rendered view: an ephemeral BeautifulSoup projection of a persisted log.

Architectural role:
    Gives the orchestrator somewhere to show in-place feedback (loading
    placeholders, status text, final images, error indicators) while jobs run.
    The view is never authoritative: after every run it is rebuilt from the
    saved log with `RenderedView.from_log`.

Handles:
    Nodes are addressed through opaque `ViewHandle` values. A handle stays
    valid when the node behind it is replaced, because replacement re-points
    the handle's registry entry at the new node.

Mutation primitives:
    `find`, `replace`, `append_placeholder`, `show_loading`, `set_status`,
    `show_image`, `show_error`.
"""

import itertools
from dataclasses import dataclass
from typing import Callable, Iterator

from bs4 import BeautifulSoup, NavigableString, Tag


IMAGE_LIKE_TAGS = ("img", "image", "source", "picture")


@dataclass(frozen=True)
class ViewHandle:
    """Opaque reference to one node of a `RenderedView`."""

    node_id: str


class RenderedView:
    """Mutable projection of one message's text."""

    def __init__(self, soup: BeautifulSoup) -> None:
        self.soup = soup
        self._nodes: dict[str, Tag | NavigableString] = {}
        self._handles: dict[int, str] = {}
        self._ids = itertools.count()

    @classmethod
    def from_log(cls, text: str) -> "RenderedView":
        return cls(BeautifulSoup(text or "", "html.parser"))

    def html(self) -> str:
        return str(self.soup)

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    def handle_for(self, node: Tag | NavigableString) -> ViewHandle:
        """Return the handle of `node`, registering it on first use."""
        node_id = self._handles.get(id(node))
        if node_id is not None and self._nodes[node_id] is node:
            return ViewHandle(node_id)
        node_id = f"iig-node-{next(self._ids)}"
        self._nodes[node_id] = node
        self._handles[id(node)] = node_id
        return ViewHandle(node_id)

    def node(self, handle: ViewHandle) -> Tag | NavigableString:
        return self._nodes[handle.node_id]

    def find(self, predicate: Callable[[Tag], bool], names=None) -> Iterator[ViewHandle]:
        """Yield handles of element nodes matching `predicate`, in document order."""
        for element in self.soup.find_all(names or True):
            if predicate(element):
                yield self.handle_for(element)

    def text_nodes_containing(self, fragment: str) -> Iterator[ViewHandle]:
        """Yield handles of text nodes containing `fragment`.

        The fragment is split into its own text node first so that replacing
        the handle touches the fragment only.
        """
        for text_node in list(self.soup.find_all(string=lambda value: fragment in value)):
            before, _, after = str(text_node).partition(fragment)
            isolated = NavigableString(fragment)
            text_node.replace_with(isolated)
            if before:
                isolated.insert_before(NavigableString(before))
            if after:
                isolated.insert_after(NavigableString(after))
            yield self.handle_for(isolated)

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------

    def replace(self, handle: ViewHandle, new_node: Tag) -> None:
        old = self._nodes[handle.node_id]
        old.replace_with(new_node)
        self._handles.pop(id(old), None)
        self._nodes[handle.node_id] = new_node
        self._handles[id(new_node)] = handle.node_id

    def append_placeholder(self) -> ViewHandle:
        """Append a detached placeholder for an instruction with no matching node."""
        holder = self.soup.new_tag("span", attrs={"class": "iig-detached"})
        self.soup.append(holder)
        return self.handle_for(holder)

    def show_loading(self, handle: ViewHandle, status: str) -> None:
        placeholder = self.soup.new_tag(
            "div", attrs={"class": "iig-loading-placeholder", "data-iig-tag": handle.node_id}
        )
        placeholder.append(self.soup.new_tag("div", attrs={"class": "iig-spinner"}))
        status_div = self.soup.new_tag("div", attrs={"class": "iig-status"})
        status_div.string = status
        placeholder.append(status_div)
        self.replace(handle, placeholder)

    def set_status(self, handle: ViewHandle, status: str) -> None:
        node = self._nodes[handle.node_id]
        if not isinstance(node, Tag):
            return
        status_div = node.find("div", class_="iig-status")
        if status_div is not None:
            status_div.string = status

    def show_image(self, handle: ViewHandle, src: str, prompt: str, style: str | None) -> None:
        image = self.soup.new_tag(
            "img",
            attrs={
                "class": "iig-generated-image",
                "src": src,
                "alt": prompt,
                "title": f"Style: {style or ''}\nPrompt: {prompt}",
            },
        )
        self.replace(handle, image)

    def show_error(self, handle: ViewHandle, message: str) -> None:
        # Assigning `.string` escapes the message; it is never parsed as markup.
        placeholder = self.soup.new_tag(
            "div", attrs={"class": "iig-error-placeholder", "data-iig-tag": handle.node_id}
        )
        icon = self.soup.new_tag("div", attrs={"class": "iig-error-icon"})
        icon.string = "⚠"
        text = self.soup.new_tag("div", attrs={"class": "iig-error-text"})
        text.string = message
        placeholder.append(icon)
        placeholder.append(text)
        self.replace(handle, placeholder)
