"""
Structural Parser

Turns invoice markup into a tree of ``ParsedNode`` objects with lookups that
ignore case and namespace prefixes, so ``find('id')`` matches ``cbc:ID``,
``ID`` and ``id`` alike. Every adapter reads the document through this one
abstraction.
"""

import logging
import re
from collections import deque
from typing import Dict, Iterable, Iterator, List, Optional, Union

from lxml import etree

from einvex.exceptions import MalformedDocumentError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'\s+')
_XML_DECLARATION = re.compile(r'^\s*<\?xml[^>]*\?>', re.IGNORECASE)

ANY = '*'


def _collapse(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    collapsed = _WHITESPACE.sub(' ', value).strip()
    return collapsed or None


class ParsedNode:
    """
    One element of a parsed document.

    Attributes:
        tag: Canonical tag: lower-case local name without prefix
        qualified: Lower-case ``prefix:local`` form (same as ``tag`` when unprefixed)
        text: Own text with whitespace runs collapsed, None when blank
        raw_text: Own text exactly as found in the document (CDATA included)
        attributes: Attribute values keyed by lower-case local name
        children: Child elements in document order
    """

    __slots__ = ('tag', 'qualified', 'text', 'raw_text', 'attributes', 'children')

    def __init__(
        self,
        tag: str,
        qualified: Optional[str] = None,
        text: Optional[str] = None,
        raw_text: Optional[str] = None,
        attributes: Optional[Dict[str, str]] = None,
        children: Optional[List['ParsedNode']] = None
    ):
        self.tag = tag.lower()
        self.qualified = (qualified or tag).lower()
        self.raw_text = raw_text if raw_text is not None else text
        self.text = _collapse(text)
        self.attributes = attributes or {}
        self.children = children or []

    def __repr__(self) -> str:
        return f"ParsedNode({self.qualified!r}, text={self.text!r}, children={len(self.children)})"

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def matches(self, name: str) -> bool:
        """Match a candidate name; a prefixed candidate matches only the prefixed form"""
        name = name.lower()
        if name == ANY:
            return True
        if ':' in name:
            return self.qualified == name
        return self.tag == name

    def _attribute_node(self, name: str) -> Optional['ParsedNode']:
        name = name.lower()
        if ':' in name:
            name = name.split(':', 1)[1]
        value = self.attributes.get(name)
        if value is None:
            return None
        return ParsedNode(name, text=value)

    def find(self, *names: str) -> Optional['ParsedNode']:
        """
        First direct child matching one of the candidate names.

        Candidates are tried in order, so earlier names win over document
        order. Attributes answer as leaf nodes when no element matches.
        """
        for name in names:
            for child in self.children:
                if child.matches(name):
                    return child
            attribute = self._attribute_node(name)
            if attribute is not None:
                return attribute
        return None

    def find_all(self, *names: str) -> List['ParsedNode']:
        """Every direct child matching any candidate, as a list even for one match"""
        return [child for child in self.children if any(child.matches(n) for n in names)]

    def iter_descendants(self) -> Iterator['ParsedNode']:
        """Breadth-first walk over all descendants"""
        queue = deque(self.children)
        while queue:
            node = queue.popleft()
            yield node
            queue.extend(node.children)

    def levels(self, skip: Iterable['ParsedNode'] = ()) -> Iterator[List['ParsedNode']]:
        """
        Descendants grouped by depth, nearest level first.

        Nodes in ``skip`` (compared by identity) are left out together with
        their whole subtree.
        """
        excluded = {id(node) for node in skip}
        level = [child for child in self.children if id(child) not in excluded]
        while level:
            yield level
            level = [
                child for node in level for child in node.children
                if id(child) not in excluded
            ]

    def search(self, *names: str) -> Optional['ParsedNode']:
        """Nearest descendant matching the first candidate that matches anywhere"""
        for name in names:
            for node in self.iter_descendants():
                if node.matches(name):
                    return node
        return None

    def search_all(self, *names: str) -> List['ParsedNode']:
        return [node for node in self.iter_descendants() if any(node.matches(n) for n in names)]

    def path(self, *steps: Union[str, tuple]) -> Optional['ParsedNode']:
        """
        Follow a chain of direct children.

        Each step is a name or a tuple of alternative names.

        Returns:
            The node at the end of the chain, or None if any link is missing
        """
        node = self
        for step in steps:
            names = step if isinstance(step, tuple) else (step,)
            node = node.find(*names)
            if node is None:
                return None
        return node

    def text_value(self) -> Optional[str]:
        """
        Text carried by this node.

        Own text first; for containers, the text of an ``id`` child or of the
        only leaf child.
        """
        if self.text is not None:
            return self.text
        if not self.children:
            return None
        id_child = self.find('id')
        if id_child is not None and id_child.text is not None:
            return id_child.text
        leaves = [child for child in self.children if child.is_leaf]
        if len(leaves) == 1 and len(self.children) == 1:
            return leaves[0].text
        return None

    def value(self, *names: str) -> Optional[str]:
        """Text of the first direct child matching a candidate name"""
        for name in names:
            node = self.find(name)
            if node is not None:
                text = node.text_value()
                if text is not None:
                    return text
        return None


def _build(element: etree._Element) -> ParsedNode:
    qname = etree.QName(element)
    local = qname.localname
    qualified = f"{element.prefix}:{local}" if element.prefix else local

    attributes = {}
    for attr_name, attr_value in element.attrib.items():
        attributes[etree.QName(attr_name).localname.lower()] = attr_value

    children = [
        _build(child) for child in element
        if isinstance(child.tag, str)
    ]
    return ParsedNode(
        local,
        qualified=qualified,
        text=element.text,
        raw_text=element.text,
        attributes=attributes,
        children=children
    )


def _make_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        remove_pis=True,
        huge_tree=False
    )


def parse_xml(data: Union[bytes, str]) -> ParsedNode:
    """
    Parse markup into a ParsedNode tree.

    Args:
        data: Document bytes, or text recovered from an enclosing document

    Returns:
        Root ParsedNode

    Raises:
        MalformedDocumentError: If the markup is not well-formed
    """
    if isinstance(data, str):
        # Embedded text is already decoded, so its declared encoding no longer applies
        data = _XML_DECLARATION.sub('', data, count=1).strip().encode('utf-8')
    else:
        data = data.strip()

    if not data:
        raise MalformedDocumentError("document is empty")

    try:
        root = etree.fromstring(data, parser=_make_parser())
    except etree.XMLSyntaxError as e:
        raise MalformedDocumentError(str(e), line=getattr(e, 'lineno', None))
    except ValueError as e:
        raise MalformedDocumentError(str(e))

    node = _build(root)
    logger.debug(f"Parsed document with root <{node.qualified}>")
    return node
