"""
Body text extraction.

An ordered list of strategies; the first one producing non-empty text wins.
A strategy that raises counts as producing nothing, and the chain moves on.
When every strategy comes up empty the body is the empty string, so a
snapshot file is still written for every record that needs one.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from attachment_purge.protocols import RecordStore
from attachment_purge.schemas.records import ContentNode

__all__ = [
    'BodyTextExtractor',
    'ContentTreeStrategy',
    'ExtractionStrategy',
    'HtmlConverter',
    'InlineHtmlStrategy',
    'InlinePlainTextStrategy',
    'default_strategies',
    'strip_tags',
]

logger = logging.getLogger(__name__)

HtmlConverter = Callable[[str], Awaitable[str]]

_TAG = re.compile(r'<[^>]+>')


def strip_tags(html: str) -> str:
    """Crude HTML to text: drop anything that looks like a tag."""
    return _TAG.sub('', html or '')


async def html_to_text(html: str, converter: HtmlConverter | None) -> str:
    if converter is not None:
        return await converter(html)
    return strip_tags(html)


def _is_type(content_type: str, prefix: str) -> bool:
    return (content_type or '').lower().startswith(prefix)


class ExtractionStrategy(Protocol):
    name: str

    async def extract(self, record_id: str) -> str | None: ...


class InlinePlainTextStrategy:
    """Pre-structured plain-text representation offered by the store."""

    name = 'inline-plain'

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def extract(self, record_id: str) -> str | None:
        for part in await self.store.list_inline_text_parts(record_id):
            if _is_type(part.content_type, 'text/plain') and part.content:
                return part.content
        return None


class InlineHtmlStrategy:
    """Pre-structured HTML representation, converted to text."""

    name = 'inline-html'

    def __init__(self, store: RecordStore, converter: HtmlConverter | None = None) -> None:
        self.store = store
        self.converter = converter

    async def extract(self, record_id: str) -> str | None:
        for part in await self.store.list_inline_text_parts(record_id):
            if _is_type(part.content_type, 'text/html') and part.content:
                return await html_to_text(part.content, self.converter)
        return None


class ContentTreeStrategy:
    """Breadth-first traversal of the full content tree: first plain leaf, then first HTML leaf."""

    name = 'content-tree'

    def __init__(self, store: RecordStore, converter: HtmlConverter | None = None) -> None:
        self.store = store
        self.converter = converter

    async def extract(self, record_id: str) -> str | None:
        root = await self.store.get_content_tree(record_id)
        if root is None:
            return None

        plain = self._first_leaf(root, 'text/plain')
        if plain is not None:
            return plain
        html = self._first_leaf(root, 'text/html')
        if html is not None:
            return await html_to_text(html, self.converter)
        return None

    @staticmethod
    def _first_leaf(root: ContentNode, prefix: str) -> str | None:
        queue: deque[ContentNode] = deque([root])
        while queue:
            node = queue.popleft()
            if _is_type(node.content_type, prefix) and node.body:
                return node.body
            queue.extend(node.parts)
        return None


def default_strategies(store: RecordStore, converter: HtmlConverter | None = None) -> list[ExtractionStrategy]:
    return [
        InlinePlainTextStrategy(store),
        InlineHtmlStrategy(store, converter),
        ContentTreeStrategy(store, converter),
    ]


class BodyTextExtractor:
    """Runs the strategies in priority order."""

    def __init__(self, strategies: Sequence[ExtractionStrategy]) -> None:
        self.strategies = list(strategies)

    async def extract(self, record_id: str) -> str:
        for strategy in self.strategies:
            try:
                text = await strategy.extract(record_id)
            except Exception as e:
                logger.warning(f'Body extraction strategy {strategy.name} failed for {record_id}: {e}')
                continue
            if text:
                return text
        return ''
