"""Closure of messages transitively connected to a root through references."""

import logging
from collections import defaultdict, deque
from typing import Callable, Dict, Iterable, List, Set

from errors import NotFoundError
from models import Message
from reference_extractor import extract_references

logger = logging.getLogger(__name__)


class ThreadGraphBuilder:
    """Finds every message in a room pool that belongs with a root message.

    Two messages are related when either one references the other's id.
    The relation is symmetric, so the closure is the connected component
    of the root in the reference graph.  Walking the adjacency index
    breadth-first yields the same set as repeating full passes over the
    pool until nothing new is added.
    """

    def __init__(self, extractor: Callable[[str], Set[str]] = extract_references):
        self.extractor = extractor

    def expand(self, root_id: str, pool: Iterable[Message]) -> List[Message]:
        """Return the root plus every message in *pool* reachable from it.

        Raises:
            NotFoundError: *root_id* is not in *pool*.

        Returns:
            Related messages sorted by (send_time, id).  Order carries no
            meaning beyond being stable.
        """
        by_id = self._index_pool(pool)
        if root_id not in by_id:
            raise NotFoundError(f"Root message {root_id} not found in message pool")
        return self._closure([root_id], by_id)

    def expand_from(self, seed_ids: Iterable[str], pool: Iterable[Message]) -> List[Message]:
        """Like expand(), seeded with several ids.  Seeds missing from *pool* are skipped."""
        by_id = self._index_pool(pool)
        seeds = [sid for sid in seed_ids if sid in by_id]
        if not seeds:
            return []
        return self._closure(seeds, by_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _index_pool(pool: Iterable[Message]) -> Dict[str, Message]:
        # A later copy of the same id replaces the earlier one (last write wins)
        return {msg.id: msg for msg in pool}

    def _build_adjacency(self, by_id: Dict[str, Message]) -> Dict[str, Set[str]]:
        """Symmetric edges between pool messages, built once per pool."""
        adjacency: Dict[str, Set[str]] = defaultdict(set)
        for msg_id, msg in by_id.items():
            for ref_id in self.extractor(msg.content):
                if ref_id == msg_id or ref_id not in by_id:
                    continue
                adjacency[msg_id].add(ref_id)
                adjacency[ref_id].add(msg_id)
        return adjacency

    def _closure(self, seeds: List[str], by_id: Dict[str, Message]) -> List[Message]:
        adjacency = self._build_adjacency(by_id)

        related: Set[str] = set(seeds)
        queue = deque(seeds)
        while queue:
            current = queue.popleft()
            for neighbour in adjacency.get(current, ()):
                if neighbour not in related:
                    related.add(neighbour)
                    queue.append(neighbour)

        logger.debug(
            "Closure from %d seed(s): %d of %d pool messages related",
            len(seeds), len(related), len(by_id),
        )
        return sorted(
            (by_id[msg_id] for msg_id in related),
            key=lambda m: (m.send_time, m.id),
        )
