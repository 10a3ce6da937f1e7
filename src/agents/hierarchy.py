"""
Hierarchy Walker.

Maps the node tree under a root node with an explicit queue. Externally
supplied tree data may contain cycles or be arbitrarily deep, so the walk is
bounded by a visited set, a maximum depth and a maximum node count.
"""

import logging
from collections import deque
from typing import Dict, Optional

from src.remote.operations import ListChildren

logger = logging.getLogger(__name__)


class HierarchyWalker:
    """
    Breadth-first walk of a collection's node tree.
    """

    def __init__(self, invoker, max_depth: int = 10, max_nodes: int = 5000, page_size: int = 50):
        """
        Args:
            invoker: RemoteOperationInvoker used to list children
            max_depth: Nodes at this depth are not expanded (root is depth 0)
            max_nodes: Stop expanding once this many nodes are mapped
            page_size: Page size for child listings
        """
        self.invoker = invoker
        self.max_depth = max_depth
        self.max_nodes = max_nodes
        self.page_size = page_size

    async def walk(self, collection_id: str, root_identity: str, root_title: str = "") -> Dict:
        """
        Map the tree under root_identity.

        Returns:
            Nested dict {"token", "title", "node_type", "depth", "children": [...]}
            with "truncated": True on nodes whose children were not all mapped.
            Stats are attached to the root under "stats".
        """
        root = self._node(root_identity, root_title, None, 0)
        visited = {root_identity}
        queue = deque([root])
        cycles = 0
        truncated = 0

        while queue:
            node = queue.popleft()

            if node["depth"] >= self.max_depth or len(visited) >= self.max_nodes:
                node["truncated"] = True
                truncated += 1
                continue

            result = await self.invoker.invoke(ListChildren(
                collection_id=collection_id,
                parent_identity=node["token"],
                page_size=self.page_size
            ))
            children = (result.get("items") if isinstance(result, dict) else None) or []

            for child in children:
                if len(visited) >= self.max_nodes:
                    node["truncated"] = True
                    truncated += 1
                    break
                if not isinstance(child, dict):
                    continue
                token = child.get("node_token")
                if not token:
                    continue
                if token in visited:
                    cycles += 1
                    logger.warning(f"Node {token} reached again under {node['token']}, not revisiting")
                    continue
                visited.add(token)

                child_node = self._node(token, child.get("title", ""), child.get("node_type"), node["depth"] + 1)
                node["children"].append(child_node)
                if child.get("has_child", True):
                    queue.append(child_node)

        root["stats"] = {"nodes": len(visited), "revisits": cycles, "truncated": truncated}
        logger.info(
            f"Mapped {len(visited)} nodes under {root_identity} "
            f"({cycles} revisits skipped, {truncated} nodes not expanded)"
        )
        return root

    @staticmethod
    def _node(token: str, title: str, node_type: Optional[str], depth: int) -> Dict:
        return {
            "token": token,
            "title": title,
            "node_type": node_type,
            "depth": depth,
            "children": []
        }
