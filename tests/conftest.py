"""
Shared fixtures: an in-memory stand-in for the remote content service.
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from src.remote.operations import (
    CreateReferenceLink,
    GetCollectionInfo,
    GetItemInfo,
    ListChildren,
    ListSpaceMembers,
    SearchByKeyword,
)


class FakeRemote:
    """
    Answers remote operations from in-memory tables.

    Created reference links are added to the parent's children, so a second
    reconciliation pass sees them as existing.
    """

    def __init__(self):
        self.calls = []
        self.search_results = {}  # (collection_id, keyword) -> hits
        self.children = {}  # parent identity -> child nodes
        self.missing_nodes = set()
        self.failures = {}  # (operation name, identity) -> exception
        self.closed = False

    def fail(self, operation_name, identity, error):
        self.failures[(operation_name, identity)] = error

    def calls_of(self, operation_type):
        return [c for c in self.calls if isinstance(c, operation_type)]

    async def connect(self):
        return []

    async def close(self):
        self.closed = True

    async def invoke(self, operation):
        self.calls.append(operation)

        error = self.failures.get((operation.name, operation.identity))
        if error is not None:
            raise error

        if isinstance(operation, SearchByKeyword):
            hits = self.search_results.get((operation.collection_id, operation.keyword), [])
            return {"items": list(hits)}

        if isinstance(operation, ListChildren):
            return {"items": list(self.children.get(operation.parent_identity, [])), "has_more": False}

        if isinstance(operation, CreateReferenceLink):
            siblings = self.children.setdefault(operation.parent_identity, [])
            node = {
                "node_token": f"sc-{operation.parent_identity}-{len(siblings)}",
                "node_type": "shortcut",
                "origin_node_token": operation.target_identity,
                "has_child": False
            }
            siblings.append(node)
            return {"node": node}

        if isinstance(operation, GetItemInfo):
            if operation.node_identity in self.missing_nodes:
                return None
            return {"node": {"node_token": operation.node_identity}}

        if isinstance(operation, GetCollectionInfo):
            return {"space": {"space_id": operation.collection_id, "name": f"Space {operation.collection_id}"}}

        if isinstance(operation, ListSpaceMembers):
            return {"members": [{"member_id": "ou_1", "member_role": "admin"}]}

        raise AssertionError(f"Unexpected operation {operation!r}")


@pytest.fixture
def fake_remote():
    return FakeRemote()
