"""
Remote operations.

One dataclass per semantic operation the index manager consumes from the
remote content service. Each variant validates its own fields and knows the
remote tool it maps to, so callers never build loosely-shaped argument dicts.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Type

from src.errors import ValidationError

REFERENCE_NODE_TYPE = "shortcut"


@dataclass(frozen=True)
class RemoteOperation:
    """Base class for all remote operation variants."""

    name = ""   # Semantic operation name
    tool = ""   # Remote tool invoked for it
    required = ()

    def __post_init__(self):
        for attr in self.required:
            value = getattr(self, attr)
            if value is None or value == "":
                raise ValidationError(
                    f"Missing required field '{attr}'",
                    operation=self.name
                )

    @property
    def identity(self) -> Optional[str]:
        """Identity the operation acts on, for error context."""
        return None

    def arguments(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class GetCollectionInfo(RemoteOperation):
    collection_id: str = ""

    name = "get-collection-info"
    tool = "wiki.v2.space.get"
    required = ("collection_id",)

    @property
    def identity(self):
        return self.collection_id

    def arguments(self):
        return {"space_id": self.collection_id}


@dataclass(frozen=True)
class GetItemInfo(RemoteOperation):
    node_identity: str = ""
    obj_type: Optional[str] = None

    name = "get-item-info"
    tool = "wiki.v2.space.getNode"
    required = ("node_identity",)

    @property
    def identity(self):
        return self.node_identity

    def arguments(self):
        args = {"token": self.node_identity}
        if self.obj_type:
            args["obj_type"] = self.obj_type
        return args


@dataclass(frozen=True)
class ListChildren(RemoteOperation):
    collection_id: str = ""
    parent_identity: str = ""
    page_size: int = 50
    page_token: Optional[str] = None

    name = "list-children"
    tool = "wiki.v2.spaceNode.list"
    required = ("collection_id", "parent_identity")

    def __post_init__(self):
        super().__post_init__()
        if not isinstance(self.page_size, int) or self.page_size <= 0:
            raise ValidationError(
                f"page_size must be a positive integer, got {self.page_size!r}",
                operation=self.name
            )

    @property
    def identity(self):
        return self.parent_identity

    def arguments(self):
        args = {
            "space_id": self.collection_id,
            "parent_node_token": self.parent_identity,
            "page_size": self.page_size
        }
        if self.page_token:
            args["page_token"] = self.page_token
        return args


@dataclass(frozen=True)
class SearchByKeyword(RemoteOperation):
    collection_id: str = ""
    keyword: str = ""
    parent_identity: Optional[str] = None

    name = "search-by-keyword"
    tool = "wiki.v1.node.search"
    required = ("collection_id", "keyword")

    @property
    def identity(self):
        return self.collection_id

    def arguments(self):
        args = {"space_id": self.collection_id, "query": self.keyword}
        if self.parent_identity:
            args["parent_node_token"] = self.parent_identity
        return args


@dataclass(frozen=True)
class CreateReferenceLink(RemoteOperation):
    collection_id: str = ""         # Collection holding the index document
    parent_identity: str = ""       # Index document the link is placed under
    target_identity: str = ""       # Item the link points to
    target_collection_id: str = ""  # Collection the item lives in

    name = "create-reference-link"
    tool = "wiki.v2.spaceNode.create"
    required = ("collection_id", "parent_identity", "target_identity", "target_collection_id")

    @property
    def identity(self):
        return self.target_identity

    def arguments(self):
        return {
            "space_id": self.collection_id,
            "parent_node_token": self.parent_identity,
            "node_type": REFERENCE_NODE_TYPE,
            "origin_node_token": self.target_identity,
            "origin_space_id": self.target_collection_id
        }


@dataclass(frozen=True)
class ListSpaceMembers(RemoteOperation):
    collection_id: str = ""
    page_size: int = 50

    name = "list-space-members"
    tool = "wiki.v2.spaceMember.list"
    required = ("collection_id",)

    @property
    def identity(self):
        return self.collection_id

    def arguments(self):
        return {"space_id": self.collection_id, "page_size": self.page_size}


OPERATIONS: Dict[str, Type[RemoteOperation]] = {
    op.name: op
    for op in (
        GetCollectionInfo,
        GetItemInfo,
        ListChildren,
        SearchByKeyword,
        CreateReferenceLink,
        ListSpaceMembers,
    )
}


def build_operation(name: str, args: Optional[Dict[str, Any]] = None) -> RemoteOperation:
    """
    Build a validated operation variant from its name and keyword arguments.

    Raises:
        ValidationError: If the name is unknown or the arguments don't fit
    """
    op_class = OPERATIONS.get(name)
    if op_class is None:
        raise ValidationError(f"Unknown remote operation: {name}", operation=name)

    args = dict(args or {})
    allowed = {f.name for f in fields(op_class)}
    unexpected = sorted(set(args) - allowed)
    if unexpected:
        raise ValidationError(
            f"Unexpected arguments: {', '.join(unexpected)}",
            operation=name
        )
    return op_class(**args)
