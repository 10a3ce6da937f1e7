"""
Topic data model.

Represents topic descriptors (keyword + pattern rule sets) and the
collections they are crawled against.
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from src.errors import ValidationError


def compile_patterns(patterns) -> Tuple[re.Pattern, ...]:
    """
    Compile pattern sources into case-insensitive regular expressions.

    Already-compiled patterns are kept as they are.
    """
    compiled = []
    for pattern in patterns or ():
        if isinstance(pattern, re.Pattern):
            compiled.append(pattern)
            continue
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            raise ValidationError(f"Invalid pattern {pattern!r}: {e}")
    return tuple(compiled)


@dataclass(frozen=True)
class TopicDescriptor:
    """
    Keyword and pattern rules defining membership of content items in a topic.
    Immutable once registered under its id.
    """
    id: str
    name: str
    keywords: Tuple[str, ...]
    include_patterns: Tuple[re.Pattern, ...] = ()
    exclude_patterns: Tuple[re.Pattern, ...] = ()
    priority: Optional[int] = None  # Carried through config, not used for ordering

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Topic id must not be empty")

        keywords = tuple(k.strip() for k in self.keywords if k and k.strip())
        if not keywords:
            raise ValidationError(f"Topic '{self.id}' must declare at least one keyword")

        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "keywords", keywords)
        object.__setattr__(self, "include_patterns", compile_patterns(self.include_patterns))
        object.__setattr__(self, "exclude_patterns", compile_patterns(self.exclude_patterns))

    @classmethod
    def from_dict(cls, data: dict) -> "TopicDescriptor":
        """Create TopicDescriptor from a persisted config entry."""
        try:
            topic_id = data["id"]
        except KeyError:
            raise ValidationError(f"Topic entry missing 'id': {data}")
        return cls(
            id=topic_id,
            name=data.get("name", topic_id),
            keywords=tuple(data.get("keywords", [])),
            include_patterns=tuple(data.get("includePatterns", [])),
            exclude_patterns=tuple(data.get("excludePatterns", [])),
            priority=data.get("priority")
        )

    def to_dict(self) -> dict:
        """Convert to the persisted config shape."""
        data = {
            "id": self.id,
            "name": self.name,
            "keywords": list(self.keywords)
        }
        if self.include_patterns:
            data["includePatterns"] = [p.pattern for p in self.include_patterns]
        if self.exclude_patterns:
            data["excludePatterns"] = [p.pattern for p in self.exclude_patterns]
        if self.priority is not None:
            data["priority"] = self.priority
        return data

    def same_definition(self, other: "TopicDescriptor") -> bool:
        return self.to_dict() == other.to_dict()


@dataclass
class CollectionSource:
    """
    A searchable namespace of content items (a wiki space).
    """
    id: str
    name: str = ""
    search_enabled: bool = True

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Collection id must not be empty")
        if not self.name:
            self.name = self.id

    @classmethod
    def from_dict(cls, data: dict) -> "CollectionSource":
        try:
            collection_id = data["id"]
        except KeyError:
            raise ValidationError(f"Collection entry missing 'id': {data}")
        return cls(
            id=collection_id,
            name=data.get("name") or collection_id,
            search_enabled=data.get("searchEnabled", True)
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "searchEnabled": self.search_enabled
        }
