"""Data models for the article generation workflow."""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    """camelCase on the wire and in storage, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Topic(_Record):
    """One trending story offered for selection; ids are unique within a search."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str = Field(..., min_length=1)
    description: str = ""


class TopicList(_Record):
    """Structured output of the topic extraction call."""

    topics: List[Topic]

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_array(cls, data: Any) -> Any:
        # Some backends answer with the array itself instead of the wrapper object.
        if isinstance(data, list):
            return {"topics": data}
        return data


class NewsSource(_Record):
    title: str = "Source"
    uri: str = "#"


class SearchResult(_Record):
    raw_summary: str
    sources: List[NewsSource] = Field(default_factory=list)
    topics: List[Topic] = Field(default_factory=list)


class ArticlePlan(_Record):
    """Editor output; consumed only by the writer."""

    angle: str = Field(..., min_length=1, description="The angle the article takes.")
    tone: str = Field(..., min_length=1, description="The emotional tone.")
    target_audience: str = Field("", description="Who the article is written for.")
    outline: List[str] = Field(..., min_length=1, description="Ordered section headings.")

    @field_validator("outline")
    @classmethod
    def _drop_blank_headings(cls, value: List[str]) -> List[str]:
        headings = [item.strip() for item in value if item and item.strip()]
        if not headings:
            raise ValueError("outline must contain at least one heading")
        return headings


class ArticleDraft(_Record):
    title: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, description="Markdown body.")


class VisualBrief(_Record):
    image_search_query: str = Field(..., min_length=1)


class KeywordExpansion(_Record):
    keywords: List[str] = Field(default_factory=list)


class AgentLog(_Record):
    angle: str
    tone: str
    style: str


def new_article_id() -> str:
    """Time-ordered id with a random suffix: ``<epoch millis><10 hex chars>``."""
    return f"{int(time.time() * 1000)}{secrets.token_hex(5)}"


class GeneratedArticle(_Record):
    """The persisted unit; exists only once every required stage succeeded."""

    id: str = Field(default_factory=new_article_id, min_length=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    title: str = Field(..., min_length=1)
    summary: str
    content: str = Field(..., min_length=1)
    image_search_query: str = ""
    image_url: str = ""
    original_topic: str = ""
    category: str = ""
    agent_log: AgentLog

    def apply_edits(
        self,
        *,
        title: str | None = None,
        summary: str | None = None,
        content: str | None = None,
        image_url: str | None = None,
        image_search_query: str | None = None,
    ) -> "GeneratedArticle":
        """Return a copy with user edits or an image reselection applied."""
        changes = {
            key: value
            for key, value in (
                ("title", title),
                ("summary", summary),
                ("content", content),
                ("image_url", image_url),
                ("image_search_query", image_search_query),
            )
            if value is not None
        }
        return self.model_validate({**self.model_dump(), **changes})
