"""Local key-value store: one JSON document per key under the data directory.

Keys mirror what the browser build kept in local storage: the provider
configuration, the article history and the last search result. Writers in
this process are serialized per file and every write replaces the file
atomically. History updates hold the history lock from read to replace.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from .config import ProviderConfig, Settings, data_root
from .models import GeneratedArticle, SearchResult
from .schema import validate_history

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
HISTORY_KEY = "history"
LAST_SEARCH_KEY = "last_search"

_LOCKS: dict[str, RLock] = {}
_LOCKS_GUARD = RLock()


@contextmanager
def _locked(path: Path) -> Iterator[None]:
    key = str(path.resolve())
    with _LOCKS_GUARD:
        lock = _LOCKS.setdefault(key, RLock())
    with lock:
        yield


class ArticleNotFound(KeyError):
    """No article with the requested id exists in history."""


class JsonStore:
    def __init__(self, root: Path | str | None = None, settings: Settings | None = None):
        self.root = Path(root) if root else data_root(settings)

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}.json"

    # --- raw key/value -----------------------------------------------------

    def read(self, key: str, default: Any = None) -> Any:
        path = self.path_for(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.error("Ignoring unreadable store file %s: %s", path, exc)
            return default

    def write(self, key: str, value: Any) -> Path:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with _locked(path):
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(json.dumps(value, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        return path

    # --- provider configuration -------------------------------------------

    def load_config(self) -> ProviderConfig:
        """Saved configuration merged over the defaults; invalid data falls back to defaults."""
        saved = self.read(SETTINGS_KEY, {}) or {}
        merged = {**ProviderConfig().model_dump(by_alias=True), **saved}
        try:
            return ProviderConfig.model_validate(merged)
        except ValidationError as exc:
            logger.error("Stored provider configuration is invalid; using defaults: %s", exc)
            return ProviderConfig()

    def save_config(self, config: ProviderConfig) -> Path:
        return self.write(SETTINGS_KEY, config.model_dump(mode="json", by_alias=True))

    # --- history ----------------------------------------------------------

    def load_history(self) -> List[GeneratedArticle]:
        articles: List[GeneratedArticle] = []
        for record in self.read(HISTORY_KEY, []) or []:
            try:
                articles.append(GeneratedArticle.model_validate(record))
            except ValidationError as exc:
                logger.warning("Skipping malformed history record: %s", exc)
        return articles

    def _write_history(self, articles: Sequence[GeneratedArticle]) -> Path:
        records = validate_history(
            [article.model_dump(mode="json", by_alias=True) for article in articles]
        )
        return self.write(HISTORY_KEY, records)

    def append_articles(self, articles: Sequence[GeneratedArticle]) -> Path:
        """Append finished articles in completion order."""
        with _locked(self.path_for(HISTORY_KEY)):
            return self._write_history([*self.load_history(), *articles])

    def get_article(self, article_id: str) -> GeneratedArticle:
        for article in self.load_history():
            if article.id == article_id:
                return article
        raise ArticleNotFound(article_id)

    def update_article(self, article_id: str, **edits: Optional[str]) -> GeneratedArticle:
        """Apply user edits (title/summary/content) or an image reselection."""
        with _locked(self.path_for(HISTORY_KEY)):
            history = self.load_history()
            for idx, article in enumerate(history):
                if article.id == article_id:
                    updated = article.apply_edits(**edits)
                    history[idx] = updated
                    self._write_history(history)
                    return updated
        raise ArticleNotFound(article_id)

    # --- last search ------------------------------------------------------

    def save_search(self, category: str, result: SearchResult) -> Path:
        return self.write(
            LAST_SEARCH_KEY,
            {"category": category, "result": result.model_dump(mode="json", by_alias=True)},
        )

    def load_search(self) -> tuple[str, SearchResult] | None:
        payload = self.read(LAST_SEARCH_KEY)
        if not payload:
            return None
        try:
            return payload.get("category", ""), SearchResult.model_validate(payload["result"])
        except (KeyError, ValidationError) as exc:
            logger.warning("Stored search result is unusable: %s", exc)
            return None
