"""FastAPI service exposing search, batch generation, history, images and export."""

from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import ProviderConfig, get_settings
from .errors import ConfigurationError, ProviderError
from .export import export_markdown, render_export
from .images import resolve_images
from .models import GeneratedArticle, Topic
from .pipeline import BatchOutcome, run_batch
from .providers import build_provider
from .store import ArticleNotFound, JsonStore
from .workflow import search_topics

logger = logging.getLogger(__name__)

app = FastAPI(title="Article Studio")


def _add_cors(app: FastAPI) -> None:
    """Allow a browser front end to call the API during local development."""
    allow_all = os.getenv("CORS_ALLOW_ALL", "true").lower() == "true"
    origins_env = os.getenv("CORS_ALLOW_ORIGINS", "")
    origins = [o.strip() for o in origins_env.split(",") if o.strip()]
    allow_credentials = os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"
    if allow_all or not origins:
        origins = ["*"]
    if origins == ["*"] and allow_credentials:
        # Starlette/FastAPI disallow wildcard origins when credentials are enabled.
        allow_credentials = False
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )


_add_cors(app)


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchRequest(_Request):
    category: str = Field(..., min_length=1)


class BatchRequest(_Request):
    topics: List[Topic] = Field(..., min_length=1)
    style: str = Field(..., min_length=1)
    instructions: str = ""
    category: str = ""


class ArticleEdit(_Request):
    title: Optional[str] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    image_url: Optional[str] = None
    image_search_query: Optional[str] = None


class ImageRequest(_Request):
    query: str
    exclude: Optional[str] = None


class ExportRequest(_Request):
    title: str
    summary: str = ""
    content: str
    image_url: str = ""
    published: Optional[date] = None


def get_store() -> JsonStore:
    """Store rooted at DATA_DIR (or the repo data/ directory)."""
    return JsonStore(settings=get_settings())


def _dump(model: BaseModel) -> Any:
    return model.model_dump(mode="json", by_alias=True)


def _bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _bad_gateway(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/settings")
def read_settings() -> Dict[str, Any]:
    return _dump(get_store().load_config())


@app.put("/settings")
def update_settings(config: ProviderConfig) -> Dict[str, Any]:
    get_store().save_config(config)
    return _dump(config)


@app.post("/topics/search")
async def search(request: SearchRequest) -> Dict[str, Any]:
    store = get_store()
    try:
        result = await search_topics(request.category, store.load_config())
    except (ConfigurationError, ValueError) as exc:
        raise _bad_request(exc) from exc
    except ProviderError as exc:
        raise _bad_gateway(exc) from exc
    store.save_search(request.category, result)
    return _dump(result)


@app.post("/articles/batch", status_code=status.HTTP_201_CREATED)
async def generate_batch(request: BatchRequest) -> JSONResponse:
    """
    Generate one article per topic, sequentially.

    Partial success stores and returns the finished articles with 201; when
    every topic fails nothing is stored and the failures come back with 502.
    """
    store = get_store()
    try:
        batch = await run_batch(
            request.topics,
            request.style,
            request.instructions,
            store.load_config(),
            category=request.category,
        )
    except (ConfigurationError, ValueError) as exc:
        raise _bad_request(exc) from exc

    body = {
        "outcome": batch.outcome.value,
        "articles": [_dump(article) for article in batch.articles],
        "failures": [
            {
                "topicId": failure.topic.id,
                "title": failure.topic.title,
                "stage": failure.stage.value,
                "error": failure.error,
            }
            for failure in batch.failures
        ],
    }
    if batch.outcome is BatchOutcome.FAILED:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=body)

    store.append_articles(batch.articles)
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body)


@app.get("/articles")
def list_articles() -> List[Dict[str, Any]]:
    """History, newest first."""
    return [_dump(article) for article in reversed(get_store().load_history())]


@app.patch("/articles/{article_id}")
def edit_article(article_id: str, edit: ArticleEdit) -> Dict[str, Any]:
    try:
        updated: GeneratedArticle = get_store().update_article(
            article_id, **edit.model_dump(exclude_none=True)
        )
    except ArticleNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"No article with id {article_id}."
        ) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return _dump(updated)


@app.post("/images/resolve")
async def resolve(request: ImageRequest) -> Dict[str, List[str]]:
    settings = get_settings()
    config = get_store().load_config()
    try:
        client = build_provider(config, settings)
    except ConfigurationError as exc:
        logger.info("Image expansion disabled: %s", exc)
        client = None
    try:
        urls = await resolve_images(
            request.query, config, request.exclude, client=client, settings=settings
        )
    finally:
        if client is not None:
            await client.aclose()
    return {"candidates": urls}


@app.post("/export/html")
def export_html(request: ExportRequest) -> Dict[str, str]:
    settings = get_settings()
    html = render_export(
        request.title,
        request.summary,
        request.content,
        request.image_url,
        author_label=settings.export_author_label,
        published=request.published,
    )
    return {"html": html}


@app.post("/export/markdown")
def export_md(request: ExportRequest) -> Dict[str, str]:
    return {"markdown": export_markdown(request.title, request.summary, request.content)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "article_studio.server:app",
        host=os.getenv("STUDIO_HOST", "0.0.0.0"),
        port=int(os.getenv("STUDIO_PORT", "8000")),
        reload=os.getenv("STUDIO_RELOAD", "false").lower() == "true",
    )
