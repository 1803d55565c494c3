"""Export an edited article as inline-styled HTML for the publishing editor.

The target editor keeps inline ``style`` attributes but drops linked style
sheets, ``class`` based rules and positional selectors, so every element
carries its own declaration from the theme below. Code spans inside ``pre``,
table row striping and the last paragraph of quotes/list items are handled
explicitly for the same reason.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from types import MappingProxyType
from typing import Mapping, Optional, Protocol, Sequence

from bs4 import BeautifulSoup, NavigableString, Tag
from markdown_it import MarkdownIt

from .errors import ClipboardUnavailable
from .models import GeneratedArticle

logger = logging.getLogger(__name__)

StyleTheme = Mapping[str, str]

_FONT_STACK = (
    "-apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif"
)
_MONO_STACK = "Menlo, Monaco, Consolas, monospace"
_ACCENT = "#07c160"

DEFAULT_THEME: StyleTheme = MappingProxyType(
    {
        # Wrapper
        "container": (
            f"font-family: {_FONT_STACK}; font-size: 16px; line-height: 1.75; color: #3f3f3f; "
            "text-align: justify; overflow-wrap: break-word; letter-spacing: 0.5px;"
        ),
        "title": "font-size: 24px; font-weight: bold; color: #333; line-height: 1.4; margin-bottom: 10px;",
        "meta": "font-size: 14px; color: rgba(0,0,0,0.4); margin-bottom: 24px;",
        "meta_author": "margin-right: 10px; color: #576b95; font-weight: bold;",
        "meta_date": "color: rgba(0,0,0,0.3);",
        "cover": (
            "margin-bottom: 24px; border-radius: 6px; overflow: hidden; "
            "box-shadow: 0 4px 12px rgba(0,0,0,0.08);"
        ),
        "cover_img": "display: block; width: 100%; height: auto !important;",
        "summary": (
            "margin-bottom: 30px; padding: 16px; background-color: #f5f6f7; font-size: 15px; "
            "color: #555; line-height: 1.6; border-radius: 6px; border: 1px solid #eee;"
        ),
        "summary_label": "font-weight: bold; color: #333; margin-right: 8px;",
        "body": "margin: 0; padding: 0;",
        "footer": (
            "margin-top: 40px; padding-top: 20px; border-top: 1px dashed #eee; "
            "text-align: center; font-size: 12px; color: #999;"
        ),
        # Headings
        "h1": (
            "font-size: 22px; font-weight: bold; margin-top: 30px; margin-bottom: 20px; "
            "text-align: center; color: #333; line-height: 1.4;"
        ),
        "h2": (
            "display: block; font-size: 18px; font-weight: bold; margin-top: 40px; "
            f"margin-bottom: 20px; padding-bottom: 10px; border-bottom: 2px solid {_ACCENT}; "
            "color: #333; text-align: center;"
        ),
        "h3": (
            "display: block; font-size: 16px; font-weight: bold; margin-top: 30px; "
            f"margin-bottom: 15px; padding-left: 10px; border-left: 4px solid {_ACCENT}; "
            "color: #333; line-height: 1.4;"
        ),
        "h4": "font-size: 16px; font-weight: bold; margin-top: 24px; margin-bottom: 12px; color: #333;",
        "h5": "font-size: 15px; font-weight: bold; margin-top: 20px; margin-bottom: 10px; color: #333;",
        "h6": "font-size: 14px; font-weight: bold; margin-top: 20px; margin-bottom: 10px; color: #666;",
        # Text
        "p": "margin-bottom: 16px; line-height: 1.75; color: #3f3f3f;",
        "strong": f"color: {_ACCENT}; font-weight: bold;",
        "em": "font-style: italic; color: #666; padding-right: 2px;",
        "del": "text-decoration: line-through; color: #999;",
        "blockquote": (
            f"margin: 20px 0; padding: 16px; background: #f8f9fa; border-left: 4px solid {_ACCENT}; "
            "border-radius: 4px; color: #555; font-size: 15px; line-height: 1.6; "
            "box-shadow: 2px 2px 6px rgba(0,0,0,0.05);"
        ),
        "last_paragraph": "margin-bottom: 0 !important;",
        # Lists
        "ul": "margin-bottom: 16px; padding-left: 20px; list-style-type: disc; color: #3f3f3f;",
        "ol": "margin-bottom: 16px; padding-left: 20px; list-style-type: decimal; color: #3f3f3f;",
        "li": "margin-bottom: 6px; line-height: 1.6;",
        # Code
        "code_inline": (
            f"font-family: {_MONO_STACK}; background-color: #fff5f5; color: #ff502c; "
            "padding: 2px 5px; border-radius: 4px; font-size: 14px; margin: 0 3px;"
        ),
        "pre": (
            "display: block; background-color: #282c34; padding: 16px; border-radius: 8px; "
            "overflow-x: auto; margin: 20px 0; box-shadow: 0 4px 12px rgba(0,0,0,0.1);"
        ),
        "code_block": (
            f"font-family: {_MONO_STACK}; background-color: transparent; color: #abb2bf; "
            "font-size: 13px; line-height: 1.5; white-space: pre;"
        ),
        # Media and links
        "img": (
            "display: block; max-width: 100% !important; height: auto !important; "
            "margin: 20px auto; border-radius: 8px; box-shadow: 0 4px 16px rgba(0,0,0,0.08);"
        ),
        "a": (
            f"color: {_ACCENT}; text-decoration: none; border-bottom: 1px dashed {_ACCENT}; "
            "font-weight: 500; margin: 0 2px;"
        ),
        "hr": "border: none; border-top: 1px dashed #ddd; margin: 30px 0;",
        # Tables
        "table": (
            "width: 100%; border-collapse: collapse; margin-bottom: 20px; "
            "font-size: 14px; border: 1px solid #eee;"
        ),
        "thead": "background-color: #f8f8f8;",
        "tbody": "background-color: #fff;",
        "tr": "border: 1px solid #dfdfdf;",
        "row_stripe": "background-color: #fafafa;",
        "th": (
            "border: 1px solid #dfdfdf; padding: 10px; background-color: #f8f8f8; "
            "font-weight: bold; color: #333; text-align: left;"
        ),
        "td": "border: 1px solid #dfdfdf; padding: 10px; color: #3f3f3f;",
    }
)

# Tag name -> theme kind; ``code`` is resolved from its parent instead.
TAG_KINDS: Mapping[str, str] = MappingProxyType(
    {
        "h1": "h1",
        "h2": "h2",
        "h3": "h3",
        "h4": "h4",
        "h5": "h5",
        "h6": "h6",
        "p": "p",
        "strong": "strong",
        "b": "strong",
        "em": "em",
        "i": "em",
        "s": "del",
        "del": "del",
        "blockquote": "blockquote",
        "ul": "ul",
        "ol": "ol",
        "li": "li",
        "pre": "pre",
        "img": "img",
        "a": "a",
        "hr": "hr",
        "table": "table",
        "thead": "thead",
        "tbody": "tbody",
        "tr": "tr",
        "th": "th",
        "td": "td",
    }
)

DEFAULT_FOOTER: tuple[str, ...] = (
    "Drafted with the help of AI agents",
    "For reference only",
)
SUMMARY_LABEL = "Summary"
MANUAL_COPY_MESSAGE = (
    "Automatic copy failed. Open the exported HTML in a browser, select the "
    "whole preview and copy it manually."
)

_markdown = (
    MarkdownIt("commonmark", {"breaks": True, "html": True}).enable(["table", "strikethrough"])
)


def element_kind(tag: str, parent: str | None) -> Optional[str]:
    """Theme kind for an element; ``None`` means "emit unstyled"."""
    if tag == "code":
        return "code_block" if parent == "pre" else "code_inline"
    return TAG_KINDS.get(tag)


def style_for(tag: str, parent: str | None, theme: StyleTheme = DEFAULT_THEME) -> str:
    kind = element_kind(tag, parent)
    return theme.get(kind, "") if kind else ""


def append_style(tag: Tag, style: str) -> None:
    """Add declarations after any inline style the node already has."""
    if not style:
        return
    existing = (tag.get("style") or "").strip()
    if existing and not existing.endswith(";"):
        existing = f"{existing};"
    tag["style"] = f"{existing} {style}" if existing else style


def _is_last_paragraph(tag: Tag) -> bool:
    parent = tag.parent
    if tag.name != "p" or parent is None or parent.name not in ("blockquote", "li"):
        return False
    paragraphs = parent.find_all("p", recursive=False)
    return bool(paragraphs) and paragraphs[-1] is tag


def _style_body(body: Tag, theme: StyleTheme) -> None:
    row_counts: dict[int, int] = {}
    for tag in body.find_all(True):
        parent_name = tag.parent.name if tag.parent is not None else None
        append_style(tag, style_for(tag.name, parent_name, theme))
        if tag.name == "tr":
            table = tag.find_parent("table")
            key = id(table)
            index = row_counts.get(key, 0)
            row_counts[key] = index + 1
            if index % 2 == 1:
                append_style(tag, theme["row_stripe"])
        elif _is_last_paragraph(tag):
            append_style(tag, theme["last_paragraph"])


def markdown_to_html(content: str) -> str:
    """Render the markdown body with soft line breaks kept as ``<br>``."""
    return _markdown.render(content or "")


def render_export(
    title: str,
    summary: str,
    content: str,
    image_url: str = "",
    *,
    theme: StyleTheme = DEFAULT_THEME,
    author_label: str = "AI Newsroom",
    published: date | None = None,
    footer_lines: Sequence[str] = DEFAULT_FOOTER,
) -> str:
    """
    Build the self-contained styled fragment for the publishing editor.

    Layout: title, author/date line, optional cover, optional summary, the
    rendered body and a fixed footer. Every call parses ``content`` afresh,
    so repeated exports of the same input are byte-identical.
    """
    soup = BeautifulSoup("", "html.parser")

    def block(name: str, kind: str, text: str | None = None) -> Tag:
        node = soup.new_tag(name)
        append_style(node, theme[kind])
        if text is not None:
            node.append(NavigableString(text))
        return node

    root = block("section", "container")

    root.append(block("h1", "title", title))

    meta = block("p", "meta")
    meta.append(block("span", "meta_author", author_label))
    meta.append(block("span", "meta_date", (published or date.today()).isoformat()))
    root.append(meta)

    if image_url:
        cover = block("div", "cover")
        img = block("img", "cover_img")
        img["src"] = image_url
        img["alt"] = title
        cover.append(img)
        root.append(cover)

    if summary and summary.strip():
        summary_block = block("section", "summary")
        summary_block.append(block("span", "summary_label", SUMMARY_LABEL))
        summary_block.append(NavigableString(summary.strip()))
        root.append(summary_block)

    body = block("div", "body")
    parsed = BeautifulSoup(markdown_to_html(content), "html.parser")
    for node in list(parsed.contents):
        body.append(node.extract())
    _style_body(body, theme)
    root.append(body)

    footer = block("p", "footer")
    for idx, line in enumerate(footer_lines):
        if idx:
            footer.append(soup.new_tag("br"))
        footer.append(NavigableString(line))
    root.append(footer)

    return str(root)


def render_article(article: GeneratedArticle, **kwargs) -> str:
    return render_export(article.title, article.summary, article.content, article.image_url, **kwargs)


def export_markdown(title: str, summary: str, content: str) -> str:
    """Plain markdown export; independent of the styled renderer."""
    parts = [f"# {title}"]
    if summary and summary.strip():
        parts.append(f"> {summary.strip()}")
    parts.append(content)
    return "\n\n".join(parts)


class ClipboardWriter(Protocol):
    def write_html(self, html: str, plain_text: str) -> None:
        """Place a text/html blob (with a plain-text alternative) on the clipboard."""


@dataclass
class ExportOutcome:
    copied: bool
    html: str
    message: str


def copy_to_clipboard(
    html: str, writer: ClipboardWriter | None = None, *, plain_text: str = ""
) -> ExportOutcome:
    """Hand the styled fragment to the clipboard, or explain how to copy it manually."""
    if writer is None:
        return ExportOutcome(copied=False, html=html, message=MANUAL_COPY_MESSAGE)
    try:
        writer.write_html(html, plain_text)
    except (ClipboardUnavailable, OSError) as exc:
        logger.warning("Clipboard write rejected: %s", exc)
        return ExportOutcome(copied=False, html=html, message=MANUAL_COPY_MESSAGE)
    return ExportOutcome(copied=True, html=html, message="Copied styled article to the clipboard.")
