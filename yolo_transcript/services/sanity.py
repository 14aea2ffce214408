"""Read-only Sanity CMS client for blog posts and a portable-text HTML renderer."""
from __future__ import annotations

import html
import json
import logging
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import urlsplit

import httpx

from ..config import get_settings
from ..exceptions import ConfigurationError, SanityError

logger = logging.getLogger(__name__)

ALL_POSTS_QUERY = """*[_type == "post"] | order(publishedAt desc) {
  _id,
  title,
  slug,
  publishedAt,
  excerpt,
  categories[]->{title},
  "author": author->{name, image},
  mainImage
}"""

POST_BY_SLUG_QUERY = """*[_type == "post" && slug.current == $slug][0] {
  _id,
  title,
  slug,
  publishedAt,
  excerpt,
  body,
  showAds,
  "categories": categories[]->title,
  "author": author->{name, image},
  mainImage
}"""

ALL_SLUGS_QUERY = """*[_type == "post"] {
  "slug": slug.current
}"""


class SanityClient:
    def __init__(
        self,
        project_id: str,
        dataset: str = "production",
        api_version: str = "2023-05-03",
        *,
        use_cdn: bool = False,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not project_id:
            raise ConfigurationError("Sanity project id not configured")
        host = "apicdn.sanity.io" if use_cdn else "api.sanity.io"
        self._dataset = dataset
        self._client = httpx.Client(
            base_url=f"https://{project_id}.{host}/v{api_version.lstrip('v')}",
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def query(self, groq: str, **params: Any) -> Any:
        query_params = {"query": groq, "perspective": "published"}
        # GROQ parameters are passed as JSON literals prefixed with "$".
        query_params.update({f"${key}": json.dumps(value) for key, value in params.items()})
        try:
            response = self._client.get(f"/data/query/{self._dataset}", params=query_params)
        except httpx.HTTPError as exc:
            raise SanityError(f"Sanity request failed: {exc}") from exc
        if response.status_code >= 400:
            raise SanityError("Sanity query failed", status_code=response.status_code, payload=response.text)
        return response.json().get("result")

    def all_posts(self) -> list[dict[str, Any]]:
        return self.query(ALL_POSTS_QUERY) or []

    def post_by_slug(self, slug: str) -> Optional[dict[str, Any]]:
        return self.query(POST_BY_SLUG_QUERY, slug=slug)

    def all_slugs(self) -> list[str]:
        return [item["slug"] for item in self.query(ALL_SLUGS_QUERY) or [] if item.get("slug")]

    def search_posts(self, term: str) -> list[dict[str, Any]]:
        needle = term.strip().lower()
        if not needle:
            return []
        return [
            post
            for post in self.all_posts()
            if needle in (post.get("title") or "").lower() or needle in (post.get("excerpt") or "").lower()
        ]


def get_sanity_client() -> SanityClient:
    settings = get_settings()
    return SanityClient(
        settings.sanity_project_id or "",
        settings.sanity_dataset,
        settings.sanity_api_version,
        use_cdn=settings.sanity_use_cdn,
        timeout=settings.http_timeout_seconds,
    )


_BLOCK_TAGS = {
    "normal": "p",
    "h1": "h1",
    "h2": "h2",
    "h3": "h3",
    "h4": "h4",
    "h5": "h5",
    "h6": "h6",
    "blockquote": "blockquote",
}
_MARK_TAGS = {
    "strong": "strong",
    "em": "em",
    "code": "code",
    "underline": "u",
    "strike-through": "s",
}
_LIST_TAGS = {"bullet": "ul", "number": "ol"}
_LINK_SCHEMES = {"", "http", "https", "mailto"}


def _safe_href(href: str) -> Optional[str]:
    try:
        scheme = urlsplit(href.strip()).scheme.lower()
    except ValueError:
        return None
    return href.strip() if scheme in _LINK_SCHEMES else None


def _render_span(span: Mapping[str, Any], mark_defs: Mapping[str, Mapping[str, Any]]) -> str:
    text = html.escape(str(span.get("text", ""))).replace("\n", "<br/>")
    for mark in span.get("marks") or []:
        tag = _MARK_TAGS.get(mark)
        if tag:
            text = f"<{tag}>{text}</{tag}>"
            continue
        definition = mark_defs.get(mark)
        if definition and definition.get("_type") == "link" and definition.get("href"):
            href = _safe_href(str(definition["href"]))
            if href is None:
                logger.warning("Dropped link with unsupported scheme", extra={"mark": mark})
                continue
            text = f'<a href="{html.escape(href, quote=True)}" rel="noopener noreferrer">{text}</a>'
    return text


def _render_block_children(block: Mapping[str, Any]) -> str:
    mark_defs = {item.get("_key"): item for item in block.get("markDefs") or [] if item.get("_key")}
    return "".join(
        _render_span(child, mark_defs) for child in block.get("children") or [] if child.get("_type") == "span"
    )


def render_portable_text(blocks: Optional[Iterable[Mapping[str, Any]]]) -> str:
    """Render Sanity portable text blocks to escaped HTML.

    Consecutive list items with the same ``listItem`` type are grouped into a
    single ``<ul>``/``<ol>``; unknown block types are skipped.
    """

    output: list[str] = []
    open_list: Optional[str] = None
    for block in blocks or []:
        if block.get("_type") != "block":
            continue
        list_item = block.get("listItem")
        list_tag = _LIST_TAGS.get(list_item) if list_item else None
        if open_list and open_list != list_tag:
            output.append(f"</{open_list}>")
            open_list = None
        content = _render_block_children(block)
        if list_tag:
            if open_list is None:
                output.append(f"<{list_tag}>")
                open_list = list_tag
            output.append(f"<li>{content}</li>")
            continue
        tag = _BLOCK_TAGS.get(block.get("style") or "normal", "p")
        output.append(f"<{tag}>{content}</{tag}>")
    if open_list:
        output.append(f"</{open_list}>")
    return "".join(output)
