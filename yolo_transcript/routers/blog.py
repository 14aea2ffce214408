from __future__ import annotations

from typing import Any, Dict, Iterator, List

from fastapi import APIRouter, Depends, HTTPException, Query

from ..services import sanity

router = APIRouter(prefix="/api/blog", tags=["blog"])


def _sanity_client(
    client: sanity.SanityClient = Depends(sanity.get_sanity_client),
) -> Iterator[sanity.SanityClient]:
    try:
        yield client
    finally:
        client.close()


@router.get("/posts")
def list_posts(client: sanity.SanityClient = Depends(_sanity_client)) -> List[Dict[str, Any]]:
    return client.all_posts()


@router.get("/posts/{slug}")
def get_post(slug: str, client: sanity.SanityClient = Depends(_sanity_client)) -> Dict[str, Any]:
    post = client.post_by_slug(slug)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    post = dict(post)
    post["body_html"] = sanity.render_portable_text(post.get("body"))
    return post


@router.get("/slugs")
def list_slugs(client: sanity.SanityClient = Depends(_sanity_client)) -> List[str]:
    return client.all_slugs()


@router.get("/search")
def search_posts(
    q: str = Query("", description="Case-insensitive match on title and excerpt"),
    client: sanity.SanityClient = Depends(_sanity_client),
) -> List[Dict[str, Any]]:
    return client.search_posts(q)
