from __future__ import annotations

import json

import httpx
import pytest

from yolo_transcript.exceptions import ConfigurationError, SanityError
from yolo_transcript.services import sanity

POSTS = [
    {"_id": "1", "title": "Diarization explained", "slug": {"current": "diarization"}, "excerpt": "Who said what"},
    {"_id": "2", "title": "Pricing update", "slug": {"current": "pricing"}, "excerpt": "Credits are cheaper"},
]


class FakeSanity:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        query = request.url.params["query"]
        if "slug.current == $slug" in query:
            slug = json.loads(request.url.params["$slug"])
            post = next((dict(p) for p in POSTS if p["slug"]["current"] == slug), None)
            if post is not None:
                post["body"] = [{"_type": "block", "style": "normal", "children": [{"_type": "span", "text": "Hi"}]}]
            return httpx.Response(200, json={"result": post})
        if '"slug": slug.current' in query:
            return httpx.Response(200, json={"result": [{"slug": p["slug"]["current"]} for p in POSTS]})
        return httpx.Response(200, json={"result": POSTS})

    def client(self) -> sanity.SanityClient:
        return sanity.SanityClient("proj123", "production", "2023-05-03", transport=httpx.MockTransport(self.handler))


def test_render_portable_text_blocks_lists_and_marks():
    blocks = [
        {"_type": "block", "style": "h2", "children": [{"_type": "span", "text": "Intro"}]},
        {
            "_type": "block",
            "style": "normal",
            "markDefs": [{"_key": "l1", "_type": "link", "href": "https://example.com?a=1&b=2"}],
            "children": [
                {"_type": "span", "text": "Read ", "marks": []},
                {"_type": "span", "text": "this", "marks": ["strong", "l1"]},
                {"_type": "span", "text": " <now>", "marks": ["em"]},
            ],
        },
        {"_type": "block", "listItem": "bullet", "children": [{"_type": "span", "text": "one"}]},
        {"_type": "block", "listItem": "bullet", "children": [{"_type": "span", "text": "two"}]},
        {"_type": "image", "asset": {"_ref": "image-1"}},
        {"_type": "block", "listItem": "number", "children": [{"_type": "span", "text": "first"}]},
    ]

    assert sanity.render_portable_text(blocks) == (
        "<h2>Intro</h2>"
        '<p>Read <a href="https://example.com?a=1&amp;b=2" rel="noopener noreferrer"><strong>this</strong></a>'
        "<em> &lt;now&gt;</em></p>"
        "<ul><li>one</li><li>two</li></ul>"
        "<ol><li>first</li></ol>"
    )
    assert sanity.render_portable_text(None) == ""


@pytest.mark.parametrize(
    ("href", "expected"),
    [
        ("javascript:alert(1)", "<p>click</p>"),
        (" JavaScript:alert(1)", "<p>click</p>"),
        ("java\tscript:alert(1)", "<p>click</p>"),
        ("data:text/html;base64,PHNjcmlwdD4=", "<p>click</p>"),
        ("mailto:team@example.com", '<p><a href="mailto:team@example.com" rel="noopener noreferrer">click</a></p>'),
        ("/blog/pricing", '<p><a href="/blog/pricing" rel="noopener noreferrer">click</a></p>'),
    ],
)
def test_render_portable_text_only_links_safe_schemes(href, expected):
    block = {
        "_type": "block",
        "markDefs": [{"_key": "l1", "_type": "link", "href": href}],
        "children": [{"_type": "span", "text": "click", "marks": ["l1"]}],
    }
    assert sanity.render_portable_text([block]) == expected


def test_client_queries_the_dataset_endpoint():
    fake = FakeSanity()
    client = fake.client()
    try:
        assert [post["_id"] for post in client.all_posts()] == ["1", "2"]
        assert client.post_by_slug("pricing")["title"] == "Pricing update"
        assert client.all_slugs() == ["diarization", "pricing"]
        assert [post["_id"] for post in client.search_posts("CREDITS")] == ["2"]
        assert client.search_posts("  ") == []
    finally:
        client.close()

    request = fake.requests[0]
    assert request.url.host == "proj123.api.sanity.io"
    assert request.url.path == "/v2023-05-03/data/query/production"


def test_client_raises_on_errors():
    client = sanity.SanityClient(
        "proj123", transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    )
    with pytest.raises(SanityError) as excinfo:
        client.all_posts()
    assert excinfo.value.status_code == 500

    with pytest.raises(ConfigurationError):
        sanity.SanityClient("")


def test_blog_routes(anonymous_client):
    from yolo_transcript.main import app

    fake = FakeSanity()
    app.dependency_overrides[sanity.get_sanity_client] = fake.client

    assert len(anonymous_client.get("/api/blog/posts").json()) == 2
    post = anonymous_client.get("/api/blog/posts/diarization").json()
    assert post["body_html"] == "<p>Hi</p>"
    assert anonymous_client.get("/api/blog/posts/missing").status_code == 404
    assert anonymous_client.get("/api/blog/slugs").json() == ["diarization", "pricing"]
    assert [p["_id"] for p in anonymous_client.get("/api/blog/search", params={"q": "who"}).json()] == ["1"]
