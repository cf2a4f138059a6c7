import pytest
import requests

from buildstate.errors import ApiError
from buildstate.models import BlogPost
from buildstate.services import markdown
from buildstate.services.blog_ai import FALLBACK_MODELS, AIServiceError, BlogAIService, parse_json_response


class FakeResponse:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text

    def json(self):
        return {"content": [{"type": "text", "text": self.text}]}


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.models = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.models.append(json["model"])
        return self.responses.pop(0)


def test_markdown_to_html():
    html = markdown.to_html(
        "# Title\n\nSome **bold** and *soft* words with `code`.\n\n"
        "- one\n- two\n\n1. first\n2. second\n\nSee [docs](https://example.com/a?b=1&c=2)."
    )
    assert "<h1>Title</h1>" in html
    assert "<p>Some <strong>bold</strong> and <em>soft</em> words with <code>code</code>.</p>" in html
    assert "<ul><li>one</li><li>two</li></ul>" in html
    assert "<ol><li>first</li><li>second</li></ol>" in html
    assert '<a href="https://example.com/a?b=1&amp;c=2">docs</a>' in html


def test_markdown_escapes_html():
    assert markdown.to_html("<script>alert(1)</script>") == "<p>&lt;script&gt;alert(1)&lt;/script&gt;</p>"


def test_reading_time_and_excerpt():
    assert markdown.reading_time("word " * 450) == 2
    assert markdown.reading_time("") == 1
    text = markdown.excerpt("## Heading\n\n" + "lorem ipsum " * 40, length=50)
    assert len(text) <= 50
    assert text.endswith("...")
    assert not text.startswith("#")


def test_strip_code_fence():
    assert markdown.strip_code_fence("```markdown\n# Hi\n```") == "# Hi"
    assert markdown.strip_code_fence("# Plain") == "# Plain"


def test_parse_json_response_with_prose_and_raw_newlines():
    text = 'Sure! Here it is:\n```json\n{"title": "Line one\nline two", "keywords": ["a"]}\n```'
    assert parse_json_response(text) == {"title": "Line one\nline two", "keywords": ["a"]}

    with pytest.raises(AIServiceError):
        parse_json_response("no json here")


def test_service_requires_api_key():
    with pytest.raises(ApiError) as exc:
        BlogAIService(None)
    assert exc.value.status == 503


def test_model_fallback_on_404():
    session = FakeSession(FakeResponse(404, "not found"), FakeResponse(200, "hello"))
    service = BlogAIService("key", session=session)

    assert service.complete("hi") == "hello"
    assert session.models == FALLBACK_MODELS[:2]
    assert service.model == FALLBACK_MODELS[1]
    assert FALLBACK_MODELS[0] in service.fallback_models


def test_configured_model_is_a_current_one(app):
    app.config["ANTHROPIC_API_KEY"] = "key"
    service = BlogAIService.from_app()
    assert service.model == FALLBACK_MODELS[0]
    assert not any(m.startswith("claude-3") for m in FALLBACK_MODELS)


def test_service_error_status_is_reported():
    service = BlogAIService("key", session=FakeSession(FakeResponse(500, "overloaded")))
    with pytest.raises(ApiError) as exc:
        service.complete("hi")
    assert exc.value.status == 502


def test_network_failure_is_reported():
    class Broken:
        def post(self, *args, **kwargs):
            raise requests.ConnectionError("down")

    with pytest.raises(ApiError) as exc:
        BlogAIService("key", session=Broken()).complete("hi")
    assert exc.value.status == 502


def test_generate_content():
    session = FakeSession(
        FakeResponse(200, "```markdown\n## Planning\n\nKeep a **schedule**.\n```"),
        FakeResponse(200, '{"metaTitle": "Plan ahead", "suggestedTags": ["Maintenance", 3], "readingTime": "4"}'),
    )
    article = BlogAIService("key", session=session).generate_content({"title": "Preventive maintenance"})
    assert article["markdown"].startswith("## Planning")
    assert "<h2>Planning</h2>" in article["html"]
    assert article["meta_title"] == "Plan ahead"
    assert article["tags"] == ["Maintenance"]
    assert article["reading_time"] == 4


def test_admin_creates_and_publishes_post(client, admin, headers):
    auth = headers(admin)
    category = client.post("/api/blog/admin/categories", json={"name": "Compliance"}, headers=auth)
    assert category.status_code == 201
    category_id = category.get_json()["item"]["id"]

    resp = client.post("/api/blog/admin/posts", headers=auth, json={
        "title": "Fire Safety Checks!", "content": "## Why\n\nBecause **rules**.",
        "category_ids": [category_id], "tags": ["Safety", "safety", "Audits"],
    })
    assert resp.status_code == 201
    post = resp.get_json()["post"]
    assert post["slug"] == "fire-safety-checks"
    assert post["status"] == "DRAFT"
    assert "<h2>Why</h2>" in post["content"]
    assert sorted(t["name"] for t in post["tags"]) == ["Audits", "Safety"]

    assert client.get("/api/blog/posts/fire-safety-checks").status_code == 404

    published = client.patch(f"/api/blog/admin/posts/{post['id']}", json={"status": "PUBLISHED"}, headers=auth)
    assert published.get_json()["post"]["published_at"] is not None

    public = client.get("/api/blog/posts/fire-safety-checks").get_json()["post"]
    assert public["view_count"] == 1
    listing = client.get("/api/blog/posts?category=compliance").get_json()
    assert listing["total"] == 1
    assert "content" not in listing["posts"][0]


def test_duplicate_titles_get_unique_slugs(client, admin, headers):
    auth = headers(admin)
    for _ in range(2):
        client.post("/api/blog/admin/posts", json={"title": "Same", "content": "x"}, headers=auth)
    assert sorted(p.slug for p in BlogPost.query) == ["same", "same-2"]


def test_blog_admin_requires_admin(client, manager, headers):
    resp = client.post("/api/blog/admin/posts", json={"title": "x", "content": "y"}, headers=headers(manager))
    assert resp.status_code == 403


def test_generate_without_api_key(client, admin, headers):
    resp = client.post("/api/blog/admin/automation/generate", json={"topic": "HVAC"}, headers=headers(admin))
    assert resp.status_code == 503


def test_generate_stores_draft(client, app, admin, headers, monkeypatch):
    app.config["ANTHROPIC_API_KEY"] = "key"
    replies = iter([
        "## Filters\n\nChange them quarterly.",
        '{"metaTitle": "HVAC care", "metaDescription": "Keep air clean", "suggestedTags": ["HVAC"]}',
    ])
    monkeypatch.setattr(BlogAIService, "complete", lambda self, prompt, max_tokens=1024, operation="": next(replies))

    resp = client.post("/api/blog/admin/automation/generate", json={"topic": "HVAC filter care"},
                       headers=headers(admin))
    assert resp.status_code == 201
    post = resp.get_json()["post"]
    assert post["ai_generated"] is True
    assert post["status"] == "DRAFT"
    assert post["meta_description"] == "Keep air clean"
    assert [t["name"] for t in post["tags"]] == ["HVAC"]
