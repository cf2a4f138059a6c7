"""
AI-assisted blog content.

Talks to the Anthropic Messages API over HTTPS. The configured model is tried
first; a 404 (retired or unknown model) moves on to the next model in the
fallback list and the first one that answers becomes the new default.
"""
import json
import logging
import re

import requests
from flask import current_app

from ..errors import ApiError, ErrorCodes
from . import markdown

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"

FALLBACK_MODELS = [
    "claude-sonnet-4-5-20250929",
    "claude-haiku-4-5-20251001",
    "claude-sonnet-4-20250514",
]

INDUSTRY = "facilities and property management"

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_QUOTED = re.compile(r'"(?:[^"\\]|\\.)*"')
_CONTROL = re.compile(r"[\x00-\x1f]")
_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def _escape_control(match):
    ch = match.group(0)
    return _CONTROL_ESCAPES.get(ch, "\\u%04x" % ord(ch))


class AIServiceError(Exception):
    pass


def parse_json_response(text, operation="parse"):
    """Extract and parse the first {...} object in a model response.

    Models often wrap JSON in prose or code fences and sometimes put raw
    newlines or tabs inside string values; those are re-escaped before a
    second parse attempt.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        logger.error("%s: no JSON object found in response", operation)
        raise AIServiceError("Failed to find JSON object in AI response")
    candidate = match.group(0)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    cleaned = _QUOTED.sub(lambda m: _CONTROL.sub(_escape_control, m.group(0)), candidate)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error("%s: JSON parsing failed: %s | preview=%r", operation, e, (text or "")[:500])
        raise AIServiceError(f"Could not parse AI response: {e}")


class BlogAIService:
    def __init__(self, api_key, model=None, session=None, timeout=120):
        if not api_key:
            raise ApiError(503, "AI content generation is not configured", ErrorCodes.EXT_SERVICE_UNAVAILABLE)
        self.api_key = api_key
        self.model = model or FALLBACK_MODELS[0]
        self.fallback_models = [m for m in FALLBACK_MODELS if m != self.model]
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_app(cls):
        cfg = current_app.config
        return cls(cfg.get("ANTHROPIC_API_KEY"), cfg.get("ANTHROPIC_MODEL"))

    def _post(self, model, prompt, max_tokens):
        return self.session.post(
            API_URL,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": API_VERSION,
                "content-type": "application/json",
            },
            json={"model": model, "max_tokens": max_tokens, "messages": [{"role": "user", "content": prompt}]},
            timeout=self.timeout,
        )

    def complete(self, prompt, max_tokens=1024, operation="complete"):
        models = [self.model, *self.fallback_models]
        for i, model in enumerate(models):
            try:
                resp = self._post(model, prompt, max_tokens)
            except requests.RequestException as e:
                logger.error("%s: request to Anthropic failed: %s", operation, e)
                raise ApiError(502, "AI service request failed", ErrorCodes.EXT_SERVICE_UNAVAILABLE)

            if resp.status_code == 404 and i < len(models) - 1:
                logger.warning("%s: model %s returned 404, trying next fallback model", operation, model)
                continue
            if resp.status_code >= 400:
                logger.error("%s: Anthropic returned %s: %s", operation, resp.status_code, resp.text[:300])
                raise ApiError(502, f"AI service error ({resp.status_code})", ErrorCodes.EXT_SERVICE_UNAVAILABLE)

            if model != self.model:
                logger.info("%s: fallback model %s succeeded, using it as default", operation, model)
                self.model = model
                self.fallback_models = [m for m in models if m != model]
            body = resp.json()
            return "".join(part.get("text", "") for part in body.get("content", []) if part.get("type") == "text")
        raise ApiError(502, "No available AI model", ErrorCodes.EXT_SERVICE_UNAVAILABLE)

    def generate_topic(self, recent_topics=(), categories=()):
        prompt = (
            f"You are an expert content strategist specializing in {INDUSTRY}. "
            "Generate a compelling blog post topic that is relevant to practitioners, has strong SEO potential, "
            "provides practical value and has not been covered recently "
            f"(avoid these topics: {', '.join(recent_topics) or 'none yet'}).\n"
            + (f"Available categories: {', '.join(categories)}\n" if categories else "")
            + "Respond in JSON format:\n"
            '{"title": "SEO title (60-70 characters)", "category": "category from the list", '
            '"keywords": ["k1", "k2", "k3"], "excerpt": "1-2 sentence description", '
            '"targetAudience": "who benefits"}'
        )
        topic = parse_json_response(self.complete(prompt, 1024, "generate_topic"), "generate_topic")
        if not topic.get("title"):
            raise AIServiceError("AI topic response has no title")
        topic.setdefault("keywords", [])
        topic.setdefault("targetAudience", f"{INDUSTRY} professionals")
        return topic

    def generate_content(self, topic, target_word_count=1500):
        content_prompt = (
            f'Write a comprehensive, high-quality blog post about "{topic["title"]}".\n\n'
            f"Target audience: {topic.get('targetAudience')}\n"
            f"Keywords to naturally include: {', '.join(topic.get('keywords', []))}\n"
            f"Target word count: {target_word_count} words\n\n"
            "Write the entire article in clean Markdown. Do not wrap it in JSON or code blocks. "
            "Use an engaging introduction, 5-7 sections with ## headers, lists where useful, "
            "and a conclusion with clear next steps."
        )
        body = markdown.strip_code_fence(self.complete(content_prompt, 4096, "generate_content"))

        metadata_prompt = (
            f'For this blog post titled "{topic["title"]}", generate SEO metadata. '
            "Respond ONLY with a valid JSON object:\n"
            '{"metaTitle": "60 chars max", "metaDescription": "155 chars max", '
            '"suggestedTags": ["tag1", "tag2"], "readingTime": "5", "keyTakeaways": ["t1", "t2"]}'
        )
        metadata = parse_json_response(self.complete(metadata_prompt, 512, "generate_metadata"), "generate_metadata")

        try:
            minutes = int(str(metadata.get("readingTime") or "").strip() or markdown.reading_time(body))
        except ValueError:
            minutes = markdown.reading_time(body)
        return {
            "markdown": body,
            "html": markdown.to_html(body),
            "meta_title": (metadata.get("metaTitle") or topic["title"])[:255],
            "meta_description": (metadata.get("metaDescription") or topic.get("excerpt") or "")[:500],
            "tags": [t for t in metadata.get("suggestedTags") or [] if isinstance(t, str)],
            "reading_time": minutes,
            "key_takeaways": metadata.get("keyTakeaways") or [],
        }
