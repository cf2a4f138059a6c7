import logging
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_

from ..constants import BlogPostStatus
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import BlogCategory, BlogPost, BlogTag
from ..schemas import BlogPostCreate, BlogPostUpdate, GenerateRequest, NamedItem, load
from ..security.auth import admin_required, current_user
from ..services import audit, markdown
from ..services.blog_ai import AIServiceError, BlogAIService
from ..utils import slugify
from . import page_args

logger = logging.getLogger(__name__)

bp = Blueprint("blog", __name__)


def unique_slug(model, text, exclude_id=None):
    base = slugify(text) or "post"
    slug, n = base, 2
    while True:
        query = model.query.filter_by(slug=slug)
        if exclude_id is not None:
            query = query.filter(model.id != exclude_id)
        if query.first() is None:
            return slug
        slug = f"{base}-{n}"
        n += 1


def _tags_by_name(names):
    unique = {}
    for name in names:
        name = (name or "").strip()
        if name:
            unique.setdefault(name.lower(), name)

    tags = []
    for name in unique.values():
        tag = BlogTag.query.filter(db.func.lower(BlogTag.name) == name.lower()).first()
        if tag is None:
            tag = BlogTag(name=name[:100], slug=unique_slug(BlogTag, name))
            db.session.add(tag)
            db.session.flush()
        tags.append(tag)
    return tags


def _categories(ids):
    if not ids:
        return []
    found = BlogCategory.query.filter(BlogCategory.id.in_(ids)).all()
    if len(found) != len(set(ids)):
        raise ApiError(400, "Unknown category", ErrorCodes.VAL_INVALID_INPUT)
    return found


def _set_body(post, md):
    post.markdown = md
    post.content = markdown.to_html(md)
    post.reading_time = markdown.reading_time(md)
    if not post.excerpt:
        post.excerpt = markdown.excerpt(md)


def _set_status(post, status):
    post.status = status
    if status == BlogPostStatus.PUBLISHED and post.published_at is None:
        post.published_at = datetime.utcnow()


# ---------------------------------------------------------------- public
@bp.get("/blog/posts")
def public_posts():
    limit, offset = page_args(default_limit=10, max_limit=50)
    query = BlogPost.query.filter(BlogPost.status == BlogPostStatus.PUBLISHED)

    category = request.args.get("category")
    if category:
        query = query.filter(BlogPost.categories.any(BlogCategory.slug == category))
    tag = request.args.get("tag")
    if tag:
        query = query.filter(BlogPost.tags.any(BlogTag.slug == tag))
    q = (request.args.get("q") or "").strip()
    if q:
        like = f"%{q}%"
        query = query.filter(or_(BlogPost.title.ilike(like), BlogPost.excerpt.ilike(like)))

    total = query.count()
    posts = query.order_by(BlogPost.published_at.desc()).limit(limit).offset(offset).all()
    return jsonify({
        "success": True,
        "total": total,
        "posts": [p.serialize(include_content=False) for p in posts],
    }), 200


@bp.get("/blog/posts/<string:slug>")
def public_post(slug):
    post = BlogPost.query.filter_by(slug=slug, status=BlogPostStatus.PUBLISHED).first()
    if post is None:
        raise ApiError(404, "Post not found", ErrorCodes.RES_NOT_FOUND)
    BlogPost.query.filter_by(id=post.id).update({"view_count": BlogPost.view_count + 1})
    db.session.commit()
    return jsonify({"success": True, "post": post.serialize()}), 200


@bp.get("/blog/categories")
def categories():
    items = BlogCategory.query.order_by(BlogCategory.name).all()
    return jsonify({"success": True, "categories": [c.serialize() for c in items]}), 200


@bp.get("/blog/tags")
def tags():
    items = BlogTag.query.order_by(BlogTag.name).all()
    return jsonify({"success": True, "tags": [t.serialize() for t in items]}), 200


# ---------------------------------------------------------------- admin posts
def _get_post(post_id):
    post = db.session.get(BlogPost, post_id)
    if post is None:
        raise ApiError(404, "Post not found", ErrorCodes.RES_NOT_FOUND)
    return post


@bp.get("/blog/admin/posts")
@admin_required
def admin_posts():
    limit, offset = page_args()
    query = BlogPost.query
    status = request.args.get("status")
    if status:
        query = query.filter(BlogPost.status == status)
    total = query.count()
    posts = query.order_by(BlogPost.created_at.desc()).limit(limit).offset(offset).all()
    return jsonify({"success": True, "total": total, "posts": [p.serialize(include_content=False) for p in posts]}), 200


@bp.get("/blog/admin/posts/<int:post_id>")
@admin_required
def admin_post(post_id):
    return jsonify({"success": True, "post": _get_post(post_id).serialize()}), 200


@bp.post("/blog/admin/posts")
@admin_required
def create_post():
    data = load(BlogPostCreate)
    post = BlogPost(
        title=data.title,
        slug=unique_slug(BlogPost, data.title),
        excerpt=data.excerpt,
        cover_image=data.cover_image,
        meta_title=data.meta_title or data.title[:255],
        meta_description=data.meta_description,
        author_id=current_user().id,
    )
    _set_body(post, data.content)
    _set_status(post, data.status)
    post.categories = _categories(data.category_ids)
    post.tags = _tags_by_name(data.tags)
    db.session.add(post)
    db.session.flush()
    audit.record("blog.create", "blog_post", post.id, {"slug": post.slug})
    db.session.commit()
    return jsonify({"success": True, "post": post.serialize()}), 201


@bp.patch("/blog/admin/posts/<int:post_id>")
@admin_required
def update_post(post_id):
    post = _get_post(post_id)
    changes = load(BlogPostUpdate).model_dump(exclude_unset=True)

    if changes.get("title"):
        post.title = changes["title"]
        post.slug = unique_slug(BlogPost, post.title, exclude_id=post.id)
    if changes.get("content"):
        _set_body(post, changes["content"])
    for field in ("excerpt", "cover_image", "meta_title", "meta_description"):
        if field in changes:
            setattr(post, field, changes[field])
    if changes.get("status"):
        _set_status(post, changes["status"])
    if changes.get("category_ids") is not None:
        post.categories = _categories(changes["category_ids"])
    if changes.get("tags") is not None:
        post.tags = _tags_by_name(changes["tags"])

    audit.record("blog.update", "blog_post", post.id, {"fields": sorted(changes)})
    db.session.commit()
    return jsonify({"success": True, "post": post.serialize()}), 200


@bp.delete("/blog/admin/posts/<int:post_id>")
@admin_required
def delete_post(post_id):
    post = _get_post(post_id)
    audit.record("blog.delete", "blog_post", post.id, {"slug": post.slug})
    db.session.delete(post)
    db.session.commit()
    return jsonify({"success": True, "message": "Post deleted"}), 200


# ---------------------------------------------------------------- admin taxonomy
_TAXONOMY = {"categories": BlogCategory, "tags": BlogTag}


def _taxonomy_model(kind):
    model = _TAXONOMY.get(kind)
    if model is None:
        raise ApiError(404, "Not found", ErrorCodes.ERR_NOT_FOUND)
    return model


@bp.post("/blog/admin/<any(categories, tags):kind>")
@admin_required
def create_term(kind):
    model = _taxonomy_model(kind)
    data = load(NamedItem)
    if model.query.filter(db.func.lower(model.name) == data.name.lower()).first():
        raise ApiError(409, f"{data.name} already exists", ErrorCodes.RES_ALREADY_EXISTS)
    term = model(name=data.name, slug=unique_slug(model, data.name))
    if model is BlogCategory:
        term.description = data.description
    db.session.add(term)
    db.session.commit()
    return jsonify({"success": True, "item": term.serialize()}), 201


@bp.patch("/blog/admin/<any(categories, tags):kind>/<int:term_id>")
@admin_required
def update_term(kind, term_id):
    model = _taxonomy_model(kind)
    term = db.session.get(model, term_id)
    if term is None:
        raise ApiError(404, "Not found", ErrorCodes.RES_NOT_FOUND)
    data = load(NamedItem)
    term.name = data.name
    term.slug = unique_slug(model, data.name, exclude_id=term.id)
    if model is BlogCategory and data.description is not None:
        term.description = data.description
    db.session.commit()
    return jsonify({"success": True, "item": term.serialize()}), 200


@bp.delete("/blog/admin/<any(categories, tags):kind>/<int:term_id>")
@admin_required
def delete_term(kind, term_id):
    model = _taxonomy_model(kind)
    term = db.session.get(model, term_id)
    if term is None:
        raise ApiError(404, "Not found", ErrorCodes.RES_NOT_FOUND)
    db.session.delete(term)
    db.session.commit()
    return jsonify({"success": True, "message": "Deleted"}), 200


# ---------------------------------------------------------------- automation
@bp.get("/blog/admin/automation/status")
@admin_required
def automation_status():
    cfg = current_app.config
    last = (
        BlogPost.query.filter_by(ai_generated=True)
        .order_by(BlogPost.created_at.desc())
        .first()
    )
    return jsonify({
        "success": True,
        "configured": bool(cfg.get("ANTHROPIC_API_KEY")),
        "model": cfg.get("ANTHROPIC_MODEL"),
        "ai_posts": BlogPost.query.filter_by(ai_generated=True).count(),
        "last_generated": last.serialize(include_content=False) if last else None,
    }), 200


@bp.post("/blog/admin/automation/generate")
@admin_required
def generate_post():
    """Generate an article with the AI service and store it as a draft, or published when asked"""
    data = load(GenerateRequest)
    service = BlogAIService.from_app()

    category = None
    if data.category_id is not None:
        category = _categories([data.category_id])[0]
    try:
        if data.topic:
            topic = {"title": data.topic, "keywords": [], "targetAudience": "property and facilities managers"}
        else:
            recent = [p.title for p in BlogPost.query.order_by(BlogPost.created_at.desc()).limit(20)]
            names = [c.name for c in BlogCategory.query.order_by(BlogCategory.name)]
            topic = service.generate_topic(recent, names)
        article = service.generate_content(topic)
    except AIServiceError as e:
        logger.error("Blog generation failed: %s", e)
        raise ApiError(502, f"AI generation failed: {e}", ErrorCodes.EXT_SERVICE_UNAVAILABLE)

    if category is None and topic.get("category"):
        category = BlogCategory.query.filter(db.func.lower(BlogCategory.name) == topic["category"].lower()).first()

    post = BlogPost(
        title=topic["title"][:255],
        slug=unique_slug(BlogPost, topic["title"]),
        excerpt=topic.get("excerpt") or markdown.excerpt(article["markdown"]),
        markdown=article["markdown"],
        content=article["html"],
        meta_title=article["meta_title"],
        meta_description=article["meta_description"],
        reading_time=article["reading_time"],
        ai_generated=True,
        author_id=current_user().id,
    )
    _set_status(post, BlogPostStatus.PUBLISHED if data.publish else BlogPostStatus.DRAFT)
    post.categories = [category] if category else []
    post.tags = _tags_by_name(article["tags"])
    db.session.add(post)
    db.session.flush()
    audit.record("blog.generate", "blog_post", post.id, {"title": post.title, "model": service.model})
    db.session.commit()
    logger.info("Generated blog post %s (%s)", post.id, post.slug)
    return jsonify({"success": True, "post": post.serialize()}), 201
