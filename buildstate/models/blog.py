from datetime import datetime

from ..constants import BlogPostStatus
from ..extensions import db
from ..utils import isoformat

blog_post_tags = db.Table(
    'blog_post_tags',
    db.Column('post_id', db.Integer, db.ForeignKey('blog_posts.id', ondelete='CASCADE'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('blog_tags.id', ondelete='CASCADE'), primary_key=True),
)

blog_post_categories = db.Table(
    'blog_post_categories',
    db.Column('post_id', db.Integer, db.ForeignKey('blog_posts.id', ondelete='CASCADE'), primary_key=True),
    db.Column('category_id', db.Integer, db.ForeignKey('blog_categories.id', ondelete='CASCADE'), primary_key=True),
)


class BlogCategory(db.Model):
    __tablename__ = 'blog_categories'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    slug = db.Column(db.String(120), unique=True, nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def serialize(self):
        return {'id': self.id, 'name': self.name, 'slug': self.slug, 'description': self.description}


class BlogTag(db.Model):
    __tablename__ = 'blog_tags'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    slug = db.Column(db.String(120), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def serialize(self):
        return {'id': self.id, 'name': self.name, 'slug': self.slug}


class BlogPost(db.Model):
    __tablename__ = 'blog_posts'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=False, index=True)
    excerpt = db.Column(db.Text, nullable=True)
    content = db.Column(db.Text, nullable=False)  # rendered HTML
    markdown = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=BlogPostStatus.DRAFT, index=True)
    cover_image = db.Column(db.String(1024), nullable=True)
    meta_title = db.Column(db.String(255), nullable=True)
    meta_description = db.Column(db.String(500), nullable=True)
    reading_time = db.Column(db.Integer, nullable=True)
    view_count = db.Column(db.Integer, nullable=False, default=0)
    ai_generated = db.Column(db.Boolean, nullable=False, default=False)
    author_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    published_at = db.Column(db.DateTime, nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    author = db.relationship('User')
    categories = db.relationship('BlogCategory', secondary=blog_post_categories, lazy='subquery',
                                 backref=db.backref('posts', lazy=True))
    tags = db.relationship('BlogTag', secondary=blog_post_tags, lazy='subquery',
                           backref=db.backref('posts', lazy=True))

    def __repr__(self):
        return f'<BlogPost {self.id}: {self.slug}>'

    def serialize(self, include_content=True):
        data = {
            'id': self.id,
            'title': self.title,
            'slug': self.slug,
            'excerpt': self.excerpt,
            'status': self.status,
            'cover_image': self.cover_image,
            'meta_title': self.meta_title,
            'meta_description': self.meta_description,
            'reading_time': self.reading_time,
            'view_count': self.view_count,
            'ai_generated': self.ai_generated,
            'author_name': self.author.full_name if self.author else None,
            'categories': [c.serialize() for c in self.categories],
            'tags': [t.serialize() for t in self.tags],
            'published_at': isoformat(self.published_at),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if include_content:
            data['content'] = self.content
            data['markdown'] = self.markdown
        return data
