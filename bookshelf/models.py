from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.sql import func

db = SQLAlchemy()


class Author(db.Model):  # type: ignore
    id = db.Column(db.Integer, primary_key=True)
    # Not unique: authors are deduplicated by exact name lookup before insert.
    name = db.Column(db.String(200), nullable=False, index=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Publisher(db.Model):  # type: ignore
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Book(db.Model):  # type: ignore
    id = db.Column(db.Integer, primary_key=True)
    isbn = db.Column(db.String(20), nullable=True, index=True)
    isbn13 = db.Column(db.String(13), nullable=True, index=True)
    title = db.Column(db.String(300), nullable=False)
    overview = db.Column(db.Text, nullable=True)
    published_year = db.Column(db.Integer, nullable=True)
    pages = db.Column(db.Integer, nullable=True)
    image = db.Column(db.String(500), nullable=True)
    author_id = db.Column(db.Integer, db.ForeignKey("author.id"), nullable=False)
    publisher_id = db.Column(db.Integer, db.ForeignKey("publisher.id"), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    author = db.relationship("Author", lazy="joined")
    publisher = db.relationship("Publisher", lazy="joined")
