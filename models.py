from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import select

from utils import utcnow

db = SQLAlchemy()

ACTIVE = 1
DISABLED = 0


class Account(db.Model):
    __tablename__ = "account"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(300), nullable=False)
    mobile = db.Column(db.String(20), nullable=False)
    status = db.Column(db.Integer, nullable=False, default=ACTIVE)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "email": self.email, "mobile": self.mobile}


class RemindMe(db.Model):
    """Lookup table naming the reminder alert leads."""
    __tablename__ = "remind_me"
    id = db.Column(db.Integer, primary_key=True)
    label = db.Column(db.String(50), nullable=False)


class Header(db.Model):
    __tablename__ = "header"
    __table_args__ = (db.UniqueConstraint("account_id", "name", name="uq_header_account_name"),)
    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("account.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {"id": self.id, "name": self.name}


class Item(db.Model):
    __tablename__ = "item"
    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("account.id"), nullable=False, index=True)
    header_id = db.Column(db.Integer, db.ForeignKey("header.id"), nullable=False)
    header_name = db.Column(db.String(200), nullable=False)     # display cache of Header.name
    title = db.Column(db.String(300), nullable=False)
    short_description = db.Column(db.String(500))
    long_description = db.Column(db.Text)
    highlights = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "header_id": self.header_id,
            "header_name": self.header_name,
            "title": self.title,
            "short_description": self.short_description,
            "long_description": self.long_description,
            "highlights": self.highlights,
        }


class Reminder(db.Model):
    __tablename__ = "reminder"
    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("account.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("item.id"), nullable=False, index=True)
    name = db.Column(db.String(300), nullable=False)
    remind_date = db.Column(db.Date, nullable=False)
    before = db.Column(db.Integer, db.ForeignKey("remind_me.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "name": self.name,
            "remind_date": self.remind_date.isoformat(),
            "before": self.before,
        }


class Document(db.Model):
    __tablename__ = "document"
    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("account.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("item.id"), nullable=False, index=True)
    name = db.Column(db.String(300), nullable=False)
    renewal_required = db.Column(db.Boolean, nullable=False, default=False)
    blob_key = db.Column(db.String(100), nullable=False, unique=True)   # key in the blob store
    content_type = db.Column(db.String(100), nullable=False)
    size_bytes = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "name": self.name,
            "renewal_required": self.renewal_required,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def seed_remind_me(session):
    """Insert the alert-lead lookup rows if they are missing."""
    from alerts import AlertLead

    existing = set(session.scalars(select(RemindMe.id)).all())
    for lead in AlertLead:
        if lead.value not in existing:
            session.add(RemindMe(id=lead.value, label=lead.label))
    session.commit()
