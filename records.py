import logging
from datetime import date

from sqlalchemy import String, delete, func, or_, select

from alerts import AlertLead
from blobstore import discard_blob, log_orphan
from config import Config
from errors import ConflictError, ValidationError
from guard import OwnershipGuard, scoped
from models import Document, Header, Item, Reminder

logger = logging.getLogger(__name__)

ITEM_FIELDS = ("title", "short_description", "long_description", "highlights")


def _required(value, field):
    value = (value or "").strip() if isinstance(value, str) or value is None else value
    if not value:
        raise ValidationError(f"{field} required", field=field)
    return value


def _date(value, field="remind_date"):
    if value is None or value == "":
        raise ValidationError(f"{field} required", field=field)
    if not isinstance(value, date):
        raise ValidationError(f"{field} must be a date", field=field)
    return value


def _lead(before):
    try:
        return AlertLead(int(before))
    except (TypeError, ValueError):
        raise ValidationError("before must be one of 1, 2, 3, 4", field="before")


class RecordsManager:
    """Headers, items and reminders of one account at a time."""

    def __init__(self, datastore, blobs=None, purge_blobs=Config.PURGE_BLOBS_ON_ITEM_DELETE,
                 recent_limit=Config.RECENT_DOCUMENTS_LIMIT):
        self.datastore = datastore
        self.blobs = blobs
        self.guard = OwnershipGuard(datastore)
        self.purge_blobs = purge_blobs
        self.recent_limit = recent_limit

    # ==========================================================
    # 🗂 HEADERS
    # ==========================================================
    def create_header(self, account_id, name):
        name = _required(name, "name")
        existing = self.datastore.first(scoped(Header, account_id).where(Header.name == name))
        if existing is not None:
            raise ConflictError("header already exists")
        with self.datastore.transaction():
            header = self.datastore.add(Header(account_id=account_id, name=name))
            return header.id

    def list_headers(self, account_id):
        return self.datastore.query(scoped(Header, account_id).order_by(Header.id))

    def delete_header(self, account_id, header_id):
        with self.datastore.transaction():
            header = self.guard.verify(account_id, Header, header_id)
            items = self.datastore.scalar(
                select(func.count(Item.id)).where(Item.header_id == header.id, Item.account_id == account_id)
            )
            if items:
                raise ConflictError("header still has items")
            self.datastore.execute(delete(Header).where(Header.id == header.id, Header.account_id == account_id))

    # ==========================================================
    # 📦 ITEMS
    # ==========================================================
    def create_item(self, account_id, header_id, title, short_description=None,
                    long_description=None, highlights=None):
        title = _required(title, "title")
        with self.datastore.transaction():
            header = self.guard.verify(account_id, Header, header_id)
            item = self.datastore.add(Item(
                account_id=account_id,
                header_id=header.id,
                header_name=header.name,
                title=title,
                short_description=short_description,
                long_description=long_description,
                highlights=highlights,
            ))
            return item.id

    def get_item(self, account_id, item_id):
        return self.guard.verify(account_id, Item, item_id)

    def update_item(self, account_id, item_id, header_id=None, **fields):
        unknown = set(fields) - set(ITEM_FIELDS)
        if unknown:
            raise ValidationError(f"unknown field {sorted(unknown)[0]}", field=sorted(unknown)[0])
        if "title" in fields:
            fields["title"] = _required(fields["title"], "title")
        with self.datastore.transaction():
            item = self.guard.verify(account_id, Item, item_id)
            if header_id is not None and header_id != item.header_id:
                header = self.guard.verify(account_id, Header, header_id)
                item.header_id = header.id
                item.header_name = header.name
            for field, value in fields.items():
                setattr(item, field, value)
            self.datastore.flush()

    def delete_item(self, account_id, item_id):
        """
        Delete an item with its reminders and documents in one transaction.
        Blobs of the cascaded documents are purged after commit only when
        ``purge_blobs`` is set; otherwise they are logged as orphans.
        """
        with self.datastore.transaction():
            item = self.guard.verify(account_id, Item, item_id)
            blob_keys = self.datastore.query(
                select(Document.blob_key).where(Document.item_id == item.id, Document.account_id == account_id)
            )
            self.datastore.execute(
                delete(Reminder).where(Reminder.item_id == item.id, Reminder.account_id == account_id)
            )
            self.datastore.execute(
                delete(Document).where(Document.item_id == item.id, Document.account_id == account_id)
            )
            self.datastore.execute(delete(Item).where(Item.id == item.id, Item.account_id == account_id))

        for key in blob_keys:
            if self.purge_blobs and self.blobs is not None:
                discard_blob(self.blobs, key, "item-deleted", item_id=item_id)
            else:
                log_orphan(key, "item-deleted", item_id=item_id)
        logger.info("item deleted: %s account=%s documents=%d", item_id, account_id, len(blob_keys))

    def search_items(self, account_id, term):
        term = _required(term, "q")
        columns = [func.lower(getattr(Item, field), type_=String) for field in ITEM_FIELDS]
        return self.datastore.query(
            scoped(Item, account_id)
            .where(or_(*(column.contains(term.lower(), autoescape=True) for column in columns)))
            .order_by(Item.id)
        )

    # ==========================================================
    # ⏰ REMINDERS
    # ==========================================================
    def create_reminder(self, account_id, item_id, name, remind_date, before=AlertLead.ONE_DAY):
        name = _required(name, "name")
        remind_date = _date(remind_date)
        lead = _lead(before)
        with self.datastore.transaction():
            self.guard.verify(account_id, Item, item_id)
            reminder = self.datastore.add(Reminder(
                account_id=account_id, item_id=item_id, name=name, remind_date=remind_date, before=int(lead),
            ))
            return reminder.id

    def update_reminder(self, account_id, reminder_id, name, remind_date, before=None):
        name = _required(name, "name")
        remind_date = _date(remind_date)
        lead = _lead(before) if before is not None else None
        with self.datastore.transaction():
            reminder = self.guard.verify(account_id, Reminder, reminder_id)
            reminder.name = name
            reminder.remind_date = remind_date
            if lead is not None:
                reminder.before = int(lead)
            self.datastore.flush()

    def delete_reminder(self, account_id, reminder_id):
        with self.datastore.transaction():
            reminder = self.guard.verify(account_id, Reminder, reminder_id)
            self.datastore.execute(
                delete(Reminder).where(Reminder.id == reminder.id, Reminder.account_id == account_id)
            )

    def list_reminders(self, account_id, item_id):
        self.guard.verify(account_id, Item, item_id)
        return self.datastore.query(
            scoped(Reminder, account_id).where(Reminder.item_id == item_id).order_by(Reminder.id)
        )

    # ==========================================================
    # 🌳 ACCOUNT TREE
    # ==========================================================
    def list_all(self, account_id):
        """
        Header → item tree plus the most recent documents. Only
        ``recent_limit`` documents are returned; there is no paging.
        """
        headers = self.list_headers(account_id)
        items = self.datastore.query(scoped(Item, account_id).order_by(Item.id))
        by_header = {header.id: [] for header in headers}
        for item in items:
            by_header.setdefault(item.header_id, []).append(item.to_dict())
        recent = self.datastore.query(
            scoped(Document, account_id)
            .order_by(Document.created_at.desc(), Document.id.desc())
            .limit(self.recent_limit)
        )
        return {
            "headers": [{**header.to_dict(), "items": by_header[header.id]} for header in headers],
            "recent_documents": [document.to_dict() for document in recent],
        }
