"""
Reminder alert evaluation.

A reminder is due once "now" has reached its target date minus its alert
lead. Month leads use calendar arithmetic (2025-03-31 minus one month is
2025-02-28), not a fixed 30 days. Evaluation keeps no state: nothing is
marked as sent, so asking twice gives the same answer.
"""

import enum
from datetime import date, datetime

from dateutil.relativedelta import relativedelta

from guard import scoped
from models import Reminder


class AlertLead(enum.IntEnum):
    ONE_DAY = 1
    ONE_WEEK = 2
    FIFTEEN_DAYS = 3
    ONE_MONTH = 4

    @property
    def label(self):
        return _LABELS[self]

    @property
    def window(self):
        return _WINDOWS[self]


_LABELS = {
    AlertLead.ONE_DAY: "1 day",
    AlertLead.ONE_WEEK: "1 week",
    AlertLead.FIFTEEN_DAYS: "15 days",
    AlertLead.ONE_MONTH: "1 month",
}

_WINDOWS = {
    AlertLead.ONE_DAY: relativedelta(days=1),
    AlertLead.ONE_WEEK: relativedelta(weeks=1),
    AlertLead.FIFTEEN_DAYS: relativedelta(days=15),
    AlertLead.ONE_MONTH: relativedelta(months=1),
}


def alert_starts(remind_date: date, before) -> date:
    """First day on which a reminder for ``remind_date`` is due."""
    return remind_date - AlertLead(before).window


def is_due(reminder, now) -> bool:
    if isinstance(now, datetime):
        now = now.date()
    return now >= alert_starts(reminder.remind_date, reminder.before)


class AlertEvaluator:
    def __init__(self, datastore):
        self.datastore = datastore

    def evaluate_due(self, account_id, now):
        """Reminders of ``account_id`` inside their alert window at ``now``, ordered by id."""
        reminders = self.datastore.query(scoped(Reminder, account_id).order_by(Reminder.id))
        return [r for r in reminders if is_due(r, now)]
