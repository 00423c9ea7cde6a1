import logging
import re

from sqlalchemy import select, update
from werkzeug.security import check_password_hash, generate_password_hash

from auth import Identity
from errors import AuthenticationError, ConflictError, ValidationError
from models import ACTIVE, DISABLED, Account

logger = logging.getLogger(__name__)

MOBILE_PATTERN = re.compile(r"^\d{10}$")


class AccountManager:
    def __init__(self, datastore):
        self.datastore = datastore

    def register(self, name, email, password, mobile):
        name, email, mobile = (name or "").strip(), (email or "").strip().lower(), (mobile or "").strip()
        if not name or not email or not password or not mobile:
            raise ValidationError("all fields are required")
        if self.datastore.first(select(Account).where(Account.email == email)) is not None:
            raise ConflictError("email already exists")
        if not MOBILE_PATTERN.match(mobile):
            raise ValidationError("mobile must be exactly 10 digits", field="mobile")

        with self.datastore.transaction():
            account = self.datastore.add(Account(
                name=name,
                email=email,
                password_hash=generate_password_hash(password),
                mobile=mobile,
                status=ACTIVE,
            ))
            account_id = account.id
        logger.info("account registered: %s", account_id)
        return account_id

    def login(self, email, password):
        email = (email or "").strip().lower()
        if not email or not password:
            raise ValidationError("email and password are required")
        account = self.datastore.first(select(Account).where(Account.email == email, Account.status == ACTIVE))
        if account is None or not check_password_hash(account.password_hash, password):
            raise AuthenticationError("invalid credentials", error_code="INVALID_CREDENTIALS")
        return Identity(account.id, account.email, account.name)

    def get_active(self, account_id):
        account = self.datastore.first(select(Account).where(Account.id == account_id, Account.status == ACTIVE))
        if account is None:
            raise AuthenticationError("account disabled or missing", error_code="ACCOUNT_INACTIVE")
        return account

    def disable(self, account_id):
        with self.datastore.transaction():
            changed = self.datastore.execute(
                update(Account).where(Account.id == account_id, Account.status == ACTIVE).values(status=DISABLED)
            )
        if not changed:
            raise AuthenticationError("account disabled or missing", error_code="ACCOUNT_INACTIVE")
        logger.info("account disabled: %s", account_id)
