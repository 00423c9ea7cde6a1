from sqlalchemy import select

from errors import NotFoundOrForbidden


def scoped(model, account_id):
    """Select over ``model`` already restricted to one account's rows."""
    return select(model).where(model.account_id == account_id)


class OwnershipGuard:
    """Loads account-owned rows; anything else looks like it does not exist."""

    def __init__(self, datastore):
        self.datastore = datastore

    def verify(self, account_id, model, resource_id):
        if resource_id is None or account_id is None:
            raise NotFoundOrForbidden(model.__tablename__, resource_id)
        row = self.datastore.first(scoped(model, account_id).where(model.id == resource_id))
        if row is None:
            raise NotFoundOrForbidden(model.__tablename__, resource_id)
        return row
