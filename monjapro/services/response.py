class ListResponseMixin:
    """Wraps a service's ``list`` in the envelope returned by list endpoints."""

    @classmethod
    def list_response(cls, db, *args, limit: int, offset: int, **filters) -> dict:
        items = cls.list(db, *args, limit=limit, offset=offset, **filters)
        return {"items": items, "count": len(items), "limit": limit, "offset": offset}
