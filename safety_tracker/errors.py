# safety_tracker/errors.py
class AppError(Exception):
    """Base class for errors surfaced to callers of the service layer."""


class ValidationError(AppError, ValueError):
    pass


class PreconditionError(ValidationError):
    """The request cannot be processed at all (e.g. required import mapping missing)."""


class NotFoundError(AppError, LookupError):
    def __init__(self, kind: str, ident):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} {ident} not found")


def get_or_404(db, model, ident, kind: str = None):
    obj = db.get(model, ident)
    if obj is None:
        raise NotFoundError(kind or model.__name__, ident)
    return obj
