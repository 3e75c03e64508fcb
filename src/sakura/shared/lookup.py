"""Repository lookups that report misses in the workflow's own terms."""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from sakura.shared.errors import NotFoundError


def load(aggregate_cls, identifier):
    """Fetch an aggregate by id or raise ``NotFoundError``."""
    try:
        return current_domain.repository_for(aggregate_cls).get(identifier)
    except ObjectNotFoundError as exc:
        raise NotFoundError({aggregate_cls.__name__: [f"{identifier} does not exist"]}) from exc


def find_all(aggregate_cls, **filters) -> list:
    return current_domain.repository_for(aggregate_cls)._dao.query.filter(**filters).all().items
