"""
Response envelopes

Every response is a dict keyed by the model name:

    {
        "Admin": [ {...}, {...} ],
        "meta": { "totalPages": 2, "totalDocs": 20 },
    }

A single object comes without the pagination metadata:

    { "Admin": {...} }
"""

from math import ceil
from typing import Mapping, Optional


def pagination_meta(count: int, limit: Optional[int], pagination) -> Mapping[str, int]:
    """ Compute the pagination metadata

    :param count: The total number of matching objects
    :param limit: The page size, if any
    :param pagination: Key names
    :type pagination: restsql.settings.PaginationSettings
    """
    # No limit: everything fits on one page. No results: still, one page.
    total_pages = (ceil(count / limit) if limit else 1) or 1
    return {
        pagination.total_pages: total_pages,
        pagination.total_docs: count,
    }


def list_envelope(name: str, docs: list, count: int, limit: Optional[int], pagination) -> dict:
    """ Make an envelope for a list of objects, with pagination metadata """
    return {
        name: docs,
        pagination.meta: pagination_meta(count, limit, pagination),
    }


def document_envelope(name: str, doc: Optional[dict]) -> dict:
    """ Make an envelope for a single object """
    return {name: doc}
