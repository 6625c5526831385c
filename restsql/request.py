from typing import *

from sqlalchemy.orm import Session


class ResourceRequest(NamedTuple):
    """ A request to a resource, independent of the web framework

    Args:
        model: The model the request is addressed to; `None` when the binder could not find one
        session: The Session to work with
        params (dict): Path parameters: `id`, for instance
        query (dict): Query parameters: `page`, `limit`, `where`, etc
        payload: The body
        credentials: Whatever the authentication layer has given us; passed to `touch()`
        conditions: Base conditions for the query; see `RestWhere.input()`
        path (str): The path of the request, for logging
    """
    model: Optional[type]
    session: Session
    params: Optional[Mapping[str, Any]] = None
    query: Optional[Mapping[str, Any]] = None
    payload: Any = None
    credentials: Any = None
    conditions: Any = None
    path: str = ''

    @property
    def id(self):
        """ The `id` path parameter """
        return (self.params or {}).get('id')
