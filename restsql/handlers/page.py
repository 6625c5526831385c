"""
### Pagination

Pagination corresponds to the `LIMIT .. OFFSET ..` part of an SQL query.

It consists of two optional parameters:

* `limit` would limit the number of items returned by the API
* `page` is the 1-based number of the page to return.
    When given alone, `limit` defaults to the configured default page size.

Example:

    GET /api/users?limit=100&page=3

will give you items 201..300.

Values: positive integers.
"""

from .base import RestQueryHandlerBase
from ..exc import InvalidQueryError


class RestPage(RestQueryHandlerBase):
    """ Pages and limits

        Handles two keys:
        * 'page': None, or int: number of the page
        * 'limit': None, or int: LIMIT for the query
    """

    query_param_name = 'page'

    def __init__(self, model, bags, default_limit=30):
        """ Init pagination

        :param model: Sqlalchemy model to work with
        :param bags: Model bags
        :param default_limit: The page size to use when `page` is given without a `limit`
        """
        super(RestPage, self).__init__(model, bags)

        # Config
        self.default_limit = default_limit
        assert self.default_limit > 0

        # On input
        self.page = None
        self.limit = None

    def input(self, page=None, limit=None):
        # Super
        super(RestPage, self).input((page, limit))

        # Validate
        for name, value in (('page', page), ('limit', limit)):
            if value is None:
                continue
            if not isinstance(value, int) or isinstance(value, bool):
                raise InvalidQueryError('{} must be either an integer, or null'.format(name))
            if value <= 0:
                raise InvalidQueryError('{} must be a positive integer'.format(name))

        # Page without a limit: use the default page size
        if page is not None and limit is None:
            limit = self.default_limit

        # Done
        self.page = page
        self.limit = limit
        return self

    def _get_supported_bags(self):
        return None  # not used by this class

    @property
    def skip(self):
        """ The number of items to skip: that's the pages before this one """
        if self.page is None:
            return None
        return self.page * self.limit - self.limit

    @property
    def has_limit(self):
        """ Check whether there's a limit on this handler """
        return self.limit is not None

    def alter_query(self, query):
        """ Apply offset() and limit() to the query """
        if self.skip:
            query = query.offset(self.skip)
        if self.limit:
            query = query.limit(self.limit)
        return query

    def get_final_input_value(self):
        return dict(page=self.page, limit=self.limit)
