"""
### Search Operation

A naive text search: the `search` term is a case-insensitive regular expression
matched against every textual column of the model; a row matches when any of them does.

    GET /api/admins?search=10

This is a pattern scan, not a full-text index: its cost grows with the number of textual columns.
"""

from sqlalchemy import or_, false, cast, String, Enum

from .base import RestQueryHandlerBase
from .where import validate_regex, _regex_match
from ..bag import CombinedBag


class RestSearch(RestQueryHandlerBase):
    """ Search across textual columns

        Supports: Columns of textual types: String, Text, Unicode, Enum
    """

    query_param_name = 'search'

    def __init__(self, model, bags):
        super(RestSearch, self).__init__(model, bags)

        # On input
        #: The regular expression to use
        self.pattern = None

    def _get_supported_bags(self):
        return CombinedBag(
            str=self.bags.strings,
        )

    def input(self, term):
        super(RestSearch, self).input(term)

        if term is None or term == '':
            self.pattern = None
        else:
            validate_regex(term, self.query_param_name)
            self.pattern = '(?i)' + term

        return self

    def compile_statement(self):
        """ OR the regex across all textual columns """
        columns = [
            cast(column, String) if isinstance(column.type, Enum) else column
            for bag_name, bag, name, column in self.supported_bags
        ]

        # No textual columns: nothing can match
        if not columns:
            return false()

        return or_(*[_regex_match(c, self.pattern) for c in columns]).self_group()

    def alter_query(self, query):
        if self.pattern is None:
            return query
        return query.filter(self.compile_statement())

    alter_count_query = alter_query
