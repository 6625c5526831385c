import re

from sqlalchemy import event
from sqlalchemy.orm import Query
from sqlalchemy.dialects import postgresql as pg


def stmt2sql(stmt, *, literal: bool = True):
    """ Convert an SqlAlchemy statement into a string """
    query = stmt.compile(
        dialect=pg.dialect(),
        compile_kwargs={
            'literal_binds': literal,
        }
    )
    return query.string % query.params


def q2sql(q, *, literal: bool = True):
    """ Convert an SqlAlchemy query to string """
    return stmt2sql(q.statement, literal=literal)


class TestQueryStringsMixin:
    """ unittest mixin that will help testing query strings """

    def assertQuery(self, qs, *expected_lines):
        """ Compare a query piece by piece

            Columns and expressions may come in any order, so the query is not compared as a whole:
            every expected line has to be found in the query string.
            Trailing commas are removed.

            :param expected_lines: the query, separated into pieces
        """
        if isinstance(qs, Query):
            qs = q2sql(qs)

        try:
            for line in '\n'.join(expected_lines).splitlines():
                self.assertIn(line.strip().rstrip(','), qs)
            return qs
        except AssertionError:
            print(qs)
            raise

    def assertNotInQuery(self, qs, *unexpected):
        """ Make sure that some pieces are not in the query """
        if isinstance(qs, Query):
            qs = q2sql(qs)
        for piece in unexpected:
            self.assertNotIn(piece, qs)
        return qs

    @staticmethod
    def _qs_selected_columns(qs):
        """ Get the set of column names from the SELECT clause

            Example:
            SELECT a, u.b, c AS c_1, u.d AS u_d
            -> {'a', 'u.b', 'c', 'u.d'}
        """
        m = re.match(r'^SELECT (.*?)\s+FROM', qs)
        if not m:
            return set()
        return set(re.findall(r'(\S+?)(?: AS \w+)?(?:,|$)', m.group(1)))

    def assertSelectedColumns(self, qs, *expected):
        """ Test that the query has certain columns in the SELECT clause

        :param qs: Query | query string
        :param expected: list of expected column names
        :returns: query string
        """
        if isinstance(qs, Query):
            qs = q2sql(qs)

        try:
            self.assertEqual(self._qs_selected_columns(qs), set(expected))
            return qs
        except AssertionError:
            print(qs)
            raise


class QueryCounter:
    """ Counts the number of queries """

    def __init__(self, engine):
        super(QueryCounter, self).__init__()
        self.engine = engine
        self.n = 0

    def start_logging(self):
        event.listen(self.engine, "after_cursor_execute", self._after_cursor_execute_event_handler, named=True)

    def stop_logging(self):
        event.remove(self.engine, "after_cursor_execute", self._after_cursor_execute_event_handler)

    def _after_cursor_execute_event_handler(self, **kw):
        self.n += 1

    # Context manager

    def __enter__(self):
        self.start_logging()
        return self

    def __exit__(self, *exc):
        self.stop_logging()
        return False


class QueryLogger(QueryCounter, list):
    """ Log raw SQL queries on the given engine """

    def _after_cursor_execute_event_handler(self, **kw):
        super(QueryLogger, self)._after_cursor_execute_event_handler()
        self.append(kw['statement'])
