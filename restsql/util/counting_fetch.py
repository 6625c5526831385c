from concurrent.futures import Executor, wait
from logging import getLogger

from sqlalchemy.orm import Query, Session

from ..exc import NotFound

logger = getLogger(__name__)


class CountingFetch:
    """ Fetch the results of a `Query` and count the total number of matching rows, concurrently

        Two queries are made:

        1. The data query, with pagination, sorting, selection, and eager loading.
           It runs in the current thread, with the request's `Session`
        2. The count query: filtering only.
           It runs in a worker thread, with its own `Session` bound to the same engine,
           because a `Session` is not to be shared between threads.

        Both have to complete: if either fails, the whole thing fails.

        Example:

            ```python
            cf = CountingFetch(rq.end_count(), rq.end())
            cf.execute(ssn, executor)

            cf.count  # -> 127
            cf.result  # -> [Admin, ...]
            ```
    """
    __slots__ = ('_count_query', '_data_query', '_single',
                 'count', 'result')

    def __init__(self, count_query: Query, data_query: Query, single: bool = False):
        """ Init the fetcher

        :param count_query: The query to count the rows with. Filters only.
        :param data_query: The query to load the results with
        :param single: Is it a lookup of a single object?
            If so, a missing result raises NotFound
        """
        self._count_query = count_query
        self._data_query = data_query
        self._single = single

        #: The total number of matching rows ; `None` if not executed yet
        self.count = None
        #: The loaded object, or the list of objects ; `None` if not executed yet
        self.result = None

    def execute(self, ssn: Session, executor: Executor):
        """ Run both queries and wait for them to complete

        :param ssn: The Session to load the objects with
        :param executor: The executor to run the count query on
        :raises NotFound: single object not found
        :raises sqlalchemy.exc.SQLAlchemyError: either query has failed
        """
        count_future = executor.submit(self._count, ssn.get_bind())

        try:
            result = self._fetch(ssn)
        except BaseException:
            # No matter what, the count has to finish before the error goes up
            wait([count_future])
            raise

        # Count errors surface here
        self.count = count_future.result()

        if result is None:
            raise NotFound(self._data_query.column_descriptions[0]['name'])

        self.result = result
        logger.debug('Fetched %s, total count: %d',
                      'one object' if self._single else '{} objects'.format(len(result)),
                      self.count)
        return self

    def _fetch(self, ssn: Session):
        """ Load the results """
        q = self._data_query.with_session(ssn)
        if self._single:
            return q.one_or_none()
        return q.all()

    def _count(self, bind) -> int:
        """ Count the rows, with a Session of our own """
        with Session(bind=bind) as ssn:
            # Remove eager loads, ordering, LIMIT and OFFSET
            q = self._count_query.with_session(ssn) \
                .enable_eagerloads(False) \
                .order_by(None) \
                .limit(None).offset(None)
            return q.count()
