from copy import copy
from logging import getLogger

from sqlalchemy import inspect
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Query

from .bag import ModelPropertyBags
from . import handlers
from .exc import InvalidQueryError, BadBindingError

logger = getLogger(__name__)


class RestQuery:
    """ Compiles request parameters into SqlAlchemy queries

        Usage:

            rq = RestQuery(Admin, where=True).query(page=1, limit=10, where={'age': {'$gte': 17}})
            admins = rq.end().with_session(ssn).all()
            total = rq.end_count().with_session(ssn).count()

        Every request parameter has a handler that alters the query:
        see the `restsql.handlers` package.
    """

    # The class to use for getting structural data from a model
    _MODEL_PROPERTY_BAGS_CLS = ModelPropertyBags

    #: Range of integer ids: a signed 64-bit integer
    MIN_INT_ID = -2 ** 63
    MAX_INT_ID = 2 ** 63 - 1

    def __init__(self, model, where=False, default_limit=30):
        """ Init a query compiler

        :param model: SqlAlchemy model to make a query for.
        :type model: sqlalchemy.ext.declarative.DeclarativeMeta
        :param where: Honor the `where` request parameter?
            When `False`, the parameter is silently ignored.
        :param default_limit: Page size to use when `page` is given without `limit`
        """
        try:
            insp = inspect(model)
        except sa_exc.NoInspectionAvailable:
            raise BadBindingError('{!r} is not a mapped class'.format(model))
        if insp is None or not getattr(insp, 'is_mapper', False) or not getattr(model, '__name__', None):
            raise BadBindingError('{!r} is not a mapped class'.format(model))

        self._model = model
        self._bags = self._MODEL_PROPERTY_BAGS_CLS.for_model(model)

        # Handlers
        self.handler_where = self._QO_HANDLER_WHERE(model, self._bags, enabled=where)
        self.handler_search = self._QO_HANDLER_SEARCH(model, self._bags)
        self.handler_sort = self._QO_HANDLER_SORT(model, self._bags)
        self.handler_page = self._QO_HANDLER_PAGE(model, self._bags, default_limit=default_limit)
        self.handler_populate = self._QO_HANDLER_POPULATE(model, self._bags)
        self.handler_select = self._QO_HANDLER_SELECT(model, self._bags)

        # On input
        #: The identity of a single object to look up
        self.id = None

    def __copy__(self):
        """ RestQuery can be reused: its handlers are copied before they get any input """
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)

        # Copy handlers
        for name in self.HANDLER_ATTR_NAMES:
            setattr(result, name, copy(getattr(result, name)))

        return result

    @property
    def model(self):
        return self._model

    @property
    def bags(self):
        return self._bags

    def query(self, id=None, page=None, limit=None, sort=None, where=None, search=None,
              populate=None, select=None, conditions=None):
        """ Build a query from request parameters

        :param id: Identity of a single object to look up: the primary key value
        :param page: 1-based page number
        :param limit: Page size
        :param sort: Sorting spec
        :param where: Filter criteria. Only honored when enabled
        :param search: Search term: a regular expression
        :param populate: Relationships to load
        :param select: Columns to load
        :param conditions: Base conditions from the application; always applied
        :raises InvalidQueryError: syntax error for any of the parameters; a malformed id
        :raises InvalidColumnError: Invalid column name provided in the input
        :raises InvalidRelationError: Invalid relationship name provided in the input
        :rtype: RestQuery
        """
        # Identity
        if id is not None:
            self.id = self._coerce_id(id)

        # Bind every handler with ourselves
        for handler_name, handler in self._handlers():
            handler.with_restquery(self)

        # Input, in order: `select` wants to know what `populate` is going to load
        self.handler_where.input(where, conditions)
        self.handler_search.input(search)
        self.handler_sort.input(sort)
        self.handler_page.input(page, limit)
        self.handler_populate.input(populate)
        self.handler_select.input(select)

        return self

    def _coerce_id(self, id):
        """ Convert the id into the type of the primary key

            :raises InvalidQueryError: malformed id
        """
        try:
            pk_name, pk_column = self._bags.pk.get_single()
        except ValueError as e:
            raise BadBindingError(str(e))

        try:
            python_type = pk_column.type.python_type
        except NotImplementedError:
            return id

        if isinstance(id, python_type) and not isinstance(id, bool):
            value = id
        else:
            try:
                value = python_type(id)
            except (TypeError, ValueError, OverflowError):
                raise InvalidQueryError('Invalid {} id: {!r}'.format(self._bags.model_name, id))

        # Integers beyond what a database can store
        if python_type is int and not self.MIN_INT_ID <= value <= self.MAX_INT_ID:
            raise InvalidQueryError('Invalid {} id: {!r}: out of range'.format(self._bags.model_name, id))
        return value

    @property
    def is_single(self):
        """ Is this a lookup of a single object by id? """
        return self.id is not None

    @property
    def limit(self):
        """ The effective limit, if any """
        return self.handler_page.limit

    def _from_query(self):
        """ The initial query: the collection, or a single object by its identity """
        q = Query([self._model])
        if self.id is not None:
            pk_name, pk_column = self._bags.pk.get_single()
            q = q.filter(pk_column == self.id)
        return q

    def end(self):
        """ Get the resulting sqlalchemy Query object

        :rtype: sqlalchemy.orm.Query
        """
        q = self._from_query()

        for handler_name, handler in self._handlers():
            q = handler.alter_query(q)

        logger.debug('%s: compiled query with %r', self._bags.model_name, self.get_final_input_value())
        return q

    def end_count(self):
        """ Get the query that counts all matching objects

        Only filtering is applied: no pagination, sorting, selection, or eager loading

        :rtype: sqlalchemy.orm.Query
        """
        q = self._from_query()

        for handler_name, handler in self._handlers():
            q = handler.alter_count_query(q)

        return q

    def pluck_instance(self, instance):
        """ Pluck an sqlalchemy instance and make it into a dict

            :param instance: object
            :rtype: dict
        """
        if not isinstance(instance, self._bags.model):
            raise ValueError('This RestQuery.pluck_instance() expects {}, but {} was given'
                             .format(self._bags.model, type(instance)))
        return handlers.pluck_instance(instance)

    def get_final_input_value(self):
        """ Get the effective request parameters, as understood by the handlers """
        ret = {name: handler.get_final_input_value()
               for name, handler in self._handlers()}
        if self.id is not None:
            ret['id'] = self.id
        return ret

    def __repr__(self):
        return 'RestQuery({})'.format(str(self._model))

    # region Handlers

    _QO_HANDLER_WHERE = handlers.RestWhere
    _QO_HANDLER_SEARCH = handlers.RestSearch
    _QO_HANDLER_SORT = handlers.RestSort
    _QO_HANDLER_PAGE = handlers.RestPage
    _QO_HANDLER_POPULATE = handlers.RestPopulate
    _QO_HANDLER_SELECT = handlers.RestSelect

    HANDLER_NAMES = ('where', 'search', 'sort', 'page', 'populate', 'select')
    HANDLER_ATTR_NAMES = frozenset('handler_'+name
                                   for name in HANDLER_NAMES)

    def _handlers(self):
        """ Get the list of all (handler_name, handler)

            The order matters for alter_query():
            filters first, then 'sort' before 'page', because ORDER BY has to come before LIMIT.
        """
        return (
            ('where', self.handler_where),
            ('search', self.handler_search),
            ('sort', self.handler_sort),
            ('page', self.handler_page),
            ('populate', self.handler_populate),
            ('select', self.handler_select),
        )

    # for IDE completion
    handler_where = None  # type: handlers.RestWhere
    handler_search = None  # type: handlers.RestSearch
    handler_sort = None  # type: handlers.RestSort
    handler_page = None  # type: handlers.RestPage
    handler_populate = None  # type: handlers.RestPopulate
    handler_select = None  # type: handlers.RestSelect

    # endregion
