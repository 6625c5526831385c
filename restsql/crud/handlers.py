from concurrent.futures import Executor
from copy import deepcopy
from enum import Enum
from logging import getLogger
from typing import Mapping, Optional

from sqlalchemy.orm import Session

from restsql import exc
from restsql.deep import deep_populate
from restsql.envelope import list_envelope, document_envelope
from restsql.request import ResourceRequest
from restsql.settings import RestSqlSettings, Replace, Patch, OBJECT
from restsql.util import CountingFetch
from restsql.validation import validate_request, merge_defaults, \
    FIND_RULES, CREATE_RULES, UPDATE_RULES, REMOVE_RULES
from .crudhelper import CrudHelper

logger = getLogger(__name__)


class CRUD_METHOD(Enum):
    """ CRUD method """
    FIND = 'find'
    CREATE = 'create'
    UPDATE = 'update'
    REMOVE = 'remove'


class CrudHandlerBase:
    """ A handler for a CRUD operation on any model

        A handler is initialized once, at startup, with the settings;
        then it's called for every request: `handler(request)`.
        It returns a response envelope, or `None` for "no content".

        Attrs:
            defaults (dict): Defaults for this handler: {'validate': rules}.
                An override can patch them: see `restsql.settings.Patch`
    """

    #: The CRUD method this handler implements
    crud_method = None  # type: CRUD_METHOD

    #: Default validation rules
    default_rules = None  # type: dict

    # The class to use for CRUD helpers
    _CRUDHELPER_CLS = CrudHelper

    def __init__(self, settings: RestSqlSettings, executor: Optional[Executor] = None):
        """ Init a handler

        :param settings: Settings
        :param executor: The executor to run count queries on
        :raises ValueError: invalid override
        """
        self.settings = settings
        self.executor = executor

        # Defaults, patched
        self.defaults = {'validate': deepcopy(self.default_rules)}
        override = settings.get_override(self.crud_method.value)
        if isinstance(override, Patch):
            invalid = set(override.fields) - set(self.defaults)
            if invalid:
                raise ValueError('{}: unknown defaults: {}'.format(self.crud_method.value, ', '.join(sorted(invalid))))
            self.defaults = merge_defaults(self.defaults, override.fields)

    def __call__(self, request: ResourceRequest) -> Optional[dict]:
        """ Handle a request

        :raises exc.NotFound: the model, or the object, not found
        :raises exc.BadBindingError: the model is not usable
        :raises exc.BaseRestSqlException: invalid input
        :raises sqlalchemy.exc.SQLAlchemyError: the database has failed
        """
        if request.model is None:
            raise exc.NotFound(request.path or 'resource')

        params, query, payload = validate_request(self.defaults['validate'],
                                                  request.params, request.query, request.payload)
        helper = self._get_crudhelper(request.model)
        return self.handle(helper, request._replace(params=params, query=query, payload=payload))

    def handle(self, helper: CrudHelper, request: ResourceRequest) -> Optional[dict]:
        """ Handle a validated request """
        raise NotImplementedError()

    def _get_crudhelper(self, model) -> CrudHelper:
        return self._CRUDHELPER_CLS.for_model(model,
                                              where=self.settings.where,
                                              default_limit=self.settings.pagination.default_limit)

    def _respond_with(self, helper: CrudHelper, instance: object) -> Optional[dict]:
        """ Respond with the object, or with nothing, as the response policy says """
        if self.settings.get_response_policy(self.crud_method.value) != OBJECT:
            return None
        return document_envelope(helper.name, helper.pluck_instance(instance))

    @staticmethod
    def _commit(ssn: Session):
        """ Commit; roll back if it fails """
        try:
            ssn.commit()
        except BaseException:
            ssn.rollback()
            raise


class FindHandler(CrudHandlerBase):
    """ Find: a list of objects, or a single object by id

        GET /admins?page=2&limit=10&sort=-age
        GET /admins/1?populate=user
    """
    crud_method = CRUD_METHOD.FIND
    default_rules = FIND_RULES

    def handle(self, helper, request):
        assert self.executor is not None, 'FindHandler needs an executor to run count queries'
        rq = helper.query_model(request.query, id=request.id, conditions=request.conditions)

        # Count and fetch
        fetch = CountingFetch(rq.end_count(), rq.end(), single=rq.is_single) \
            .execute(request.session, self.executor)

        # Deep population
        result = deep_populate(helper.model, fetch.result, request.query.get('deepPopulate'))

        # Envelope
        if rq.is_single:
            return document_envelope(helper.name, rq.pluck_instance(result))
        return list_envelope(helper.name,
                             [rq.pluck_instance(instance) for instance in result],
                             fetch.count, rq.limit,
                             self.settings.pagination)


class CreateHandler(CrudHandlerBase):
    """ Create an object from the payload

        POST /users
        {"user": {"username": "kevin"}}
    """
    crud_method = CRUD_METHOD.CREATE
    default_rules = CREATE_RULES

    def handle(self, helper, request):
        ssn = request.session

        instance = helper.create_model(helper.get_payload(request.payload))
        helper.touch(instance, request.credentials)

        ssn.add(instance)
        self._commit(ssn)
        logger.debug('Created %s %r', helper.name, instance)

        if self.settings.on_create == OBJECT:
            ssn.refresh(instance)
        return self._respond_with(helper, instance)


class UpdateHandler(CrudHandlerBase):
    """ Update an object with the payload: only the fields that are given

        POST /users/1
        {"user": {"username": "kevin"}}
    """
    crud_method = CRUD_METHOD.UPDATE
    default_rules = UPDATE_RULES

    def handle(self, helper, request):
        ssn = request.session

        instance = helper.get_instance(ssn, request.id, conditions=request.conditions)
        helper.update_model(helper.get_payload(request.payload), instance)
        helper.touch(instance, request.credentials)

        self._commit(ssn)
        logger.debug('Updated %s %r', helper.name, instance)

        if self.settings.on_update == OBJECT:
            ssn.refresh(instance)
        return self._respond_with(helper, instance)


class RemoveHandler(CrudHandlerBase):
    """ Remove an object

        DELETE /users/1
    """
    crud_method = CRUD_METHOD.REMOVE
    default_rules = REMOVE_RULES

    def handle(self, helper, request):
        ssn = request.session

        instance = helper.get_instance(ssn, request.id, conditions=request.conditions)
        # Pluck it while it's still there
        response = self._respond_with(helper, instance)

        ssn.delete(instance)
        self._commit(ssn)
        logger.debug('Removed %s %r', helper.name, instance)

        return response


#: Built-in handlers
CRUD_HANDLERS = {
    CRUD_METHOD.FIND: FindHandler,
    CRUD_METHOD.CREATE: CreateHandler,
    CRUD_METHOD.UPDATE: UpdateHandler,
    CRUD_METHOD.REMOVE: RemoveHandler,
}


def build_handler_table(settings: RestSqlSettings, executor: Optional[Executor] = None) -> Mapping[CRUD_METHOD, callable]:
    """ Resolve overrides, make a handler for every CRUD method

        This is done once, at startup.

        :raises ValueError: invalid override
    """
    table = {}
    for method, handler_cls in CRUD_HANDLERS.items():
        override = settings.get_override(method.value)
        if isinstance(override, Replace):
            table[method] = override.factory(settings, executor)
        else:
            table[method] = handler_cls(settings, executor)
    return table
