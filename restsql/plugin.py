"""
Flask integration

Exposes every model of a declarative base as a REST resource:

    app = Flask(__name__)
    rest = RestHandlers(app, session_factory=Session, base=Base, options=dict(
        on_create='object',
        where=True,
    ))
    rest.route(app, '/v1')

This gives you:

* `GET /v1/admins`: find a list; query parameters: page, limit, sort, where, search, populate, deepPopulate, select
* `GET /v1/admins/<id>`: find one
* `POST /v1/admins`: create
* `POST|PUT|PATCH /v1/admins/<id>`: update
* `DELETE /v1/admins/<id>`: remove
"""

import atexit
import json
import re
from concurrent.futures import ThreadPoolExecutor
from logging import getLogger
from typing import Callable, Mapping, Optional

from flask import Flask, g, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from . import exc
from .binder import ModelBinder
from .crud.handlers import CRUD_METHOD, build_handler_table
from .request import ResourceRequest
from .settings import RestSqlSettings

logger = getLogger(__name__)


#: Query parameters that may contain JSON
JSON_QUERY_PARAMS = frozenset(('where', 'sort', 'populate', 'deepPopulate', 'select'))

#: HTTP methods for every CRUD method, and whether it works with a single object
ROUTES = (
    (CRUD_METHOD.FIND, False, ('GET',)),
    (CRUD_METHOD.FIND, True, ('GET',)),
    (CRUD_METHOD.CREATE, False, ('POST',)),
    (CRUD_METHOD.UPDATE, True, ('POST', 'PUT', 'PATCH')),
    (CRUD_METHOD.REMOVE, True, ('DELETE',)),
)


class RestHandlers:
    """ Flask extension: REST handlers for SqlAlchemy models

        Settings are taken from the `options` argument, and from the `RESTSQL` key of the app config.
        See `RestSqlSettings` for the list.
    """

    def __init__(self, app: Flask = None,
                 session_factory: Callable = None,
                 base=None,
                 binder: Callable[[str], Optional[type]] = None,
                 credentials: Callable[[], object] = None,
                 options: Mapping = None,
                 max_workers: int = None):
        """ Init the extension

        :param app: Flask app
        :param session_factory: A callable that makes a new Session: a `sessionmaker`
        :param base: The declarative base with the models. Not needed if a `binder` is given
        :param binder: A callable that finds a model by its name in the path. Default: ModelBinder(base)
        :param credentials: A callable that gives the credentials of the current user. Passed to `touch()`
        :param options: Settings. See RestSqlSettings.from_options()
        :param max_workers: Threads to run count queries on
        """
        self.session_factory = session_factory
        self.binder = binder or (ModelBinder(base) if base is not None else None)
        self.credentials = credentials or (lambda: None)
        self.options = dict(options or {})
        self.max_workers = max_workers

        # Initialized by init_app()
        self.settings = None  # type: RestSqlSettings
        self.executor = None  # type: ThreadPoolExecutor
        self.handlers = None  # type: Mapping[CRUD_METHOD, Callable]

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        """ Init the extension with a Flask app

        :raises ValueError: invalid settings
        """
        assert self.session_factory is not None, 'RestHandlers needs a `session_factory`'
        assert self.binder is not None, 'RestHandlers needs either a `base`, or a `binder`'

        # Settings: validated once, never changed
        self.settings = RestSqlSettings.from_options(app.config.get('RESTSQL', {}), **self.options)
        self.executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='restsql-count')
        # The count threads are stopped at exit, unless shutdown() is called earlier
        atexit.register(self.shutdown)
        self.handlers = build_handler_table(self.settings, self.executor)

        app.extensions['restsql'] = self
        app.teardown_appcontext(self._close_session)

        # Errors
        app.register_error_handler(exc.NotFound, self._handle_not_found)
        app.register_error_handler(exc.BaseRestSqlException, self._handle_invalid_input)
        app.register_error_handler(SQLAlchemyError, self._handle_store_failure)

        logger.debug('restsql: initialized with %r', self.settings)

    def shutdown(self):
        """ Stop the count threads

            Called at interpreter exit. Call it yourself when the app is torn down earlier.
        """
        atexit.unregister(self.shutdown)
        if self.executor is not None:
            self.executor.shutdown(wait=True)

    def route(self, app, prefix: str = '', conditions=None, name: str = 'restsql'):
        """ Add URL rules for all CRUD methods

        :param app: Flask app, or a Blueprint
        :param prefix: URL prefix
        :param conditions: Base conditions for every query. See `RestWhere.input()`
        :param name: Endpoint name prefix. Has to be unique when routing the same app more than once
        """
        for method, single, http_methods in ROUTES:
            rule = '{}/<model>/<id>'.format(prefix) if single else '{}/<model>'.format(prefix)
            endpoint = '{}_{}{}'.format(name, method.value, '_one' if single else '')
            app.add_url_rule(rule, endpoint,
                             self.handler(method, conditions=conditions),
                             methods=list(http_methods))

    def handler(self, method: CRUD_METHOD, conditions=None) -> Callable:
        """ Make a Flask view function for a CRUD method

        :param method: The CRUD method
        :param conditions: Base conditions for every query
        """
        handler = self.handlers[method]

        def view(model: str, id: str = None):
            resource_request = ResourceRequest(
                model=self.binder(model),
                session=self._get_session(),
                params={} if id is None else {'id': id},
                query=parse_query_args(request.args),
                payload=request.get_json(silent=True) if request.method in ('POST', 'PUT', 'PATCH') else None,
                credentials=self.credentials(),
                conditions=conditions,
                path=request.path,
            )
            result = handler(resource_request)

            if result is None:
                return '', 200
            return jsonify(result)
        view.__name__ = 'restsql_{}'.format(method.value)
        return view

    # region Session

    def _get_session(self):
        """ A Session for the current request """
        if 'restsql_session' not in g:
            g.restsql_session = self.session_factory()
        return g.restsql_session

    def _close_session(self, e=None):
        ssn = g.pop('restsql_session', None)
        if ssn is not None:
            ssn.close()

    # endregion

    # region Errors

    def _handle_not_found(self, e):
        return jsonify(error='NotFound', message=str(e)), 404

    def _handle_invalid_input(self, e):
        return jsonify(error=e.__class__.__name__, message=str(e)), 400

    def _handle_store_failure(self, e):
        logger.exception('restsql: database failure at %s', request.path)
        return jsonify(error='DatabaseError', message='Internal Server Error'), 500

    # endregion


_BRACKETS = re.compile(r'\[([^\]]*)\]')


def parse_query_args(args) -> dict:
    """ Parse query arguments into a dict

        * `a=1` gives `{'a': '1'}`; repeated keys: the last one is used
        * `a[]=1&a[]=2` gives `{'a': ['1', '2']}`; nested, too: `a[b][]=1` gives `{'a': {'b': ['1']}}`
        * `a[0][b]=1` gives `{'a': [{'b': '1'}]}`; `a[b]=1` gives `{'a': {'b': '1'}}`
        * JSON values of `where`, `sort`, `populate`, `deepPopulate`, `select` are decoded

        :param args: werkzeug MultiDict
        :raises exc.InvalidQueryError: invalid JSON
    """
    ret = {}
    for key, values in args.lists():
        name, bracket, rest = key.partition('[')
        path = _BRACKETS.findall(bracket + rest)

        if not path:
            ret[name] = values[-1]
            continue

        # Walk down to the container; `[]` can only come last
        container, step = ret, name
        for next_step in path:
            if next_step == '':
                break
            container = container.setdefault(step, {})
            if not isinstance(container, dict):
                raise exc.InvalidQueryError('`{}`: conflicting values'.format(name))
            step = next_step

        if path[-1] == '':
            # `a[b][]=1&a[b][]=2`: all values, as a list
            existing = container.setdefault(step, [])
            if not isinstance(existing, list):
                container[step] = existing = [existing]
            existing.extend(values)
        else:
            container[step] = values[-1]

    ret = {name: _listify(value) for name, value in ret.items()}

    # JSON
    for name in JSON_QUERY_PARAMS & set(ret):
        ret[name] = _decode_json(name, ret[name])

    return ret


def _listify(value):
    """ Dicts with numeric keys become lists, recursively """
    if isinstance(value, dict):
        value = {k: _listify(v) for k, v in value.items()}
        if value and all(k.isdigit() for k in value):
            return [value[k] for k in sorted(value, key=int)]
    return value


def _decode_json(name, value):
    """ Decode the value if it looks like JSON """
    if isinstance(value, list):
        return [_decode_json(name, v) for v in value]
    if isinstance(value, str) and value.strip()[:1] in ('{', '['):
        try:
            return json.loads(value)
        except ValueError as e:
            raise exc.InvalidQueryError('`{}`: invalid JSON: {}'.format(name, e))
    return value
