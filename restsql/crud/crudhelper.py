"""
To ease the pain of implementing CRUD for all of your models,
restsql comes with a CRUD helper that exposes the query compiler to the API user,
and takes care of creating and updating instances from the submitted JSON.
"""

from copy import copy
from logging import getLogger
from typing import Union, Mapping, Iterable, Set, Any

from sqlalchemy.orm import DeclarativeMeta
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from restsql import exc
from restsql.bag import ModelPropertyBags
from restsql.query import RestQuery

logger = getLogger(__name__)


class CrudHelper:
    """ Crud helper: an object that helps implement CRUD operations for an API endpoint:

        * Create: construct SqlAlchemy instances from the submitted entity dict
        * Read: use RestQuery for querying
        * Update: update SqlAlchemy instances from the submitted entity using a dict
        * Delete: find the instance to delete

        This object is supposed to be initialized only once per model:
        use `CrudHelper.for_model()`, which keeps them cached.

        Note that during "create" and "update" operations, this class lets you write values
        to column attributes, and also to @property that are writable (have a setter).
        Relationships and read-only properties are not writable.
    """

    # The class to use for getting structural data from a model
    _MODEL_PROPERTY_BAGS_CLS = ModelPropertyBags
    # The class to use for RestQuery
    _RESTQUERY_CLS = RestQuery

    #: Request parameters that go to RestQuery
    QUERY_PARAMS = frozenset(('page', 'limit', 'sort', 'where', 'search', 'populate', 'select'))

    __crudhelpers_cache = {}

    @classmethod
    def for_model(cls, model: DeclarativeMeta, where: bool = False, default_limit: int = 30) -> 'CrudHelper':
        """ Get a CrudHelper for a model, with the given query settings. Cached. """
        key = (cls, model, where, default_limit)
        try:
            return cls.__crudhelpers_cache[key]
        except KeyError:
            cls.__crudhelpers_cache[key] = helper = cls(model, where=where, default_limit=default_limit)
            return helper

    def __init__(self, model: DeclarativeMeta, where: bool = False, default_limit: int = 30):
        """ Init CRUD helper

        :param model: The model to work with
        :param where: Honor the `where` request parameter?
        :param default_limit: The default page size
        """
        # A pristine RestQuery, copied for every request. Fails early for models that are not mapped
        self._restquery = self._RESTQUERY_CLS(model, where=where, default_limit=default_limit)  # type: RestQuery

        self.model = model
        self.bags = self._MODEL_PROPERTY_BAGS_CLS.for_model(model)

        # Settings
        self.where = where
        self.default_limit = default_limit

    @property
    def name(self) -> str:
        """ The name of the resource: the key of the response envelope """
        return self.bags.model_name

    @property
    def payload_key(self) -> str:
        """ The key that an API user may namespace the payload with """
        return self.bags.model_name.lower()

    def query_model(self, query_params: Union[Mapping, None] = None, id: Any = None, conditions=None) -> RestQuery:
        """ Make a RestQuery from request parameters

            :param query_params: The query parameters: page, limit, sort, where, search, populate, select
            :param id: Identity of a single object to look up
            :param conditions: Base conditions for the query
            :raises exc.InvalidColumnError: Invalid column name specified by the user
            :raises exc.InvalidRelationError: Invalid relationship name specified by the user
            :raises exc.InvalidQueryError: There is an error in the query parameters that the user has made
        """
        # deepPopulate and custom parameters are handled elsewhere
        query_params = {name: value
                        for name, value in (query_params or {}).items()
                        if name in self.QUERY_PARAMS}

        return copy(self._restquery).query(id=id, conditions=conditions, **query_params)

    def get_instance(self, ssn: Session, id: Any, conditions=None) -> object:
        """ Load an instance by its id

            :raises exc.NotFound: no such instance
            :raises exc.InvalidQueryError: malformed id
        """
        instance = self.query_model(id=id, conditions=conditions).end().with_session(ssn).one_or_none()
        if instance is None:
            raise exc.NotFound('{} {!r}'.format(self.name, id))
        return instance

    def get_payload(self, payload: Any) -> Any:
        """ Get the entity dict from the payload

            The payload is either the entity dict itself, or it's namespaced:
            {"user": {...}} for a `User`.
        """
        if isinstance(payload, Mapping) and self.payload_key in payload:
            return payload[self.payload_key]
        return payload

    def _validate_writable_attributes(self, attr_names: Iterable[str], where: str) -> Set[str]:
        """ Validate attribute names (columns, properties) that are writable

            This list does not include attributes like relationships and read-only properties

            :raises exc.InvalidColumnError: Column name was not writable
            :rtype: set[set]
        """
        attr_names = set(attr_names)
        unk_cols = attr_names - self.bags.writable.names
        if unk_cols:
            raise exc.InvalidColumnError(self.bags.model_name, sorted(unk_cols)[0], where)
        return attr_names

    def validate_incoming_entity_dict_fields(self, entity_dict: dict, action: str) -> dict:
        """ Validate the incoming JSON data """
        if not isinstance(entity_dict, Mapping):
            raise exc.InvalidQueryError(f'Model "{action}": the value has to be an object, '
                                        f'not {type(entity_dict).__name__}')

        self._validate_writable_attributes(entity_dict.keys(), action)
        return entity_dict

    def create_model(self, entity_dict: Mapping) -> object:
        """ Create an instance from entity dict.

            This method lets you set the value of columns and writable properties,
            but not relations.

            :param entity_dict: Entity dict
            :return: Created instance
            :raises InvalidQueryError: validation errors
            :raises InvalidColumnError: invalid column
        """
        entity_dict = self.validate_incoming_entity_dict_fields(entity_dict, 'create')
        return self._create_model(entity_dict)

    def _create_model(self, entity_dict: Mapping) -> object:
        """ Create an instance from a dict

            This method does not validate `entity_dict`
        """
        instance = self.model()
        for name, val in entity_dict.items():
            setattr(instance, name, val)
        return instance

    def update_model(self, entity_dict: Mapping, instance: object) -> object:
        """ Update an instance from an entity dict by merging the fields

            - Attributes are copied over
            - JSON dicts are shallowly merged

            This method does a *partial update*:
            only updates the fields that were provided by the client, leaving all the rest intact.

            :param entity_dict: Entity dict
            :param instance: The instance to update
            :return: The same instance, updated
            :raises InvalidQueryError: validation errors
            :raises InvalidColumnError: invalid column
        """
        entity_dict = self.validate_incoming_entity_dict_fields(entity_dict, 'update')
        return self._update_model(entity_dict, instance)

    def _update_model(self, entity_dict: Mapping, instance: object) -> object:
        """ Update an instance from an entity dict

            This method does not validate `entity_dict`
        """
        for name, val in entity_dict.items():
            if isinstance(val, Mapping) and self.bags.columns.is_column_json(name) \
                    and isinstance(getattr(instance, name), dict):
                # JSON column with a dict: do a shallow merge
                getattr(instance, name).update(val)
                # Tell SqlAlchemy that a mutable collection was updated
                flag_modified(instance, name)
            else:
                # Other columns: just assign
                setattr(instance, name, val)

        return instance

    @staticmethod
    def touch(instance: object, credentials: Any) -> bool:
        """ Call `instance.touch(credentials)`, if the model has such a method

            Models use it to keep audit fields, like "updated by whom"

            :return: whether it was called
        """
        touch = getattr(instance, 'touch', None)
        if not callable(touch):
            return False
        touch(credentials)
        return True

    def pluck_instance(self, instance: object) -> dict:
        """ Make an instance into a dict: loaded columns and relationships """
        return self._restquery.pluck_instance(instance)
