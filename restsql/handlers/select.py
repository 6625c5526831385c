"""
### Select Operation

Selection corresponds to the `SELECT` part of an SQL query: it lets the API user pick the columns to load.

    GET /api/admins?select=name age

#### Syntax

* String syntax: whitespace-separated column names.

    * `name age`: inclusion mode: only load these columns
    * `-age`: exclusion mode: load every column but these

* Array syntax: the same, as a list: `['name', 'age']`, `['-age']`

* Object syntax: `{ name: 1, age: 1 }` is inclusion, `{ age: 0 }` is exclusion.

Inclusion and exclusion cannot be mixed.

The primary key is always loaded, and so are the foreign keys that populated relationships need.
"""

from sqlalchemy import inspect
from sqlalchemy.orm import load_only, defer

from .base import RestQueryHandlerBase
from ..bag import CombinedBag
from ..exc import InvalidQueryError, InvalidColumnError


def parse_select(value, where='select'):
    """ Parse a select expression into (include: bool, names: tuple)

        :param value: string, list, or object
        :param where: The name of the parameter, for error messages
        :return: `(True, names)` for the inclusion mode, `(False, names)` for the exclusion mode.
            `None` for an empty selection.
        :raises InvalidQueryError
    """
    if not value:
        return None

    # String syntax
    if isinstance(value, str):
        value = value.replace(',', ' ').split()

    # List syntax: convert to a dict
    if isinstance(value, (list, tuple)):
        if not all(isinstance(v, str) and v.lstrip('-+') for v in value):
            raise InvalidQueryError('{} list must only contain column names'.format(where))
        value = {v.lstrip('-+'): 0 if v.startswith('-') else 1
                 for v in value}

    if not isinstance(value, dict):
        raise InvalidQueryError('{name} must be either a list, a string, or an object; {type} provided.'
                                .format(name=where, type=type(value).__name__))

    # Validate the mode
    modes = set(value.values())
    if not modes <= {0, 1}:
        raise InvalidQueryError('{} values can be either 0 or 1'.format(where))
    if len(modes) > 1:
        raise InvalidQueryError('{} cannot mix inclusion and exclusion'.format(where))

    return (modes == {1}, tuple(value.keys()))


def select_options(bags, select, required_columns=(), as_relation=None, where='select'):
    """ Make Query options for a select expression

        :param bags: Model bags
        :param select: parsed select: (include, names), see parse_select()
        :param required_columns: Column names that have to stay loaded anyway
        :param as_relation: A loader option to chain from; e.g. selectinload(Admin.user)
        :param where: The name of the parameter, for error messages
        :rtype: list
    """
    include, names = select

    # Validate
    invalid = bags.columns.get_invalid_names(names)
    if invalid:
        raise InvalidColumnError(bags.model_name, sorted(invalid)[0], where)

    # Columns that can never be excluded
    required = set(bags.pk.names) | set(required_columns)

    if include:
        columns = [bags.columns[name] for name in bags.columns.names
                   if name in names or name in required]
        if as_relation is not None:
            return [as_relation.load_only(*columns)]
        return [load_only(*columns)]
    else:
        columns = [bags.columns[name] for name in names
                   if name not in required]
        if as_relation is not None:
            # The relationship is loaded even when nothing is left to defer
            return [as_relation.options(*[defer(c) for c in columns])] if columns else [as_relation]
        return [defer(c) for c in columns]


class RestSelect(RestQueryHandlerBase):
    """ Column selection

        Supports: Columns
    """

    query_param_name = 'select'

    def __init__(self, model, bags):
        super(RestSelect, self).__init__(model, bags)

        # On input
        #: Parsed selection: (include, names), or None
        self.select = None

    def _get_supported_bags(self):
        return CombinedBag(
            col=self.bags.columns,
        )

    def input(self, select):
        super(RestSelect, self).input(select)
        self.select = parse_select(select, self.query_param_name)
        if self.select is not None:
            self.validate_properties(self.select[1])
        return self

    def get_required_columns(self):
        """ Get the columns that populated relationships need """
        populate = self.restquery.handler_populate if self.restquery is not None else None
        if populate is None:
            return set()
        return {
            name
            for rel_name in populate.get_top_level_relation_names()
            for name in self.bags.relations.get_local_columns(rel_name)
        }

    def compile_options(self):
        return select_options(self.bags, self.select,
                              required_columns=self.get_required_columns(),
                              where=self.query_param_name)

    def alter_query(self, query):
        if self.select is None:
            return query
        return query.options(*self.compile_options())

    def get_final_input_value(self):
        if self.select is None:
            return None
        include, names = self.select
        return {name: int(include) for name in names}


def pluck_instance(instance, _seen=frozenset()):
    """ Pluck an sqlalchemy instance and make it into a dict

        This method should be used to prepare an object for JSON encoding.
        It plucks the loaded columns and recurses into loaded relationships;
        whatever was not loaded (a deferred column, a relationship nobody populated) is skipped.

        An object that is met again down its own tree is plucked without its relationships.

        :param instance: object
        :rtype: dict
    """
    if instance is None:
        return None

    insp = inspect(instance)
    unloaded = insp.unloaded

    ret = {prop.key: getattr(instance, prop.key)
           for prop in insp.mapper.column_attrs
           if prop.key not in unloaded}

    if id(instance) in _seen:
        return ret
    seen = _seen | {id(instance)}

    for rel in insp.mapper.relationships:
        if rel.key in unloaded:
            continue
        value = getattr(instance, rel.key)
        if rel.uselist:
            ret[rel.key] = [pluck_instance(v, seen) for v in value]
        else:
            ret[rel.key] = pluck_instance(value, seen)

    return ret
