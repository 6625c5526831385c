"""
Request validation

Before a request reaches the query compiler, its parameters are validated and coerced
according to a table of rules, one per operation:

    FIND_RULES = {
        'params': {'id': identity},
        'query': {'page': positive_int, 'limit': positive_int, ...},
        'dependencies': {'deepPopulate': ('populate',)},
    }

Every rule is a callable that takes the raw value and returns the coerced value,
or raises `ValueError`/`TypeError`. A rule set to `None` is disabled: the parameter is rejected.
Unknown parameters are rejected.

Rules are plain dicts, so that overrides can merge their own rules into them.
"""

from copy import deepcopy
from typing import Mapping

from .exc import InvalidQueryError


# region Rules

def positive_int(value):
    """ A positive integer, or a string with one """
    if isinstance(value, bool):
        raise TypeError('must be an integer')
    if isinstance(value, str):
        value = int(value.strip())
    if not isinstance(value, int):
        raise TypeError('must be an integer')
    if value <= 0:
        raise ValueError('must be a positive integer')
    return value


def identity(value):
    """ An object id: a string, or an integer """
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise TypeError('must be a string or an integer')
    return value


def one_of_types(*types):
    """ A value of one of the given types """
    names = ', '.join(t.__name__ for t in types)

    def validator(value):
        if not isinstance(value, types):
            raise TypeError('must be one of: {}'.format(names))
        return value
    validator.__name__ = 'one_of_types({})'.format(names)
    return validator


def list_of(item_validator):
    """ A list, every item validated. A single item is made into a list """
    def validator(value):
        if not isinstance(value, (list, tuple)):
            value = [value]
        return [item_validator(v) for v in value]
    return validator


def deep_populate_item(value):
    """ A deepPopulate step: {modelName: str, populate: str|list|object} """
    if not isinstance(value, dict):
        raise TypeError('must be an object')
    if set(value) != {'modelName', 'populate'}:
        raise ValueError('must have exactly two keys: modelName, populate')
    if not isinstance(value['modelName'], str) or not value['modelName']:
        raise TypeError('modelName must be a non-empty string')
    if not isinstance(value['populate'], (str, list, dict)) or not value['populate']:
        raise TypeError('populate must be a non-empty string, array, or object')
    return value


def payload_object(value):
    """ The payload has to be an object """
    if not isinstance(value, dict):
        raise TypeError('must be an object')
    return value


FIND_RULES = {
    'params': {
        'id': identity,
    },
    'query': {
        'page': positive_int,
        'limit': positive_int,
        'sort': one_of_types(str, list, dict),
        'where': one_of_types(dict),
        'search': one_of_types(str),
        'populate': one_of_types(str, list, dict),
        'deepPopulate': list_of(deep_populate_item),
        'select': one_of_types(str, list, dict),
    },
    'dependencies': {
        # deepPopulate walks relationships that populate has loaded
        'deepPopulate': ('populate',),
    },
}

CREATE_RULES = {
    'params': {},
    'query': {},
    'payload': payload_object,
}

UPDATE_RULES = {
    'params': {
        'id': identity,
    },
    'query': {},
    'payload': payload_object,
}

REMOVE_RULES = {
    'params': {
        'id': identity,
    },
    'query': {},
}

# endregion


def validate_request(rules: Mapping, params: Mapping, query: Mapping, payload=None):
    """ Validate the request, coerce its values

    :param rules: Rule table. See FIND_RULES for an example
    :param params: Path parameters
    :param query: Query parameters
    :param payload: The body
    :return: (params, query, payload), coerced
    :raises InvalidQueryError
    """
    params = _validate_section('params', rules.get('params', {}), params)
    query = _validate_section('query', rules.get('query', {}), query)

    # Dependencies: a parameter that requires others
    for name, requires in rules.get('dependencies', {}).items():
        present = dict(params, **query)
        if name in present:
            missing = [r for r in requires if r not in present]
            if missing:
                raise InvalidQueryError('`{}` requires: {}'.format(name, ', '.join(missing)))

    # Payload
    payload_rule = rules.get('payload')
    if payload_rule is not None:
        try:
            payload = payload_rule(payload)
        except (TypeError, ValueError) as e:
            raise InvalidQueryError('payload {}'.format(e))

    return params, query, payload


def _validate_section(section, rules, values):
    """ Validate path parameters, or query parameters """
    values = {k: v for k, v in (values or {}).items() if v is not None}

    # Unknown parameters
    unknown = set(values) - {name for name, rule in rules.items() if rule is not None}
    if unknown:
        raise InvalidQueryError('Unknown {} parameters: {}'.format(section, ', '.join(sorted(unknown))))

    ret = {}
    for name, value in values.items():
        try:
            ret[name] = rules[name](value)
        except (TypeError, ValueError) as e:
            raise InvalidQueryError('`{}` {}'.format(name, e))
    return ret


def merge_defaults(defaults: Mapping, patch: Mapping) -> dict:
    """ Merge a patch into the defaults, recursively

        Nested dicts are merged; anything else is replaced.
        Neither of the arguments is modified.
    """
    ret = deepcopy(dict(defaults))
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(ret.get(key), Mapping):
            ret[key] = merge_defaults(ret[key], value)
        else:
            ret[key] = value
    return ret
