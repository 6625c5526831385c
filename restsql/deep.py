"""
Deep population: loading relationships of relationships, after the primary query has been made.

The `deepPopulate` request parameter is an ordered list of steps:

    deepPopulate: [
        {modelName: 'Role', populate: 'user.role'},
    ]

The `populate` of a step is a path, a list of paths, a `{path}` object, or a list of them.

Every step walks the relationship path from the primary model, and loads its last hop,
which must lead to `modelName`. Steps are applied one by one, in order:
a later step may walk through relationships that an earlier one has loaded.
"""

from functools import reduce
from logging import getLogger

from .bag import ModelPropertyBags
from .exc import InvalidQueryError, InvalidRelationError

logger = getLogger(__name__)


def deep_populate(model, docs, specs):
    """ Apply every deep population step, in order, to the loaded objects

    :param model: The primary model
    :param docs: An object, or a list of objects
    :param specs: list of {modelName, populate}
    :return: `docs`, with relationships loaded
    :raises InvalidQueryError: unknown model name; malformed step
    :raises InvalidRelationError: the path does not exist, or does not lead to the model
    """
    if not specs:
        return docs

    return reduce(
        lambda docs, spec: _populate_step(model, docs, spec),
        specs,
        docs
    )


def _populate_step(model, docs, spec):
    """ A single step: walk every path, load its last hop """
    if not isinstance(spec, dict) or set(spec) != {'modelName', 'populate'}:
        raise InvalidQueryError('deepPopulate items must be objects: {modelName, populate}')
    target_model = get_model_by_name(model, spec['modelName'])

    for dotted_path in _get_paths(spec['populate']):
        path = dotted_path.split('.')

        # Objects reached by the path, hop by hop; the last hop is the one to load
        parents = _as_list(docs)
        parent_bags = ModelPropertyBags.for_model(model)
        for i, rel_name in enumerate(path):
            if rel_name not in parent_bags.relations:
                raise InvalidRelationError(parent_bags.model_name, '.'.join(path[:i+1]), 'deepPopulate')
            if i == len(path) - 1:
                break
            parents = [child
                       for parent in parents
                       for child in _as_list(getattr(parent, rel_name))]
            parent_bags = ModelPropertyBags.for_model(parent_bags.relations.get_target_model(rel_name))

        # The last hop has to lead to the model
        last_hop = path[-1]
        if parent_bags.relations.get_target_model(last_hop) is not target_model:
            raise InvalidRelationError(parent_bags.model_name, last_hop,
                                       'deepPopulate: does not lead to {}'.format(target_model.__name__))

        _load_relationship(parents, last_hop)
        logger.debug('deepPopulate: loaded %s.%s for %d objects',
                     parent_bags.model_name, last_hop, len(parents))

    return docs


def get_model_by_name(model, name):
    """ Find a model by its name, among the models of the same registry

    :raises InvalidQueryError: unknown model
    """
    if not isinstance(name, str):
        raise InvalidQueryError('deepPopulate: modelName must be a string')
    for mapper in model.registry.mappers:
        if mapper.class_.__name__ == name:
            return mapper.class_
    raise InvalidQueryError('deepPopulate: unknown model "{}"'.format(name))


def _get_paths(populate):
    """ Relationship paths of a step: 'user.role', ['user.role'], {path: 'user.role'}, or a list of objects

    :raises InvalidQueryError: malformed
    """
    if isinstance(populate, (str, dict)):
        populate = [populate]
    elif not isinstance(populate, (list, tuple)):
        raise InvalidQueryError('deepPopulate: populate must be a string, an array, or an object; '
                                '{} provided'.format(type(populate).__name__))

    paths = []
    for item in populate:
        if isinstance(item, dict):
            if set(item) != {'path'} or not isinstance(item['path'], str):
                raise InvalidQueryError('deepPopulate: populate objects must have a single `path` string')
            item = item['path']
        elif not isinstance(item, str):
            raise InvalidQueryError('deepPopulate: populate items must be either strings or objects')
        paths.extend(item.replace(',', ' ').split())

    if not paths:
        raise InvalidQueryError('deepPopulate: populate is empty')
    return paths


def _load_relationship(parents, rel_name):
    """ Load a relationship for all the given objects

        Lazy loading happens in the Session the objects belong to.
        Many-to-one relationships hit the identity map first, so repeated targets are only loaded once.
    """
    for p in parents:
        getattr(p, rel_name)


def _as_list(value):
    """ Make a list of objects out of an object, a list, or None """
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]
