"""
### Populate Operation

Populating loads related objects along with the primary ones (implemented as a separate `SELECT .. IN` query).

In the back-end database, the data is kept in a *normalized form*:
items of different types are kept in different places.
This means that whenever you need a related item, you'll have to explicitly request it.

#### Syntax

* String syntax.

    Relationship names, separated by whitespace.
    Use the dot-notation to go deeper: `user.role` loads `user`, and then its `role`.

    ```
    GET /api/admins?populate=user
    ```

* Array syntax: the same, as a list: `['user', 'user.role']`

* Object syntax.

    `{ path: 'user', select: 'username' }`: load a relationship, and only select some columns of it.
    A list of such objects is fine, too.
"""

from sqlalchemy.orm import selectinload

from .base import RestQueryHandlerBase
from .select import parse_select, select_options
from ..bag import ModelPropertyBags
from ..exc import InvalidQueryError, InvalidColumnError, InvalidRelationError


class PopulateParams:
    """ A single relationship path to populate

        Because a path may go several levels deep, a dataclass is needed to transport the information.
    """

    __slots__ = ('path', 'select')

    def __init__(self, path, select=None):
        #: The list of relationship names: ('user', 'role')
        self.path = tuple(path)
        #: Parsed selection for the last model in the path: (include, names), or None
        self.select = select

    @property
    def dotted_path(self):
        return '.'.join(self.path)

    def __repr__(self):
        return '<PopulateParams({}, select={!r})>'.format(self.dotted_path, self.select)


class RestPopulate(RestQueryHandlerBase):
    """ Handler for eagerly loading related models.

        Supports the following arguments:

        - 'user role', or 'user.role'
        - ['user', 'user.role']
        - {path: 'user', select: 'name'}, or a list of them
    """

    query_param_name = 'populate'

    def __init__(self, model, bags):
        super(RestPopulate, self).__init__(model, bags)

        # On input
        #: list[PopulateParams]
        self.params = []

    def _get_supported_bags(self):
        return self.bags.relations

    def input(self, populate):
        super(RestPopulate, self).input(populate)
        self.params = self._input_process(populate)
        return self

    def _input_process(self, populate):
        """ Process the input and produce a list of PopulateParams

            :rtype: list[PopulateParams]
        """
        # Normalize into a list
        if not populate:
            populate = []
        elif isinstance(populate, str):
            populate = populate.replace(',', ' ').split()
        elif isinstance(populate, dict):
            populate = [populate]
        elif not isinstance(populate, (list, tuple)):
            raise InvalidQueryError('{} must be one of: null, string, array, object; '
                                    '{type} provided'.format(self.query_param_name, type=type(populate).__name__))

        params = []
        for item in populate:
            if isinstance(item, str):
                path, select = item, None
            elif isinstance(item, dict):
                unknown = set(item) - {'path', 'select'}
                if unknown or not isinstance(item.get('path'), str):
                    raise InvalidQueryError('{} object must have a `path` string, and an optional `select`'
                                            .format(self.query_param_name))
                path, select = item['path'], item.get('select')
            else:
                raise InvalidQueryError('{} items must be either strings or objects'.format(self.query_param_name))

            # Every item of a space-separated path is a separate relationship
            for dotted_path in path.split():
                p = PopulateParams(dotted_path.split('.'))
                # Validate
                target_bags = self._walk_path(p.path)
                if select:
                    p.select = parse_select(select, '{}.select'.format(self.query_param_name))
                    invalid = target_bags.columns.get_invalid_names(p.select[1])
                    if invalid:
                        raise InvalidColumnError(target_bags.model_name, sorted(invalid)[0],
                                                 '{}.select'.format(self.query_param_name))
                params.append(p)

        return params

    def _walk_path(self, path):
        """ Walk the relationship path, validate every hop

            :return: Bags of the last model on the path
            :rtype: ModelPropertyBags
            :raises InvalidRelationError
        """
        bags = self.bags
        for i, rel_name in enumerate(path):
            if rel_name not in bags.relations:
                raise InvalidRelationError(bags.model_name,
                                           '.'.join(path[:i+1]),
                                           self.query_param_name)
            bags = ModelPropertyBags.for_model(bags.relations.get_target_model(rel_name))
        return bags

    def get_top_level_relation_names(self):
        """ Names of the relationships of the primary model that are going to be loaded """
        return {p.path[0] for p in self.params}

    def compile_options(self):
        """ Compile a list of loader options: selectinload() chains

            :rtype: list
        """
        options = []
        for p in self.params:
            bags = self.bags
            loader = None
            for rel_name in p.path:
                relation = bags.relations[rel_name]
                loader = selectinload(relation) if loader is None else loader.selectinload(relation)
                bags = ModelPropertyBags.for_model(bags.relations.get_target_model(rel_name))

            if p.select is not None:
                # The last model of the path has to keep the columns its own populated relationships need
                required = self._get_required_columns(p.path, bags)
                options.extend(select_options(bags, p.select,
                                              required_columns=required,
                                              as_relation=loader,
                                              where='{}.select'.format(self.query_param_name)))
            else:
                options.append(loader)
        return options

    def _get_required_columns(self, path, bags):
        """ Local columns of deeper relationships that start at `path` """
        n = len(path)
        return {
            name
            for p in self.params
            if len(p.path) > n and p.path[:n] == path
            for name in bags.relations.get_local_columns(p.path[n])
        } | {
            # Remote side: the foreign key that points back to the parent
            c.key
            for c in bags.model.__mapper__.columns
            if c.foreign_keys
        }

    def alter_query(self, query):
        if not self.params:
            return query
        return query.options(*self.compile_options())

    def get_final_input_value(self):
        return [p.dotted_path for p in self.params]
