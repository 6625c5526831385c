"""
### Sort Operation

Sorting corresponds to the `ORDER BY` part of an SQL query.

An example of a sort operation would look like this:

    GET /api/users?sort=-age first_name

which sorts by age, descending; then by first name, alphabetically.

#### Syntax

* String syntax

    List of column names separated by whitespace, optionally prefixed by the sort direction:
    `-` for `DESC`, `+` for `ASC`. The default is `+`.

    ```
    sort=-a b +c   // -> a DESC, b ASC, c ASC
    ```

* Array syntax.

    The same, as a list:

    ```javascript
    { sort: [ '-a', 'b', 'c' ] }
    ```

* Object syntax.

    `{column: +1|-1}`. Only one column is allowed, because plain objects do not preserve the ordering of keys.
"""

from collections import OrderedDict

from .base import RestQueryHandlerBase
from ..bag import CombinedBag
from ..exc import InvalidQueryError


class RestSort(RestQueryHandlerBase):
    """ Sorting

        * None: no sorting
        * '-a b': whitespace-separated column names; leading '-' means descending
        * [ '-a', 'b', '+c' ]  - array of strings '[<+|->]<column>'. default direction = +1
        * dict({a: -1}) -- you can only use a dict with ONE COLUMN (because of its unstable order)

        Supports: Columns
    """

    query_param_name = 'sort'

    def __init__(self, model, bags):
        super(RestSort, self).__init__(model, bags)

        # On input
        #: OrderedDict() of a sort spec: {key: +1|-1}
        self.sort_spec = OrderedDict()

    def _get_supported_bags(self):
        return CombinedBag(
            col=self.bags.columns,
        )

    def _input(self, spec):
        # Empty
        if not spec:
            spec = []

        # String syntax
        if isinstance(spec, str):
            # Split by whitespace, and by commas
            spec = spec.replace(',', ' ').split()

        # List
        if isinstance(spec, (list, tuple)):
            if not all(isinstance(v, str) and v.strip('+-') for v in spec):
                raise InvalidQueryError('{} list must only contain column names'
                                        .format(self.query_param_name))
            # Strings: convert "[+-]column" into an ordered dict
            spec = OrderedDict([
                [v[1:], -1 if v[0] == '-' else +1]
                if v[0] in {'+', '-'}
                else [v, +1]
                for v in spec
            ])

        # Dict
        if isinstance(spec, OrderedDict):
            pass  # nothing to do here
        elif isinstance(spec, dict):
            if len(spec) > 1:
                raise InvalidQueryError('{} is a plain object; can only have 1 column '
                                        'because of unstable ordering of object keys; '
                                        'use string or list syntax instead'
                                        .format(self.query_param_name))
            spec = OrderedDict(spec)
        else:
            raise InvalidQueryError('{name} must be either a list, a string, or an object; {type} provided.'
                                    .format(name=self.query_param_name, type=type(spec).__name__))

        # Validate directions: +1 or -1
        if not all(dir in {-1, +1} for field, dir in spec.items()):
            raise InvalidQueryError('{} direction can be either +1 or -1'.format(self.query_param_name))

        # Validate columns
        self.validate_properties(spec.keys())
        return spec

    def input(self, sort_spec):
        super(RestSort, self).input(sort_spec)
        self.sort_spec = self._input(sort_spec)
        return self

    def compile_columns(self):
        return [
            self.supported_bags.get(name).desc() if d == -1 else self.supported_bags.get(name)
            for name, d in self.sort_spec.items()
        ]

    def alter_query(self, query):
        if not self.sort_spec:
            return query  # short-circuit
        return query.order_by(*self.compile_columns())

    def get_final_input_value(self):
        return ['{}{}'.format('-' if d == -1 else '', name)
                for name, d in self.sort_spec.items()]
