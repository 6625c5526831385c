"""
### Where Operation

Filtering corresponds to the `WHERE` part of an SQL query.

The `where` request parameter takes a MongoDB-style criteria object:

```javascript
$.get('/api/admins?where=' + JSON.stringify({
    age: { $gte: 17 },
}))
```

Because this exposes raw filtering to the API user, it is disabled unless the resource
settings enable it: when disabled, the parameter is silently ignored.
Base conditions supplied by the route are applied in either case.

#### Syntax

* Equality:

    * `{ column: value }`: equality shorthand; same as `{ column: { $eq: value } }`
    * `{ column: { $eq: value } }`: equality
    * `{ column: { $ne: value } }`: inequality. Null-safe: `IS DISTINCT FROM`

* Comparison: `$lt`, `$lte`, `$gt`, `$gte`

* Text:

    * `{ column: { $prefix: value } }`: `LIKE 'value%'`
    * `{ column: { $regex: pattern } }`: regular expression match

* Membership and nulls:

    * `{ column: { $in: [a, b, c] } }`, `{ column: { $nin: [a, b, c] } }`
    * `{ column: { $exists: true } }`: `IS NOT NULL`; `false` gives `IS NULL`

* Related columns, with dot-notation: `{ 'user.username': 'kevin' }` gives an `EXISTS` sub-query

* Boolean: `{ $and: [ {...}, ... ] }`, `{ $or: [ ... ] }`, `{ $nor: [ ... ] }`, `{ $not: {...} }`
"""

import re

from sqlalchemy import and_, or_, not_, cast, true

from .base import RestQueryHandlerBase
from ..bag import CombinedBag
from ..exc import InvalidQueryError, InvalidColumnError


# region Filter Expression Classes

def _is_array(value):
    return isinstance(value, (list, tuple, set, frozenset))


def _regex_match(col, pattern):
    """ Regular expression match. Both SQLite and Postgres understand inline flags, like (?i) """
    return col.regexp_match(pattern)


def validate_regex(pattern, where):
    """ Make sure that the API user has given us a valid regular expression

    :raises InvalidQueryError
    """
    if not isinstance(pattern, str):
        raise InvalidQueryError('{}: regular expression must be a string'.format(where))
    try:
        re.compile(pattern)
    except re.error as e:
        raise InvalidQueryError('{}: invalid regular expression: {}'.format(where, e))
    return pattern


class FilterExpressionBase:
    """ An expression from the where object """

    __slots__ = ('operator_str', 'value')

    def __init__(self, operator_str, value):
        self.operator_str = operator_str
        self.value = value

    def compile_expression(self):
        """ Compiles the expression into an SQL expression """
        raise NotImplementedError()

    @staticmethod
    def sql_anded_together(conditions):
        """ Take a list of conditions and AND them together into an SQL expression """
        # No conditions: just return True, which is a valid sqlalchemy expression for filtering
        if not conditions:
            return true()

        # AND them together
        cc = and_(*conditions)
        # Put parentheses around it, if necessary
        return cc.self_group() if len(conditions) > 1 else cc


class LiteralExpression(FilterExpressionBase):
    """ An expression that is already compiled and ready to be used

        This is used for expressions that were compiled by the application: base conditions given as SqlAlchemy expressions
    """
    __slots__ = ('expression',)

    def __init__(self, expression):
        # no super()
        self.expression = expression

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, str(self.expression))

    def compile_expression(self):
        return self.expression


class FilterBooleanExpression(FilterExpressionBase):
    """ A boolean expression.

        Consists of: an operator ($and, etc), and a value (list of FilterExpressionBase)
    """

    def __repr__(self):
        return '({}: {})'.format(self.operator_str, self.value)

    def compile_expression(self):
        # self.operator_str: $and, $or, $nor, $not
        # self.value: list[FilterExpressionBase] for $not, list[list[FilterExpressionBase]] for the rest

        if self.operator_str == '$not':
            criterion = self.sql_anded_together([
                c.compile_expression()
                for c in self.value
            ])
            return not_(criterion)
        else:
            # Every item of the list is a list of conditions ANDed together
            criteria = [self.sql_anded_together([c.compile_expression() for c in cs])
                        for cs in self.value]

            if self.operator_str in ('$or', '$nor'):
                cc = or_(*criteria)
                # for $nor, it will be negated later
            elif self.operator_str == '$and':
                cc = and_(*criteria)
            else:
                raise NotImplementedError('Unknown operator: {}'.format(self.operator_str))

            # Put parentheses around it when there are multiple clauses
            cc = cc.self_group() if len(criteria) > 1 else cc

            if self.operator_str == '$nor':
                return ~cc
            return cc


class FilterColumnExpression(FilterExpressionBase):
    """ An expression involving a column

        Consists of: an operator ($eq, etc), a column, and a value to compare the column to
    """

    __slots__ = ('bag', 'column_name', 'column', 'operator_lambda')

    def __init__(self,
                 bag, column_name, column,
                 operator_str, operator_lambda,
                 value):
        """ Init a column expression

        :param bag: the bag that contains information about the column
        :type bag: restsql.bag.ColumnsBag
        :param column_name: Name of the column referenced (possibly, with a dot!)
        :param column: The actual column (reference)
        :param operator_str: The operator to use, e.g. $eq
        :param operator_lambda: A callable that implements an SQL expression handling the operator
        :param value: The value the operator is applied to
        """
        super(FilterColumnExpression, self).__init__(operator_str, value)
        self.bag = bag
        self.column_name = column_name
        self.column = column
        self.operator_lambda = operator_lambda

    def __repr__(self):
        return '{} {} {!r}'.format(self.column_name, self.operator_str, self.value)

    def compile_expression(self):
        col = self.column

        # JSON columns are cast to the type of the value they're compared to
        if self.bag.is_column_json(self.column_name) and not _is_array(self.value):
            col = cast(col, col.type.coerce_compared_value('=', self.value))

        return self.operator_lambda(col, self.value)


class FilterRelatedColumnExpression(FilterColumnExpression):
    """ An expression involving a related column (dot-notation: 'user.username') """

    __slots__ = ('relation_name',)

    def __init__(self,
                 bag, relation_name,
                 column_name, column,
                 operator_str, operator_lambda,
                 value):
        super(FilterRelatedColumnExpression, self).__init__(bag, column_name, column, operator_str, operator_lambda, value)
        self.relation_name = relation_name

# endregion


class RestWhere(RestQueryHandlerBase):
    """ Filtering with MongoDB-style criteria

        Supported: Columns, Related Columns
    """

    query_param_name = 'where'

    def __init__(self, model, bags, enabled=False):
        """ Init a filter expression

        :param model: Sqlalchemy model to work with
        :param bags: Model bags
        :param enabled: Is the `where` request parameter honored?
            When disabled, only the base conditions are applied.
        """
        super(RestWhere, self).__init__(model, bags)

        # Config
        self.enabled = enabled

        # On input
        self.expressions = []

    def _get_supported_bags(self):
        return CombinedBag(
            col=self.bags.columns,
            rcol=self.bags.related_columns,
        )

    # Operators for scalar columns
    _operators_scalar = {
        # operator => lambda column, value
        '$eq':  lambda col, val: col == val,
        '$ne':  lambda col, val: col.is_distinct_from(val),  # (see comment below)
        '$lt':  lambda col, val: col < val,
        '$lte': lambda col, val: col <= val,
        '$gt':  lambda col, val: col > val,
        '$gte': lambda col, val: col >= val,
        '$prefix': lambda col, val: col.startswith(val),
        '$in':  lambda col, val: col.in_(val),  # field IN(values)
        '$nin': lambda col, val: col.not_in(val),  # field NOT IN(values)
        '$exists': lambda col, val: col != None if val else col == None,
        '$regex': _regex_match,

        # Note on $ne:
        # We can't actually use '!=' here, because with nullable columns, it will give unexpected results.
        # {'name': {'$ne': 'brad'}} won't select a User(name=None),
        # because a '!=' comparison with NULL is... NULL, which is a false value.
    }

    # List of operators that always require array argument
    _operators_require_array_value = frozenset(('$in', '$nin'))

    # List of boolean operators, handled by a separate method
    _boolean_operators = frozenset(('$and', '$or', '$nor', '$not'))

    # These classes implement compilation
    # You can override them, if necessary
    _COLUMN_EXPRESSION_CLS = FilterColumnExpression
    _RELATED_COLUMN_EXPRESSION_CLS = FilterRelatedColumnExpression
    _BOOLEAN_EXPRESSION_CLS = FilterBooleanExpression

    def input(self, criteria, conditions=None):
        """ Input the `where` criteria and the base conditions

        :param criteria: The `where` request parameter. Ignored unless `enabled`
        :param conditions: Base conditions that are always applied. Can be:
            * a dict of criteria, same syntax as `where`;
            * a `lambda model:` that returns a list of SqlAlchemy expressions;
            * a list of SqlAlchemy expressions.
        """
        super(RestWhere, self).input(criteria)
        self.expressions = []

        # Base conditions
        if conditions is not None:
            self.expressions.extend(self._parse_conditions(conditions))

        # The where parameter
        if self.enabled:
            self.expressions.extend(self._parse_criteria(criteria))

        return self

    def _parse_conditions(self, conditions):
        """ Parse base conditions into a list of expressions """
        if isinstance(conditions, dict):
            return self._parse_criteria(conditions)

        if callable(conditions):
            conditions = conditions(self.model)
        if not isinstance(conditions, (list, tuple)):
            conditions = [conditions]
        return [LiteralExpression(c) for c in conditions]

    def _parse_criteria(self, criteria):
        """ Parse criteria and return a list of parsed objects.

        :type criteria: dict | None
        :rtype: list[FilterExpressionBase]
        """
        # None
        if not criteria:
            criteria = {}

        # Validation base
        if not isinstance(criteria, dict):
            raise InvalidQueryError('{} criteria must be one of: null, object'.format(self.query_param_name))

        # In the end, those will be ANDed together
        expressions = []

        # Assuming a dict of mixed { column: value }s and  { column: { $op: value } }s
        for key, criteria in criteria.items():
            # Boolean expressions? ($op: value}
            if key in self._boolean_operators:
                boolean_expression = self._parse_boolean_operator(key, criteria)
                if boolean_expression is not None:
                    expressions.append(boolean_expression)
                continue  # nothing else to do here

            # Alright, now we're handling a column, not a boolean expression
            # It can, however, be a column on a related model, referenced using the dot-notation:
            # e.g. { user.id: 10 }. So here we use a combined bag
            column_name = key
            try:
                bag_name, bag, column = self.supported_bags[column_name]
            except KeyError:
                raise InvalidColumnError(self.bags.model_name, column_name, self.query_param_name)

            # Shorthand syntax: {name: "Kevin"} is {name: {$eq: "Kevin"}}
            if not isinstance(criteria, dict):
                criteria = {'$eq': criteria}

            # At this point, we have a column, and a dict of multiple criteria.
            # { age: { $gt: 18, $lt: 25 } }
            for operator, value in criteria.items():
                # Operator lookup
                try:
                    operator_lambda = self._lookup_operator(operator)
                except KeyError:
                    raise InvalidQueryError('Unsupported operator "{}" found in {} for column `{}`'
                                            .format(operator, self.query_param_name, column_name))

                # Validate operator argument
                if operator in self._operators_require_array_value and not _is_array(value):
                    raise InvalidQueryError('{}: {} argument must be an array for column `{}`'
                                            .format(self.query_param_name, operator, column_name))
                if operator == '$regex':
                    validate_regex(value, '{}: `{}`'.format(self.query_param_name, column_name))

                if bag_name == 'col':
                    expressions.append(self._COLUMN_EXPRESSION_CLS(
                        bag, column_name, column,
                        operator, operator_lambda,
                        value
                    ))
                elif bag_name == 'rcol':
                    relation_name = bag.get_relationship_name(column_name)
                    expressions.append(self._RELATED_COLUMN_EXPRESSION_CLS(
                        bag, relation_name,
                        column_name, column,
                        operator, operator_lambda,
                        value
                    ))
                else:
                    raise NotImplementedError('How did we end up here? Unsupported column type!')

        # Done
        return expressions

    def _parse_boolean_operator(self, op, criteria):
        """ Used in _parse_criteria() to handle boolean operators from self._boolean_operators

            Example:
                Input: { $and: [ {}, ... ] }
                -> _parse_boolean_operator('$and', [ {}, ... ])
        """
        if op == '$not':
            # This operator accepts a dict (not a list)
            if not isinstance(criteria, dict):
                raise InvalidQueryError('{}: $not argument must be an object'
                                        .format(self.query_param_name))
            return self._BOOLEAN_EXPRESSION_CLS(op, self._parse_criteria(criteria))
        else:
            # All other operators accept a list: $and, $or, $nor
            if not isinstance(criteria, (list, tuple)):
                raise InvalidQueryError('{}: {} argument must be a list'
                                        .format(self.query_param_name, op))

            criteria = [self._parse_criteria(s) for s in criteria]

            if len(criteria) == 0:
                return None  # Empty criteria: { $or: [] } does not make sense
            else:
                return self._BOOLEAN_EXPRESSION_CLS(op, criteria)

    def _lookup_operator(self, operator):
        """ Lookup a scalar operator

        :raises: KeyError
        """
        return self._operators_scalar[operator]

    def compile_statement(self):
        """ Create an SQL statement

        :rtype: sqlalchemy.sql.elements.BooleanClauseList
        """
        conditions = []

        # Conditions on the same relationship are grouped,
        # so that there's one EXISTS() sub-query per relationship
        column_expressions = []
        relationship_expressions = {}
        for e in self.expressions:
            if isinstance(e, FilterRelatedColumnExpression):
                relationship_expressions.setdefault(e.relation_name, [])
                relationship_expressions[e.relation_name].append(e)
            else:
                column_expressions.append(e)

        # Compile column expressions
        conditions.extend(e.compile_expression() for e in column_expressions)

        # Compile related column expressions, grouped by their relation name
        for rel_name, expressions in relationship_expressions.items():
            rel_conditions = [e.compile_expression() for e in expressions]

            relationship = self.bags.relations[rel_name]
            if self.bags.relations.is_relationship_array(rel_name):
                conditions.append(relationship.any(and_(*rel_conditions)))
            else:
                conditions.append(relationship.has(and_(*rel_conditions)))

        return self._BOOLEAN_EXPRESSION_CLS.sql_anded_together(conditions)

    def alter_query(self, query):
        # An empty expression would put an ugly 'WHERE true' condition on the query
        if self.expressions:
            query = query.filter(self.compile_statement())
        return query

    alter_count_query = alter_query

    def get_final_input_value(self):
        return self.input_value if self.enabled else None
