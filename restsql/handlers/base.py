from ..bag import ModelPropertyBags
from ..exc import InvalidColumnError


class RestQueryHandlerBase:
    """ An implementation of a handler from RestQuery

        Every subclass will handle a single request parameter
    """

    #: Name of the request parameter that this object is capable of handling
    query_param_name = None

    def __init__(self, model, bags):
        """ Initialize the handler with a model.

        This method does *not* receive any input data just yet, with the purpose of having an
        object that can be extended with some interesting defaults right at init time.

        :param model: The sqlalchemy model it's being applied to
        :type model: sqlalchemy.ext.declarative.DeclarativeMeta
        :param bags: Model bags.
        :type bags: ModelPropertyBags

        NOTE: Any arguments that have default values will be treated as handler settings!!
        """
        #: The model to handle the request parameter for
        self.model = model
        #: Model property bags: because we need access to the lists of its properties
        self.bags = bags
        #: A CombinedBag() that allows to handle properties of multiple types (e.g. columns + related columns)
        self.supported_bags = self._get_supported_bags()

        # Has the input() method been called already?
        # This may be important for handlers that depend on other handlers
        self.input_received = False
        self.input_value = None

        #: RestQuery bound to this object. It may remain uninitialized.
        self.restquery = None

    def with_restquery(self, restquery):
        """ Bind this object with a RestQuery

            :type restquery: restsql.query.RestQuery
            """
        self.restquery = restquery
        return self

    def __copy__(self):
        """ Handlers are reused by RestQuery: their state before input() is copied for every query """
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)
        return result

    def _get_supported_bags(self):
        """ Get the _PropertiesBag interface supported by this handler

        :rtype: restsql.bag._PropertiesBagBase
        """
        raise NotImplementedError()

    def validate_properties(self, prop_names, bag=None, where=None):
        """ Validate the given list of property names against `self.supported_bags`

        :param prop_names: List of property names
        :param bag: A specific bag to use
        :raises InvalidColumnError
        """
        # Bag to check against
        if bag is None:
            bag = self.supported_bags

        # Validate
        invalid = bag.get_invalid_names(prop_names)
        if invalid:
            raise InvalidColumnError(self.bags.model_name,
                                     sorted(invalid)[0],
                                     where or self.query_param_name)

    def input(self, value):
        """ Get the value of the request parameter.

        The purpose of this method is to receive the input, validate it, and store as a public
        property so that external tools may export its value.

        :param value: the value of the request parameter it's handling
        :rtype: RestQueryHandlerBase
        :raises InvalidRelationError
        :raises InvalidColumnError
        :raises InvalidQueryError
        """
        self.input_value = value  # no copying. Try not to modify it.

        # Set the flag
        self.input_received = True

        # Make sure that input() can only be used once
        self.input = self.__raise_input_not_reusable

        return self

    def __raise_input_not_reusable(self, *args, **kwargs):
        raise RuntimeError("You can't use the {}.input() method twice. "
                           "copy() it first!"
                           .format(self.__class__.__name__))

    def alter_query(self, query):
        """ Alter the given query and apply the request parameter this handler is handling

        :param query: The query to apply the parameter to
        :type query: Query
        :rtype: Query
        """
        raise NotImplementedError()

    def alter_count_query(self, query):
        """ Alter the count query

        Only the filtering handlers contribute to the count query: the rest leave it alone.

        :type query: Query
        :rtype: Query
        """
        return query

    def get_final_input_value(self):
        """ Get the final input of the handler """
        return self.input_value
