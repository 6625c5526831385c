class BaseRestSqlException(Exception):
    """ Base for errors caused by the input of the API user """


class InvalidQueryError(BaseRestSqlException):
    """ Invalid input provided by the User """

    def __init__(self, err: str):
        super(InvalidQueryError, self).__init__('Query error: {err}'.format(err=err))


class InvalidColumnError(BaseRestSqlException):
    """ Request mentioned an invalid column name """

    def __init__(self, model: str, column_name: str, where: str):
        self.model = model
        self.column_name = column_name
        self.where = where

        super(InvalidColumnError, self).__init__(
            'Invalid column "{column_name}" for "{model}" specified in {where}'.format(
                column_name=column_name,
                model=model,
                where=where)
        )


class InvalidRelationError(InvalidColumnError):
    """ Request mentioned an invalid relationship name """
    def __init__(self, model: str, column_name: str, where: str):
        self.model = model
        self.column_name = column_name
        self.where = where

        super(InvalidColumnError, self).__init__(
            'Invalid relation "{column_name}" for "{model}" specified in {where}'.format(
                column_name=column_name,
                model=model,
                where=where)
        )


class NotFound(Exception):
    """ The resource, or the document, does not exist """

    def __init__(self, what: str = None):
        self.what = what
        super(NotFound, self).__init__('Not found: {}'.format(what) if what else 'Not found')


class BadBindingError(AssertionError):
    """ The model bound to the request is not usable

        This is a configuration error, not something the API user can cause.
    """
