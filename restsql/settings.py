from typing import *

#: Response policies for mutations
OBJECT = 'object'
NO_CONTENT = 'no-content'
RESPONSE_POLICIES = frozenset((OBJECT, NO_CONTENT))


class PaginationSettings(NamedTuple):
    """ Pagination metadata settings

    Args:
        meta (str): The key to put pagination metadata under
        total_pages (str): The key for the number of pages
        total_docs (str): The key for the total number of objects
        default_limit (int): Page size to use when `page` is given without a `limit`
    """
    meta: str = 'meta'
    total_pages: str = 'totalPages'
    total_docs: str = 'totalDocs'
    default_limit: int = 30


class Replace(NamedTuple):
    """ Override: replace the built-in handler completely

        `factory` is called like the built-in handler class: `factory(settings, executor)`,
        and has to return a callable that takes a `ResourceRequest`.
    """
    factory: Callable


class Patch(NamedTuple):
    """ Override: merge these values into the defaults of the built-in handler

        For instance, `Patch({'validate': {'query': {'color': str}}})` lets a request have a `color` query parameter
    """
    fields: Mapping


class RestSqlSettings(NamedTuple):
    """ Settings for all resources

    These are set once, at startup, and never change.
    Use `from_options()` to build them from a dict: it validates everything.

    Args:
        on_create (str): 'object' to respond with the created object; 'no-content' to respond with nothing
        on_update (str): 'object' | 'no-content'
        on_remove (str): 'object' | 'no-content'
        pagination (PaginationSettings): Pagination metadata key names, and the default page size
        where (bool): Let API users filter with the `where` request parameter?
            This exposes raw filtering: disabled by default.
        find (Replace | Patch | None): Override for the find operation
        create (Replace | Patch | None): Override for the create operation
        update (Replace | Patch | None): Override for the update operation
        remove (Replace | Patch | None): Override for the remove operation
    """
    on_create: str = NO_CONTENT
    on_update: str = NO_CONTENT
    on_remove: str = NO_CONTENT
    pagination: PaginationSettings = PaginationSettings()
    where: bool = False
    find: Optional[Union[Replace, Patch]] = None
    create: Optional[Union[Replace, Patch]] = None
    update: Optional[Union[Replace, Patch]] = None
    remove: Optional[Union[Replace, Patch]] = None

    @classmethod
    def from_options(cls, options: Mapping = None, **kwargs) -> 'RestSqlSettings':
        """ Validate the options and make settings

        Example:

            RestSqlSettings.from_options(
                on_create='object',
                pagination={'default_limit': 10},
                where=True,
                find={'validate': {'query': {'color': str}}},
            )

        :param options: dict of options
        :raises ValueError: invalid options
        """
        options = dict(options or {}, **kwargs)

        # Unknown keys
        invalid = set(options) - set(cls._fields)
        if invalid:
            raise ValueError('Unknown settings: {}'.format(', '.join(sorted(invalid))))

        # Response policies
        for name in ('on_create', 'on_update', 'on_remove'):
            if name in options and options[name] not in RESPONSE_POLICIES:
                raise ValueError('{} must be one of: {}; {!r} given'
                                 .format(name, ', '.join(sorted(RESPONSE_POLICIES)), options[name]))

        # Pagination
        if 'pagination' in options:
            options['pagination'] = _pagination_settings(options['pagination'])

        # Where
        if 'where' in options and not isinstance(options['where'], bool):
            raise ValueError('where must be a boolean')

        # Overrides
        for name in ('find', 'create', 'update', 'remove'):
            if name in options:
                options[name] = resolve_override(name, options[name])

        return cls(**options)

    def get_override(self, operation: str) -> Optional[Union[Replace, Patch]]:
        """ Get the override for an operation: 'find', 'create', 'update', 'remove' """
        return getattr(self, operation)

    def get_response_policy(self, operation: str) -> str:
        """ Get the response policy for a mutation: 'create', 'update', 'remove' """
        return getattr(self, 'on_' + operation)


def _pagination_settings(value) -> PaginationSettings:
    """ Make PaginationSettings: a partial dict is merged over the defaults """
    if isinstance(value, PaginationSettings):
        return value
    if not isinstance(value, Mapping):
        raise ValueError('pagination must be a dict')

    invalid = set(value) - set(PaginationSettings._fields)
    if invalid:
        raise ValueError('Unknown pagination settings: {}'.format(', '.join(sorted(invalid))))

    pagination = PaginationSettings()._replace(**value)

    for name in ('meta', 'total_pages', 'total_docs'):
        key = getattr(pagination, name)
        if not isinstance(key, str) or not key:
            raise ValueError('pagination.{} must be a non-empty string'.format(name))
    if not isinstance(pagination.default_limit, int) or isinstance(pagination.default_limit, bool) \
            or pagination.default_limit <= 0:
        raise ValueError('pagination.default_limit must be a positive integer')

    return pagination


def resolve_override(name: str, value) -> Optional[Union[Replace, Patch]]:
    """ Resolve an override: a callable replaces the handler, a mapping patches its defaults

    :raises ValueError: neither
    """
    if value is None or isinstance(value, (Replace, Patch)):
        return value
    if callable(value):
        return Replace(value)
    if isinstance(value, Mapping):
        return Patch(value)
    raise ValueError('{} must be either a callable, or a dict; {} given'.format(name, type(value).__name__))
