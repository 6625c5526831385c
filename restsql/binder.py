""" Resource binder: finds the model a request is addressed to

    GET /admins/1  ->  Admin
"""

from typing import Optional

from sqlalchemy.orm import registry as sa_registry


def singularize(name: str) -> str:
    """ Get the singular form of a plural noun. Only the regular forms are supported.

    Examples:
        >>> singularize('admins')
        'admin'
        >>> singularize('categories')
        'category'
        >>> singularize('boxes')
        'box'
        >>> singularize('status')
        'status'
    """
    if name.endswith('ies') and len(name) > 3:
        return name[:-3] + 'y'
    if name.endswith(('sses', 'xes', 'zes', 'ches', 'shes')):
        return name[:-2]
    if name.endswith('s') and not name.endswith(('ss', 'us', 'is')):
        return name[:-1]
    return name


class ModelBinder:
    """ Find models by the name used in the path

        By default, the name is singularized and capitalized: 'admins' -> 'Admin'.

        Example:

            binder = ModelBinder(Base)
            binder('admins')  # -> Admin
            binder('unicorns')  # -> None
    """

    def __init__(self, base, capitalize: bool = True, singularize: bool = True):
        """ Init the binder

        :param base: The declarative base, or the `registry`, that has the models
        :param capitalize: Capitalize the name?
        :param singularize: Singularize the name?
        """
        self.registry = base if isinstance(base, sa_registry) else base.registry
        self.capitalize = capitalize
        self.singularize = singularize

    def model_name(self, name: str) -> str:
        """ Convert the name from the path into a model name """
        if self.singularize:
            name = singularize(name)
        if self.capitalize:
            name = name[:1].upper() + name[1:]
        return name

    def __call__(self, name: str) -> Optional[type]:
        """ Find the model

        :return: The model, or `None` if there's no such model
        """
        model_name = self.model_name(name)
        for mapper in self.registry.mappers:
            if mapper.class_.__name__ == model_name:
                return mapper.class_
        return None
