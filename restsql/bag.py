from itertools import chain
from typing import Set, Mapping, Iterable, Tuple, FrozenSet, List

from sqlalchemy import inspect, String, TypeDecorator, JSON
from sqlalchemy import Column
from sqlalchemy.orm import DeclarativeMeta
from sqlalchemy.orm import ColumnProperty, RelationshipProperty
from sqlalchemy.orm.interfaces import MapperProperty
from sqlalchemy.sql.type_api import TypeEngine


class ModelPropertyBags:
    """ Model Property Bags is the class that lets you get information about the model's columns.

    This is the class that binds them all together: Columns, Relationships, PKs, etc.
    All the meta-information about a certain Model is stored here:

    - Columns
    - Textual columns (the ones `search` goes through)
    - Relationships
    - Columns of related models
    - Primary keys
    - Writable properties

    Whenever it's too much to inspect several properties, use a `CombinedBag()` over them,
    which lets you get a column from a number of bags.
    """
    __bags_per_model_cache = {}

    @classmethod
    def for_model(cls, model: DeclarativeMeta) -> 'ModelPropertyBags':
        """ Get bags for a model.

        Please use this method over __init__(), because it initializes those bags only once
        """
        try:
            # Classes in Python 3 use an immutable `mappingproxy` for their __dict__,
            # so we keep our own cache of ModelPropertyBags.
            return cls.__bags_per_model_cache[model]
        except KeyError:
            cls.__bags_per_model_cache[model] = bags = cls(model)
            return bags

    def __init__(self, model: DeclarativeMeta):
        """ Init bags

        :param model: Model
        """
        insp = inspect(model)

        self.model = model
        self.model_name = model.__name__

        # Init bags: after every column type
        self.columns = self._init_columns(model, insp)
        self.strings = self._init_string_columns(model, insp)
        self.properties = self._init_properties(model, insp)
        self.relations = self._init_relations(model, insp)
        self.related_columns = self._init_related_columns(model, insp)

        # Additional informational bags
        self.pk = self._init_primary_key(model, insp)

        # Writable entities
        self.writable_properties = self._init_writable_properties(model, insp)

        self.writable = CombinedBag(
            # Everything that's writable in a model (excluding relations)
            col=self.columns,
            prop=self.writable_properties,
        )

    # region: Initialize bags

    def _init_columns(self, model, insp):
        """ Initialize: Column properties """
        return ColumnsBag(_get_model_columns(model, insp))

    def _init_string_columns(self, model, insp):
        """ Initialize: Columns of a textual type """
        return ColumnsBag({name: c
                           for name, c in self.columns
                           if _is_column_string(c)})

    def _init_properties(self, model, insp):
        """ Initialize: Calculated properties: @property """
        return PropertiesBag(_get_model_properties(model, insp))

    def _init_relations(self, model, insp):
        """ Initialize: Relationships """
        return RelationshipsBag(_get_model_relationships(model, insp))

    def _init_related_columns(self, model, insp):
        """ Initialize: Related column properties, with dot-notation """
        return DotRelatedColumnsBag(_get_model_relationships(model, insp))

    def _init_primary_key(self, model, insp):
        """ Initialize: Primary key columns """
        return PrimaryKeyBag({c.key: self.columns[c.key]
                              for c in insp.primary_key})

    def _init_writable_properties(self, model, insp):
        """ Initialize: writable properties """
        return PropertiesBag({name: None
                              for name in self.properties.names
                              if _is_property_writable(getattr(model, name))})

    # endregion

    @property
    def all_names(self) -> Set[str]:
        """ Get the names of all properties defined for the model """
        return self.columns.names | \
               self.properties.names | \
               self.relations.names


class _PropertiesBagBase:
    """ Base class for Property bags:

    A container that keeps meta-information on SqlAlchemy stuff, like:
    - Columns
    - Primary keys
    - Relations
    - Related columns
    - Regular python properties
    """

    def __contains__(self, name: str) -> bool:
        raise NotImplementedError

    def __getitem__(self, name: str) -> MapperProperty:
        raise NotImplementedError

    @property
    def names(self) -> FrozenSet[str]:
        """ Get the set of names """
        raise NotImplementedError

    def __iter__(self) -> Iterable[Tuple[str, MapperProperty]]:
        """ Get all items """
        raise NotImplementedError

    def get_invalid_names(self, names: Iterable[str]) -> Set[str]:
        """ Get the names of invalid items

        Use this for validation.
        """
        return set(names) - self.names


class PropertiesBag(_PropertiesBagBase):
    """ Contains simple model properties (@property) """

    def __init__(self, properties: Mapping[str, None]):
        self._property_names = frozenset(properties.keys())

    @property
    def names(self) -> FrozenSet[str]:
        return self._property_names

    def __contains__(self, prop_name: str) -> bool:
        return prop_name in self._property_names

    def __getitem__(self, prop_name: str) -> None:
        if prop_name in self._property_names:
            return None
        raise KeyError(prop_name)

    def __iter__(self) -> Iterable[Tuple[str, None]]:
        return ((name, None) for name in self._property_names)


class ColumnsBag(_PropertiesBagBase):
    """ Columns bag

    Contains meta-information about columns:
    - which of them are JSON types
    - list of their names
    - getting a column by name: bag[column_name]
    """

    def __init__(self, columns: Mapping[str, ColumnProperty]):
        self._columns = columns
        self._column_names = frozenset(self._columns.keys())
        self._json_column_names = frozenset(name
                                            for name, col in self._columns.items()
                                            if _is_column_json(col))

    @property
    def names(self) -> FrozenSet[str]:
        return self._column_names

    def __iter__(self) -> Iterable[Tuple[str, ColumnProperty]]:
        return iter(self._columns.items())

    def __contains__(self, name: str) -> bool:
        return name in self._column_names

    def __getitem__(self, column_name: str) -> ColumnProperty:
        return self._columns[column_name]

    def __len__(self):
        return len(self._columns)

    def is_column_json(self, name: str) -> bool:
        return name in self._json_column_names


class PrimaryKeyBag(ColumnsBag):
    """ Primary Key Bag

    Like ColumnBag, but with a fancy name :)
    """

    def get_single(self) -> Tuple[str, ColumnProperty]:
        """ Get the one and only primary key column

            :raises ValueError: the model has a composite primary key
        """
        if len(self) != 1:
            raise ValueError('Lookup by id requires a single-column primary key')
        return next(iter(self))


class RelationshipsBag(_PropertiesBagBase):
    """ Relationships bag

    Keeps track of relationships of a model.
    """

    def __init__(self, relationships: Mapping[str, RelationshipProperty]):
        self._relations = relationships
        self._rel_names = frozenset(self._relations.keys())
        self._array_rel_names = frozenset(name
                                          for name, rel in self._relations.items()
                                          if _is_relationship_array(rel))

    def is_relationship_array(self, name: str) -> bool:
        """ Is the relationship an array relationship? """
        return name in self._array_rel_names

    @property
    def names(self) -> FrozenSet[str]:
        return self._rel_names

    def __iter__(self) -> Iterable[Tuple[str, RelationshipProperty]]:
        return iter(self._relations.items())

    def __contains__(self, name: str) -> bool:
        return name in self._relations

    def __getitem__(self, name: str) -> RelationshipProperty:
        return self._relations[name]

    def get_target_model(self, name: str) -> DeclarativeMeta:
        """ Get target model of a relationship """
        return self[name].property.mapper.class_

    def get_local_columns(self, name: str) -> Set[str]:
        """ Get the names of local columns the relationship is bound with (foreign keys, mostly) """
        return {c.key for c in self[name].property.local_columns}


class DotRelatedColumnsBag(ColumnsBag):
    """ Relationships bag that supports dot-notation for referencing columns of a related model """

    def __init__(self, relationships: Mapping[str, RelationshipProperty]):
        self._rel_bag = RelationshipsBag(relationships)

        #: Dot-notation mapped to columns: 'rel.col' => Column
        related_columns = {}

        for rel_name, relation in self._rel_bag:
            model = relation.property.mapper.class_
            cols = _get_model_columns(model, inspect(model))

            for col_name, col in cols.items():
                related_columns['{}.{}'.format(rel_name, col_name)] = col

        super(DotRelatedColumnsBag, self).__init__(related_columns)

    def get_relationship_name(self, col_name: str) -> str:
        return _dot_notation(col_name)[0]


class CombinedBag(_PropertiesBagBase):
    """ A bag that combines elements from multiple bags.

    This one is used when something can handle both columns and relationships, or properties and
    columns. Because this depends on what you're doing, this generalized implementation is used.

    In order to initialize it, you give them the bags you need as a dict:

        cbag = CombinedBag(
            col=bags.columns,
            rcol=bags.related_columns,
        )

    Now, when you get an item, you get the aliased name that you have used:

        bag_name, bag, col = cbag['id']
        bag_name  #-> 'col'
        bag  #-> bags.columns
        col  #-> User.id

    This way, you can always tell which bag has the column come from, and handle it appropriately.
    """

    def __init__(self, **bags):
        self._bags = bags

        # Combined names from all bags
        self._names = frozenset(chain(*(bag.names for bag in bags.values())))

        # Combined lookup by name from all bags
        self._bag_name_lookup_by_column_name = {
            column_name: bag_name
            for bag_name, bag in self._bags.items()
            for column_name, column in bag
        }

    def __contains__(self, name: str) -> bool:
        return name in self._names

    def __getitem__(self, name: str) -> Tuple[str, _PropertiesBagBase, MapperProperty]:
        bag_name = self._bag_name_lookup_by_column_name[name]
        bag = self._bags[bag_name]
        return (bag_name, bag, bag[name])

    def get(self, name: str) -> MapperProperty:
        """ Get a property """
        return self[name][2]

    @property
    def names(self) -> FrozenSet[str]:
        return self._names

    def __iter__(self) -> Iterable[Tuple[str, _PropertiesBagBase, str, MapperProperty]]:
        return (
            (bag_name, bag, column_name, column)
            for bag_name, bag in self._bags.items()
            for column_name, column in bag
        )


def _get_model_columns(model, ins):
    """ Get a dict of model columns """
    return {name: getattr(model, name)
            for name, c in ins.column_attrs.items()
            # ignore Labels and other stuff that .items() will always yield
            if isinstance(c.expression, Column)
            }


def _get_model_properties(model, ins):
    """ Get a dict of model properties (calculated properties) """
    return {name: None  # we don't need the property itself
            for name in dir(model)
            if not name.startswith('_')
            and isinstance(getattr(model, name), property)}


def _get_model_relationships(model, ins):
    """ Get a dict of model relationships """
    return {name: getattr(model, name)
            for name, c in ins.relationships.items()}


def _get_column_type(col: MapperProperty) -> TypeEngine:
    """ Get column's SQL type """
    if isinstance(col.type, TypeDecorator):
        # Type decorators wrap other types, so we have to handle them carefully
        return col.type.impl
    else:
        return col.type


def _is_column_string(col: MapperProperty) -> bool:
    """ Is the column of a textual type? (String, Text, Unicode, Enum) """
    return isinstance(_get_column_type(col), String)


def _is_column_json(col: MapperProperty) -> bool:
    """ Is the column a JSON column? """
    return isinstance(_get_column_type(col), JSON)


def _is_relationship_array(rel: RelationshipProperty) -> bool:
    """ Is the relationship an array relationship? """
    return rel.property.uselist


def _is_property_writable(prop: property) -> bool:
    """ Check if a property is writable """
    return prop.fset is not None


def _dot_notation(name: str) -> Tuple[str, List[str]]:
    """ Split a property name that's using dot-notation """
    path = name.split('.')
    return path[0], path[1:]

