"""
Request parameters handlers

Every handler takes care of a single request parameter, and alters the query accordingly.
Together, they compile a request into an SqlAlchemy query:

* `where`: MongoDB-style criteria; see `RestWhere`
* `search`: regular expression across textual columns; see `RestSearch`
* `sort`: ordering; see `RestSort`
* `page`, `limit`: pagination; see `RestPage`
* `populate`: eager loading of relationships; see `RestPopulate`
* `select`: loading a subset of columns; see `RestSelect`
"""

from .base import RestQueryHandlerBase
from .where import RestWhere
from .search import RestSearch
from .sort import RestSort
from .page import RestPage
from .populate import RestPopulate
from .select import RestSelect, pluck_instance
