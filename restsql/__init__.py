"""
restsql is a translation layer that exposes [SqlAlchemy](http://www.sqlalchemy.org/) models
as REST resources, without writing a controller for every one of them.

Request parameters become queries:

```
GET /v1/admins?where={"age": {"$gte": 17}}&sort=-age&page=2&limit=10&populate=user
```

and the results come in a uniform envelope, keyed by the model name:

```javascript
{
    "Admin": [ {...}, {...} ],
    "meta": { "totalPages": 2, "totalDocs": 20 },
}
```

Supported request parameters:
`page`, `limit`, `sort`, `where`, `search`, `populate`, `deepPopulate`, `select`.
"""

# Exceptions that are used here and there
from .exc import *

# restsql needs a lot of information about the properties of your models.
# All this is handled by the following class:
from .bag import ModelPropertyBags, CombinedBag

# The heart of restsql are the handlers:
# that's where request parameters are converted to actual SqlAlchemy queries!
from . import handlers

# RestQuery puts the handlers together
from .query import RestQuery

# Count and fetch at the same time
from .util import CountingFetch

# Relationships of relationships
from .deep import deep_populate

# Settings, validated at startup
from .settings import RestSqlSettings, PaginationSettings, Replace, Patch

# CrudHelper creates and updates instances from JSON;
# CRUD handlers implement find, create, update, remove for any model
from .crud import CrudHelper, CRUD_METHOD, build_handler_table
from .request import ResourceRequest

# Find models by their names in the path
from .binder import ModelBinder

# Flask integration
from .plugin import RestHandlers
