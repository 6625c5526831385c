from .crudhelper import CrudHelper
from .handlers import CRUD_METHOD, CrudHandlerBase, FindHandler, CreateHandler, UpdateHandler, RemoveHandler
from .handlers import build_handler_table
