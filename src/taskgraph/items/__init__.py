"""Item store: create, read, edit, delete, and the status state machine."""

from .create_item import create_item
from .delete_item import delete_item
from .edit_item import append_description, clear_parent, set_description, set_parent, set_priority, set_title
from .logs import add_log, get_logs
from .merge_item import merge_items
from .query_item import children, get_item, list_items
from .status import block_item, cancel_item, complete_item, release_item, reopen_item, set_status, start_item

__all__ = [
    "add_log",
    "append_description",
    "block_item",
    "cancel_item",
    "children",
    "clear_parent",
    "complete_item",
    "create_item",
    "delete_item",
    "get_item",
    "get_logs",
    "list_items",
    "merge_items",
    "release_item",
    "reopen_item",
    "set_description",
    "set_parent",
    "set_priority",
    "set_status",
    "set_title",
    "start_item",
]
