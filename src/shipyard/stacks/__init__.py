"""Built-in stacks that ``shipyard init`` can write out."""

from collections.abc import Callable
from typing import Any

from shipyard.stacks.nextcloud import nextcloud_document, nextcloud_stack

STACKS: dict[str, Callable[[str], dict[str, Any]]] = {
    "nextcloud": nextcloud_document,
}

__all__ = ["STACKS", "nextcloud_document", "nextcloud_stack"]
