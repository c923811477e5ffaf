"""Dataset backend interface.

The managers never shell out themselves: every operation on the
copy-on-write store goes through a ``DatasetBackend``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Union

from zvpg.models import DatasetNode, NodeKind, PoolStatus

# User attribute keys stored on backend nodes
ATTR_PREFIX = "zvpg:"
ATTR_CREATED = f"{ATTR_PREFIX}created"
ATTR_MESSAGE = f"{ATTR_PREFIX}message"
ATTR_BRANCH_NAME = f"{ATTR_PREFIX}branch_name"
ATTR_PARENT_BRANCH = f"{ATTR_PREFIX}parent_branch"
ATTR_PARENT_SNAPSHOT = f"{ATTR_PREFIX}parent_snapshot"
ATTR_BRANCH = f"{ATTR_PREFIX}branch"
ATTR_PORT = f"{ATTR_PREFIX}port"
ATTR_INSTANCE_ID = f"{ATTR_PREFIX}instance_id"


class DatasetBackend(ABC):
    """Primitive operations of a copy-on-write dataset store."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether a filesystem or snapshot exists."""

    @abstractmethod
    def create(self, path: str) -> None:
        """Create a filesystem, or a snapshot when ``path`` contains ``@``.

        Raises:
            AlreadyExistsError: If the node already exists
            BackendError: For any other backend failure
        """

    @abstractmethod
    def destroy(self, path: str, recursive: bool = False) -> None:
        """Destroy a node, and its descendants when ``recursive`` is set."""

    @abstractmethod
    def clone_from(self, origin: str, new_path: str) -> None:
        """Create a writable clone of snapshot ``origin`` at ``new_path``.

        Missing parent datasets of ``new_path`` are created.
        """

    @abstractmethod
    def set_attribute(self, path: str, key: str, value: str) -> None:
        """Set a user attribute on a node."""

    @abstractmethod
    def get_attribute(
        self, path: str, key: str, inherited: bool = False
    ) -> Optional[str]:
        """Get a user attribute, or None when it is unset.

        User attributes are inherited by child datasets. Only a value set on
        ``path`` itself is returned unless ``inherited`` is set, in which
        case the nearest ancestor holding the attribute supplies it.
        """

    @abstractmethod
    def clear_attribute(self, path: str, key: str) -> None:
        """Remove the local value of a user attribute. Clearing an unset attribute is a no-op."""

    @abstractmethod
    def list_nodes(
        self, kind: Union[NodeKind, str], root: str
    ) -> List[DatasetNode]:
        """List nodes of ``kind`` at or below ``root``, ordered by creation.

        An absent root yields an empty list.
        """

    @abstractmethod
    def pool_status(self, pool: str) -> PoolStatus:
        """Report health and capacity of a pool."""

    def get_node(self, path: str) -> Optional[DatasetNode]:
        """Get a single node with its size metrics, or None if absent."""
        kind = NodeKind.SNAPSHOT if "@" in path else NodeKind.FILESYSTEM
        root = path.split("@", 1)[0]
        for node in self.list_nodes(kind, root):
            if node.path == path:
                return node
        return None
