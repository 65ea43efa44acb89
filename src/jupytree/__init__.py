import importlib.metadata

from .contents import Contents as Contents
from .hierarchy import Hierarchy as Hierarchy
from .hierarchy import HierarchyBuilder as HierarchyBuilder
from .hierarchy import HierarchyCache as HierarchyCache
from .models import ContentFormat as ContentFormat
from .models import ContentRecord as ContentRecord
from .models import ContentType as ContentType
from .protocol import ProtocolDetector as ProtocolDetector
from .transport import QueryClient as QueryClient

try:
    __version__ = importlib.metadata.version("jupytree")
except importlib.metadata.PackageNotFoundError:
    __version__ = "unknown"
