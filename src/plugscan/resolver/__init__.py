"""Locate and verify classes across directories, archives and virtual filesystems."""

from __future__ import annotations

from .aggregator import ResultAggregator
from .context import (
    LoaderContext,
    ResourceLister,
    SingleLocationLoaderContext,
    SysPathLoaderContext,
    get_default_loader_context,
    load_type,
    set_default_loader_context,
)
from .errors import (
    InvalidPackageNameError,
    LoaderContextBusyError,
    MalformedIdentifierError,
    ResolverError,
    ResourceUnavailableError,
)
from .filters import (
    PluginTest,
    ResourceTest,
    Verification,
    all_of,
    name_endswith,
    subclass_of,
    verify,
)
from .locations import (
    ProtocolFamily,
    ResourceLocation,
    extract_path,
    package_to_path,
    path_to_package,
)
from .service import PackageResolver, ScanReport
from .walker import (
    Candidate,
    Classification,
    ContainerKind,
    LocationResult,
    ResourceEntry,
    ResourceWalker,
    classify,
)

__all__ = [
    "Candidate",
    "Classification",
    "ContainerKind",
    "InvalidPackageNameError",
    "LoaderContext",
    "LoaderContextBusyError",
    "LocationResult",
    "MalformedIdentifierError",
    "PackageResolver",
    "PluginTest",
    "ProtocolFamily",
    "ResolverError",
    "ResourceEntry",
    "ResourceLister",
    "ResourceLocation",
    "ResourceTest",
    "ResourceUnavailableError",
    "ResourceWalker",
    "ResultAggregator",
    "ScanReport",
    "SingleLocationLoaderContext",
    "SysPathLoaderContext",
    "Verification",
    "all_of",
    "classify",
    "extract_path",
    "get_default_loader_context",
    "load_type",
    "name_endswith",
    "package_to_path",
    "path_to_package",
    "set_default_loader_context",
    "subclass_of",
    "verify",
]
