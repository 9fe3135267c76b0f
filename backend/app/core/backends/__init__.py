############################################################
#
# mathchat - Math-focused Chat Service
#
# __init__.py: Backend adapter package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Answer-generation backend adapters."""

from backend.app.core.backends.base import BackendAdapter
from backend.app.core.backends.hosted import HostedAPIAdapter
from backend.app.core.backends.local import (
    CustomModelAdapter,
    LocalModelAdapter,
    MistralModelAdapter,
)
from backend.app.core.backends.registry import (
    BackendAdapters,
    get_adapters,
    init_adapters,
    shutdown_adapters,
)

__all__ = [
    "BackendAdapter",
    "BackendAdapters",
    "CustomModelAdapter",
    "HostedAPIAdapter",
    "LocalModelAdapter",
    "MistralModelAdapter",
    "get_adapters",
    "init_adapters",
    "shutdown_adapters",
]
