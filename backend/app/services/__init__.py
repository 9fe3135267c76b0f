############################################################
#
# mathchat - Math-focused Chat Service
#
# __init__.py: Services package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Services for MathChat."""

from backend.app.services.dispatch import DispatchService
from backend.app.services.streaming import stream_chat_events

__all__ = ["DispatchService", "stream_chat_events"]
