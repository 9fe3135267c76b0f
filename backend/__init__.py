############################################################
#
# mathchat - Math-focused Chat Service
#
# __init__.py: Root package initialization and version definition
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""MathChat - conversational math assistant backend."""

__version__ = "0.1.0"
