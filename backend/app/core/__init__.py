############################################################
#
# mathchat - Math-focused Chat Service
#
# __init__.py: Core package initialization
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Core chat logic for MathChat: adapters, context window, errors."""
