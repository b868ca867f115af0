"""
Shared models, constants and stores for the Corral manager and workers.
"""
