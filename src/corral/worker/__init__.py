"""
Worker module for Corral.

The worker executes submissions assigned by the manager through a container
runtime driver and reports the tasks it owns.
"""
