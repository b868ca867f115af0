"""
Manager module for Corral.

The manager accepts task submissions, places them on workers round robin, and
reconciles the workers' observed task state into its central registry.
"""
