"""
ferryctl - command-line tools for the Ferry forwarding engine.
"""
