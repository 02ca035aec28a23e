"""
Workflow interchange and command-line interface.
"""
