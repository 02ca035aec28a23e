"""
Web API for editing and running workflows.
"""
