"""
Tool catalogue and dispatch.

Tools are described and validated here and executed by the remote Tool
Execution Collaborator.
"""
