"""
Reference collaborator API.
"""
