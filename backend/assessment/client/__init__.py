"""
Clients for the attempt collaborator API.
"""
from .attempt_api import AttemptApi, HttpAttemptApi

__all__ = ["AttemptApi", "HttpAttemptApi"]
