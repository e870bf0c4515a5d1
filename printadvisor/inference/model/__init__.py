# inference/model/__init__.py

"""
Model runtime package.
Provides the backend factory and backend implementations.
"""

from .factory import ModelSource, make_backend
