"""
Differentiable cost functions over lazily evaluated computation graphs.
"""

__version__ = '0.1.0'
