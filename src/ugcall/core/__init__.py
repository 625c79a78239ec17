"""
Core module for ugcall.

Provides the coordinate kernel for region strings and VCF positions.
"""

from .kernel import CoordinateKernel

__all__ = ["CoordinateKernel"]
