"""
targetflow Plan Converters package

This package contains converters to transform plans (and the sub-targets of
their last run) into various formats.
"""

from .json_converter import to_json, PlanJSONEncoder
from .dot_converter import to_dot

__all__ = ['to_json', 'to_dot', 'PlanJSONEncoder']
