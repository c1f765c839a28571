"""
Report generation module for pattern analysis results.
"""

from .generator import ReportGenerator, generate_json_report, generate_markdown_report

__all__ = ['ReportGenerator', 'generate_json_report', 'generate_markdown_report']
