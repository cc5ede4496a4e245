"""Exports & reporting: CSV writers and plain-text / Markdown reports.

- writers.py: CSV emitters for audit rows and document summaries
- reports.py: dead-letter error report and status summary report
"""
