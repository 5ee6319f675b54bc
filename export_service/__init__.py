"""
Export Service - PDF export of generated career documents.

Bridges the authenticated export request and the headless browser render
using short-lived signed capability tickets, and enforces per-account daily
export quotas and watermark rules.
"""

__version__ = "0.1.0"
