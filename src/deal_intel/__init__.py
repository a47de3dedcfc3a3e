"""
Deal documents → AI extraction → Fast/Smart Pass codification → Intelligence records

A queue-driven pipeline that turns the financial documents of real-estate
lending deals into canonical line-item codes and a confidence-weighted,
per-client / per-project intelligence record.
"""

__version__ = "0.1.0"
