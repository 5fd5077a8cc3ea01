"""
Account onboarding for the vault.
Reconciles accounts described in a CSV file with the PVWA REST API.
"""

__version__ = "0.1.0"
