"""
MedVerify - pharmaceutical batch registration and authenticity verification.
"""

__version__ = "0.1.0"
