"""
The Bihari Makhana storefront backend.

Order pricing, checkout, order lifecycle, notifications, invoices and reviews.
"""

__version__ = '3.0.0'
