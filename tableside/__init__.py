"""
                Tableside Ordering

QR-code table ordering and billing backend: diners place and extend
orders during a dining session and request a bill, the kitchen follows
live orders, updates preparation status and approves bills.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
