"""
Loan Allocation Engine

Allocates loan repayments, waivers, recoveries, write-offs and charge
payments against an amortization schedule, with full-history reprocessing
when past-dated or amended transactions invalidate earlier results.
All financial math uses Decimal.
"""

__version__ = "1.0.0"
