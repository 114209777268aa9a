"""
Worker jobs: categorizer voting and bidding. Persists through the jobs and
bids tables, so this package has no models of its own.
"""
