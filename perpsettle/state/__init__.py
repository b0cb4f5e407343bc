"""
Persistent state: packed records, positions, account-local balances and the
versioned accumulator store.
"""
