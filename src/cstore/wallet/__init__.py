"""
Wallet - the single signing account of a run.
"""
