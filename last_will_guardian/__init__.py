"""Last Will Guardian - Dead Man's Switch Custody Ledger

Holds funds and tokens for a monitored target and sweeps them to a fixed
list of beneficiaries once the target has been silent past its timeout.
"""

__version__ = "0.1.0"
