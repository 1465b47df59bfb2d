"""Services - scanner, detector, executor, ledger, persistence, settlement, metrics."""
