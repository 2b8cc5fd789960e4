"""HD keys, addresses, ledger, discovery and transaction building."""
