"""Paper-trading ledger core: domain types, bookkeeping services and stores."""
