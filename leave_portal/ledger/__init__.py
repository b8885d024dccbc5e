"""Balance ledger — per-user day counters and their adjustment log."""
