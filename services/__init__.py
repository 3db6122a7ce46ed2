"""
Service layer

Calculation and bookkeeping helpers with no status transitions of their own:
- ledger_service: choice upserts, submission checks, tallies
- resolution_service: majority-loses outcome and life deltas
- mode_service: preliminary / finals rules and choice visibility
- event_service: event outbox and subscriber fan-out
- history_service: per-participant round history
"""
