"""Token refresh and scheduled sync for Live Data.

Modules:
    tokens       — Token refresh policy (lookahead, forced batch refresh, sign-in)
    orchestrator — Scheduled run: refresh, fetch window, filter, upsert, summarize
    dedup        — Window filtering, in-batch dedup, upsert query builder
    backfill     — On-demand daily or historical collection for a signed-in account
"""
