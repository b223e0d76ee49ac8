"""Runtime execution (runner threads, cancellation, eviction sweep).

This layer is responsible for:
- spawning one runner thread per submitted command
- enforcing the per-execution deadline and external kills
- evicting finished executions after the retention window

It should remain independent from the HTTP layer (`cmdexec/api`), so both CLI and API
can reuse the same execution logic.
"""
