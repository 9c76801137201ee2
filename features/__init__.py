"""
Features package — infrastructure the snapshot workflow runs on.

  features/durable/
    __init__.py      — public API re-exports
    models.py        — Run / StepRecord / RunStatus
    executor.py      — checkpointing step executor (step, sleep, replay)
    retry.py         — per-step retry policy
    store.py         — step log backends (in-memory, Postgres)
    db.py            — Postgres layer for the step log
"""
