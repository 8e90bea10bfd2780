"""
Order scheduling package.

The process entrypoint remains `main.py` at the repo root. Scheduling, timing and
orchestration live under `orderwindow/trader/` to keep entrypoints thin and testable.
"""
