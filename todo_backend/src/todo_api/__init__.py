"""
Todo backend package: task lifecycle service, storage backends and the
FastAPI application exposing them.

The ASGI app lives in `src.todo_api.main:app`; use `create_app()` there to
build one with explicit settings or a store.
"""
