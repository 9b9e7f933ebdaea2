"""Core placement primitives (regions, distribution history, notifications).

Nothing here touches FastAPI or Redis, so the allocator runs the same under the API
and under tests driven by a manual clock.
"""
