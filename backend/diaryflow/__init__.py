"""
DiaryFlow Backend — Application Package Initializer
=====================================================

What: Marks the `diaryflow` directory as a Python package.
Who:  Imported by uvicorn (`diaryflow.main:app`), Alembic and pytest.

Architecture Note:
    The backend keeps a layered structure:

    ┌─────────────────────────────────────┐
    │     Routes (drafts, entries, ...)   │  ← HTTP concerns, error surfacing
    ├─────────────────────────────────────┤
    │   Services (drafts, uploads, ...)   │  ← Orchestration, validation
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │  Database / Object storage / APIs   │  ← Async SQLAlchemy, blobs, httpx
    └─────────────────────────────────────┘

    A "draft" plays the role of the new-entry screen: it owns the selected
    files and recorded audio until the save pipeline turns them into an entry.
"""

__version__ = "1.0.0"
