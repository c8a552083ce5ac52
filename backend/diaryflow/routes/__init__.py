"""
DiaryFlow Backend — API Routes Package
========================================

Route Inventory:
    - drafts.py:        /api/drafts/...            new-entry workflow and save
    - entries.py:       /api/entries/...           read, search, delete, live stream
    - integrations.py:  /api/weather, /api/transcriptions
    - media.py:         /api/media/{key}           stored blob downloads
    - health.py:        /health

Routes stay thin: they read the request, call a service, shape the response.
"""
