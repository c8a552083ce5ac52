"""
DiaryFlow Backend — Services Layer
====================================

What:  Business logic between the route handlers and the database/storage.
How:   Plain classes with a module-level singleton each; routes import the
       singleton, tests build their own instances with test doubles.

Service Inventory:
    - EntryService: entry persistence, queries and per-user change events
    - SearchService: text search over a user's newest entries
    - DraftService: in-progress entries, staging and the save workflow
    - UploadOrchestrator: validate and upload one save's media as a batch
    - ObjectStorage / LocalObjectStorage: media blobs and download URLs
    - WeatherService: WeatherAPI.com current conditions
    - TranscriptionService: AssemblyAI speech-to-text
"""
