"""gapcheck - compliance gap assessment backend.

Layout of the data root (``DATA_PATH``, default ``./data``):
    clients/
    └── <clientId>/
        ├── profile.json
        ├── assessments/<frameworkId>_<sessionId>.json
        └── reports/
"""
