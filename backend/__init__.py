"""
Rentals Intake — Modular Backend Package (v1.2.0)

Architecture:
  backend/
  ├── config/          Environment settings, scoring limits, auth constants
  ├── db/              SQLAlchemy tables, engine + session factory
  ├── errors/          Domain exceptions
  ├── auth/            bcrypt passwords, JWT sessions, RBAC gate
  ├── documents/       Document metadata intake, filename classification
  ├── scoring/         Claude scorer, response normalizer, local heuristic
  ├── policy/          Decision policy + status state machine
  ├── audit/           Append-only audit trail
  ├── applications/    Application store, intake schemas, API records
  ├── review/          Five-step review pipeline, rescore
  └── server.py        FastAPI routing layer + app factory

Data flows one way: intake → scoring → policy → status update → audit append.
"""
