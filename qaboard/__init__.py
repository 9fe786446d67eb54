"""
QA Board — Classroom Question & Answer Board
=============================================
Students post questions (optionally anonymously) into a room keyed by a
join code, teachers and TAs resolve them, everyone reacts and replies, and
an XP/level mechanic rewards participation.

Package layout::

    qaboard/
    ├── config.py          # YAML + env → typed Python config
    ├── constants.py       # Leveling policy, XP grants, storage key
    ├── exceptions.py      # Error taxonomy shared by both backends
    ├── models.py          # Backend-agnostic entities + Session value
    ├── mapping.py         # Row/document → entity adapters
    ├── bootstrap.py       # Logging + config + facade wiring
    ├── engine/
    │   ├── leveling.py    # xp → level → avatar stage
    │   ├── reactions.py   # like/thanks toggle state machine
    │   ├── lifecycle.py   # Status transitions + ownership rules
    │   └── codes.py       # Join code generation / parsing
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async bridge
    │   ├── models.py      # ORM tables for the remote backend
    │   └── policies.py    # Row-level authorization predicates
    ├── store/
    │   ├── base.py        # The Store contract
    │   ├── blob.py        # Named-blob storage for the local document
    │   ├── local.py       # Local JSON document store
    │   ├── remote.py      # Remote relational store
    │   └── factory.py     # Backend selection at start-up
    └── services/
        ├── board_service.py  # The data access facade
        └── poller.py         # Periodic room refresh
"""

__version__ = "0.1.0"
