"""
Once-drop test suite

Test Organization
-----------------
- tests/unit/          : Fast unit tests with mocked collaborators
- tests/integration/   : Real storage (SQLite file, PostgreSQL via testcontainers)
- tests/fakes.py       : Host-side fakes (players, creatures, loot, chat)

Use pytest markers (`unit`, `integration`, `database`) to select suites.
"""
