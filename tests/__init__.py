"""
Test utilities package.

Prefer per-test monkeypatch/fixtures over global mocks; shared doubles live in
``tests.fakes``.
"""
