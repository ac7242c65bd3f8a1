"""Self-testing sandbox module for Speaker Contracts.

Usage:
    python -m sc.sandbox                 # Run all tests
    python -m sc.sandbox templates       # Run template engine tests only
    python -m sc.sandbox signing         # Run signature capture tests only
    python -m sc.sandbox workflow web    # Run several areas

Every test module also runs under pytest.
"""
