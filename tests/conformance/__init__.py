"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the vault.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conversion.py - Rate conversion round-trip bound and base identity
2. conservation.py - Share and custody conservation
3. replay_protection.py - Single use of (owner, nonce)
4. hook_ordering.py - Ordered, short-circuiting hook checks
5. atomicity.py - All-or-nothing operations and batches

These tests use hypothesis for property-based testing.
"""
