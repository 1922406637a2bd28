"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the strikebook engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. composition_bounds.py - Tier composition and borrow bounds under swaps; exact outputs fill in full
2. liquidity_roundtrip.py - Add then remove returns the deposit up to rounding
3. batch_atomicity.py - All-or-nothing batch semantics
4. interest_accrual.py - Borrow index monotonicity and repayment
5. transfer_requests.py - Signed transfer requests bound what is redeemed; debt keeps its buffer share

These tests use hypothesis for property-based testing.
"""
