"""
Test suite for the batched Hodgkin-Huxley solver.

Run tests with:
    pytest test/
    pytest test/ -v
    pytest test/ -m "not numerical"
    pytest test/ -k "chain"
"""
