"""
Entry point scripts for the prop firm risk engine.

Scripts:
- run_breaker_sweep.py: Scheduled circuit breaker sweep over a JSON account file
- lot_size.py: Command-line lot size calculator
"""
