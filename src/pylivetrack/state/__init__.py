"""Vehicle lifecycle and latest-position state.

The lifecycle machine is the only component allowed to change a vehicle's
operational state; the snapshot store is the only component allowed to
replace a vehicle's latest known position.
"""
