"""
Admin Position Management Module

Scoped operator view of positions, manual field overrides with an audit
trail, forced liquidation and the modification history.
"""
