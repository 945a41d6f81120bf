"""
Leverage Settings Module

Admin view and update of the leverage cap of each instrument class.
"""
