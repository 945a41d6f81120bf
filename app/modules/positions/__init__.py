"""
Position Management Module

Opens, lists and closes a trader's own positions and reports the
aggregate margin picture.
"""
