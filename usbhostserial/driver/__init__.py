"""
Per chip serial drivers and driver lookup
"""
