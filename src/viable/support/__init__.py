"""
Small building blocks shared by the conduit and protocol packages.
"""
