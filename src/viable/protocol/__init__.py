"""
The viable wire protocol: the 0xDD client-id wrapper, response decoding, the single-flight
request/response exchange, client leasing and the command dispatcher built on top of them.
"""
