"""
The conduit package provides an abstraction of a report-oriented channel to one device.
Concrete implementations are the hidapi raw-HID conduit and an in-memory loopback used in tests.

Device discovery enumerates the attached HID interfaces and filters them by vendor, product and usage.
"""
