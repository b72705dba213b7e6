"""

Keyboard connections

- Conduit: exchanges fixed size HID reports with one device. HidConduit reads on a background thread
  and reports a lost device through its disconnected event. LoopbackConduit answers in memory.
- Wrapper: the 0xDD envelope that carries a client id and a sub-protocol tag (legacy 0xFE,
  extension 0xDF) in front of every payload.
- ReportExchanger: the FIFO of operations for one device. At most one request awaits a response at a
  time, in the single PendingRequest slot.
- ClientLeaseManager: acquires the client id with a nonce bootstrap and renews it before it expires.
  Concurrent callers share one bootstrap.
- ViableProtocol: sends commands on behalf of the lease and decodes responses with a Decoder
  (RawBytes, FixedWidthArray, ScalarByOffset, PackedStruct).
- chunked: buffers larger than one report, fetched or pushed as a series of offset commands.
- ViableDevice: what applications use. Opens one device, owns the stack above, and tears it down on
  close or unplug.


## Threading

Calls that send a command return a FutureValue straight away. The command runs on the exchanger's
worker thread when everything queued before it has finished. Inbound reports arrive on the conduit's
reader thread and are offered to the pending request. Lease renewal runs from a timer thread, and
only queues a bootstrap like any other operation.

Composite operations (chunked transfers, entry tables, the definition) block the calling thread on each
step. Calling them from the worker thread, e.g. from a future's callback, would deadlock.

## The late reply gap

A command that times out may still be answered. If nothing is pending the reply is counted and logged.
If the next command is already waiting, the reply carries the same client id and tag as that command's
response and is taken as its response. The protocol has no per-command sequence number to tell them apart.
"""
