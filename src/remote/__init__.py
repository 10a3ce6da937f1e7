"""
Remote content service access.

- Correlator: match responses on the shared channel to their requests
- Transport: stdio channel to the remote service process
- Operations: validated operation variants and their remote tools
- Invoker: one correlated round trip per operation
"""
