"""
Engines are things that run around the reactor (see `ekspose.reactor`)
to help it to function at full strength, but are not part of it.
For example, the logging setup and the liveness probing endpoint.
"""
