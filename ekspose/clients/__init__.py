"""
All the routines to talk to Kubernetes API.

Beware: this is NOT a Kubernetes client. It is a set of dedicated adapters
specially tailored to do the controller-specific tasks (listing & watching
the workloads, creating their exposure objects), not the generic Kubernetes
object manipulation.

The tests mock the API server itself (on the HTTP level), not these routines.
"""
