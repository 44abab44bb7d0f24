"""
The reactor groups all modules to watch the workloads & to process them.

The low-level events are the kubernetes watch streams, received on every
object change. They are put to the local cache and turned into work items.

The work items are the keys of the objects, which are processed by the workers
(independently of the events) to converge the cluster to the desired state.
"""
