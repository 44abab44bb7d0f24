"""
General-purpose helpers not related to the controller itself
(neither to the reactor nor to the engines nor to the structs).

Utilities do not depend on anything in the controller.
"""
