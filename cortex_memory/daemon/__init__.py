"""
Background daemon: event queue, serialized agent runner, handlers and the
polling loop that ties them together.
"""
