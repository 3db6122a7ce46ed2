"""
HTTP layer: one router per resource, all business logic lives in core/.
"""
