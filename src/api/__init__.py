"""
HTTP API for FlowBatch Core
"""
