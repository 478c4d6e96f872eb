"""
FlowBatch Core
"""
