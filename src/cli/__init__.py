"""
Command-line interface for FlowBatch Core
"""
