"""
llmwire Core Module

Error taxonomy, classification, retry policy, cancellation and the
request engine.
"""
